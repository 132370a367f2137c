"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Psychiatry EMR server configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Loopback by default: the server has no auth layer of its own.
    emr_host: str = "127.0.0.1"
    emr_port: int = 8001
    emr_log_level: str = "info"
    emr_allow_insecure_bind: bool = False

    # Storage
    db_path: str = "~/.psyemr/records.db"

    # Encryption
    # Master secret for field encryption. Rotating it makes every value
    # written under the old secret unreadable.
    encryption_key: str = ""
    kdf_iterations: int = 100_000
    # Empty means the registry shipped with the package.
    encryption_fields_path: str = ""


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
