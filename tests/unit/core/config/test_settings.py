"""Tests for application settings."""

from __future__ import annotations

from psyemr.core.config.settings import Settings, get_settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("ENCRYPTION_KEY", "KDF_ITERATIONS", "DB_PATH", "ENCRYPTION_FIELDS_PATH"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings(_env_file=None)
        assert settings.emr_host == "127.0.0.1"
        assert settings.emr_port == 8001
        assert settings.emr_allow_insecure_bind is False
        assert settings.encryption_key == ""
        assert settings.kdf_iterations == 100_000
        assert settings.db_path == "~/.psyemr/records.db"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("EMR_PORT", "9100")
        monkeypatch.setenv("EMR_ALLOW_INSECURE_BIND", "true")
        settings = get_settings()
        assert settings.emr_port == 9100
        assert settings.emr_allow_insecure_bind is True
        assert settings.db_path == ":memory:"
        assert settings.kdf_iterations == 1_000
