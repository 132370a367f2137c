"""Immutable encryption configuration injected into codecs at startup."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import TYPE_CHECKING

from psyemr.core.crypto.kdf import KDF_ITERATIONS
from psyemr.core.crypto.registry import FieldRegistry, default_registry, load_registry

if TYPE_CHECKING:
    from psyemr.core.config.settings import Settings

logger = logging.getLogger(__name__)


class EncryptionConfigError(Exception):
    """Raised when the encryption configuration is unusable."""


@dataclass(frozen=True)
class EncryptionConfig:
    """Master secret, field registry and KDF cost for one process.

    Usage::

        config = EncryptionConfig.from_settings(get_settings())
        codec = FieldCodec(config)
    """

    master_secret: bytes
    registry: FieldRegistry
    kdf_iterations: int = KDF_ITERATIONS

    def __post_init__(self) -> None:
        if isinstance(self.master_secret, str):
            object.__setattr__(self, "master_secret", self.master_secret.encode("utf-8"))
        if not self.master_secret or not self.master_secret.strip():
            raise EncryptionConfigError("Master secret must not be empty")
        if self.kdf_iterations < 1:
            raise EncryptionConfigError(
                f"kdf_iterations must be positive, got {self.kdf_iterations}"
            )
        if self.kdf_iterations < KDF_ITERATIONS:
            logger.warning(
                "Key derivation uses %d iterations (recommended minimum %d)",
                self.kdf_iterations,
                KDF_ITERATIONS,
            )

    def __repr__(self) -> str:
        return (
            f"EncryptionConfig(master_secret=<redacted>, registry={self.registry!r}, "
            f"kdf_iterations={self.kdf_iterations})"
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        registry: FieldRegistry | None = None,
    ) -> EncryptionConfig:
        """Build the configuration from application settings.

        Without ``ENCRYPTION_KEY`` an ephemeral secret is generated: anything
        written by this process becomes unreadable after a restart.
        """
        if registry is None:
            if settings.encryption_fields_path:
                registry = load_registry(settings.encryption_fields_path)
            else:
                registry = default_registry()

        secret = settings.encryption_key
        if not secret or not secret.strip():
            logger.warning(
                "No ENCRYPTION_KEY configured; using an ephemeral key. "
                "Encrypted data will not be readable after restart."
            )
            secret = cls.generate_secret()

        return cls(
            master_secret=secret.encode("utf-8"),
            registry=registry,
            kdf_iterations=settings.kdf_iterations,
        )

    @staticmethod
    def generate_secret() -> str:
        """Generate a new random master secret (64 hex characters)."""
        return secrets.token_hex(32)
