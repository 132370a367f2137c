"""PBKDF2 key derivation for per-field encryption keys.

Every encrypted field carries its own random salt, so every encrypt and
decrypt call derives a fresh AES-256 key from the master secret. Derivation
runs 100k rounds of HMAC-SHA512 by default.
"""

from __future__ import annotations

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from psyemr.core.crypto.envelope import SALT_LENGTH

KDF_ITERATIONS = 100_000
KEY_LENGTH = 32  # AES-256


class KeyDerivationError(Exception):
    """Raised when a key cannot be derived from the given inputs."""


def derive_key(
    secret: bytes | str,
    salt: bytes,
    *,
    iterations: int = KDF_ITERATIONS,
) -> bytes:
    """Derive a 32-byte key from the master secret and a per-value salt.

    Args:
        secret: The master secret. Text secrets are UTF-8 encoded.
        salt: Exactly ``SALT_LENGTH`` random bytes.
        iterations: PBKDF2 round count.

    Returns:
        The derived key.

    Raises:
        KeyDerivationError: If the secret is empty, the salt has the wrong
            length, or the iteration count is not positive.
    """
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    if not secret:
        raise KeyDerivationError("Master secret must not be empty")
    if not isinstance(salt, (bytes, bytearray)) or len(salt) != SALT_LENGTH:
        raise KeyDerivationError(f"Salt must be exactly {SALT_LENGTH} bytes")
    if iterations < 1:
        raise KeyDerivationError(f"Invalid iteration count: {iterations}")

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=KEY_LENGTH,
        salt=bytes(salt),
        iterations=iterations,
    )
    return kdf.derive(secret)
