"""AES-256-GCM field codec for sensitive columns.

One scalar value in, one base64 envelope out (and back). The codec never
raises to its callers: a value that cannot be encrypted is written as
plaintext, and a value that cannot be decrypted is returned exactly as it
was stored.

Callers that need to know what happened use :meth:`FieldCodec.try_encrypt`
and :meth:`FieldCodec.try_decrypt`, which return a :class:`CodecResult`.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from psyemr.core.crypto.config import EncryptionConfig
from psyemr.core.crypto.envelope import IV_LENGTH, SALT_LENGTH, TAG_LENGTH, Envelope
from psyemr.core.crypto.kdf import derive_key

logger = logging.getLogger(__name__)


class CodecOutcome(str, Enum):
    ENCRYPTED = "encrypted"
    DECRYPTED = "decrypted"
    SKIPPED = "skipped"                    # None / empty: nothing to do
    LEGACY_PLAINTEXT = "legacy_plaintext"  # not an envelope, stored before encryption
    FAILED = "failed"


@dataclass(frozen=True)
class CodecResult:
    """Outcome of one encrypt or decrypt call.

    ``value`` is always what the lenient API would return. On failure
    ``reason`` names the error and ``raw_value`` holds the untouched input.
    """

    outcome: CodecOutcome
    value: Any
    reason: str | None = None
    raw_value: Any = None

    @property
    def ok(self) -> bool:
        return self.outcome is not CodecOutcome.FAILED


class FieldCodec:
    """Encrypts and decrypts single column values.

    Usage::

        codec = FieldCodec(EncryptionConfig(master_secret=b"...", registry=registry))
        stored = codec.encrypt_field("Ravi Kumar")
        codec.decrypt_field(stored)  # "Ravi Kumar"
    """

    def __init__(self, config: EncryptionConfig) -> None:
        self._config = config

    @property
    def config(self) -> EncryptionConfig:
        return self._config

    def _key(self, salt: bytes) -> bytes:
        return derive_key(
            self._config.master_secret,
            salt,
            iterations=self._config.kdf_iterations,
        )

    # ------------------------------------------------------------------
    # Encrypt
    # ------------------------------------------------------------------

    def try_encrypt(self, value: Any) -> CodecResult:
        """Encrypt a value, reporting the outcome instead of raising."""
        if not value:
            return CodecResult(CodecOutcome.SKIPPED, value)

        try:
            plaintext = str(value).encode("utf-8")
            salt = os.urandom(SALT_LENGTH)
            iv = os.urandom(IV_LENGTH)
            sealed = AESGCM(self._key(salt)).encrypt(iv, plaintext, None)
            # AESGCM appends the tag; the envelope stores it before the ciphertext.
            envelope = Envelope(
                salt=salt,
                iv=iv,
                tag=sealed[-TAG_LENGTH:],
                ciphertext=sealed[:-TAG_LENGTH],
            )
            return CodecResult(CodecOutcome.ENCRYPTED, envelope.to_text())
        except Exception as exc:
            logger.error("Field encryption failed, storing value unencrypted: %s", exc)
            return CodecResult(
                CodecOutcome.FAILED,
                value,
                reason=f"{type(exc).__name__}: {exc}",
                raw_value=value,
            )

    def encrypt_field(self, value: Any) -> Any:
        """Encrypt one value to envelope text.

        ``None`` and empty strings are returned unchanged. If encryption
        fails the original value is returned.
        """
        return self.try_encrypt(value).value

    # ------------------------------------------------------------------
    # Decrypt
    # ------------------------------------------------------------------

    def try_decrypt(self, stored: Any) -> CodecResult:
        """Decrypt a stored value, reporting the outcome instead of raising."""
        if not stored:
            return CodecResult(CodecOutcome.SKIPPED, stored)

        envelope = Envelope.parse(stored)
        if envelope is None:
            return CodecResult(CodecOutcome.LEGACY_PLAINTEXT, stored)

        try:
            plaintext = AESGCM(self._key(envelope.salt)).decrypt(
                envelope.iv, envelope.ciphertext + envelope.tag, None
            )
            return CodecResult(CodecOutcome.DECRYPTED, plaintext.decode("utf-8"))
        except InvalidTag:
            reason = "InvalidTag: authentication failed (tampered data or wrong key)"
        except Exception as exc:
            reason = f"{type(exc).__name__}: {exc}"

        logger.warning(
            "Decryption failed, returning stored value (might be unencrypted): %s",
            reason,
        )
        return CodecResult(CodecOutcome.FAILED, stored, reason=reason, raw_value=stored)

    def decrypt_field(self, stored: Any) -> Any:
        """Decrypt one stored value.

        Empty values, non-strings and anything too short to be an envelope
        come back unchanged (legacy plaintext). If decryption fails the
        stored value is returned as-is.
        """
        return self.try_decrypt(stored).value
