"""Binary envelope for one encrypted field value.

Layout (then base64-encoded into the column)::

    salt (64) || iv (16) || auth tag (16) || ciphertext (variable)

The envelope carries no algorithm or key-version marker, so a value that
fails to parse is indistinguishable from plaintext written before
encryption was introduced.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Any

SALT_LENGTH = 64
IV_LENGTH = 16
TAG_LENGTH = 16
HEADER_LENGTH = SALT_LENGTH + IV_LENGTH + TAG_LENGTH

_TAG_POSITION = SALT_LENGTH + IV_LENGTH


@dataclass(frozen=True)
class Envelope:
    """Salt, IV, GCM tag and ciphertext of one encrypted value."""

    salt: bytes
    iv: bytes
    tag: bytes
    ciphertext: bytes

    def to_bytes(self) -> bytes:
        return self.salt + self.iv + self.tag + self.ciphertext

    def to_text(self) -> str:
        """Encode the envelope as the base64 text stored in the column."""
        return base64.b64encode(self.to_bytes()).decode("ascii")

    @classmethod
    def from_bytes(cls, data: bytes) -> Envelope | None:
        """Slice a decoded envelope by fixed offsets.

        Returns ``None`` when ``data`` is too short to hold the header.
        """
        if len(data) < HEADER_LENGTH:
            return None
        return cls(
            salt=data[:SALT_LENGTH],
            iv=data[SALT_LENGTH:_TAG_POSITION],
            tag=data[_TAG_POSITION:HEADER_LENGTH],
            ciphertext=data[HEADER_LENGTH:],
        )

    @classmethod
    def parse(cls, value: Any) -> Envelope | None:
        """Parse stored column text into an envelope.

        Line breaks and other whitespace are ignored, so base64
        wrapped by an export tool still parses. Anything that is not a
        string, not valid base64, or shorter than the fixed header is
        treated as legacy plaintext and yields ``None``.
        """
        if not isinstance(value, str) or len(value) < HEADER_LENGTH:
            return None
        try:
            data = base64.b64decode("".join(value.split()), validate=True)
        except (binascii.Error, ValueError):
            return None
        return cls.from_bytes(data)
