"""Heuristic detection of values that still look encrypted.

When decryption fails the codec hands back the stored envelope, so a
reader may receive raw base64 where it expected a diagnosis. This module
spots such values before they are displayed and swaps in a clearly
labelled placeholder.

This is a heuristic, not a proof: long base64-looking plaintext is a
false positive and short values are never flagged. Envelopes carry no
marker that would make the check exact.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

# 96-byte envelope header, base64-encoded
MIN_ENCRYPTED_LENGTH = 128

DECRYPTION_FAILED_LABEL = "[Encrypted - Decryption Failed]"
NOT_SPECIFIED_LABEL = "Not specified"

_BASE64_PATTERN = re.compile(r"^[A-Za-z0-9+/=]+$")

# Clinical proforma fields most likely to surface on screen.
WATCHED_PROFORMA_FIELDS = (
    "diagnosis",
    "gpe",
    "past_history",
    "family_history",
    "treatment_prescribed",
    "precipitating_factor",
    "illness_duration",
    "current_episode_since",
    "mse_delusions",
    "disposal",
    "referred_to",
    "adl_reasoning",
)


@dataclass(frozen=True)
class FieldDisplay:
    """How one field should be shown."""

    display: Any
    is_encrypted: bool
    original_value: Any = None


@dataclass
class DetectionReport:
    """Fields of a record whose values still look like ciphertext."""

    encrypted_fields: list[str] = field(default_factory=list)

    @property
    def has_encrypted(self) -> bool:
        return bool(self.encrypted_fields)


def is_encrypted(value: Any) -> bool:
    """Return True if ``value`` looks like an undecrypted envelope.

    A value qualifies when it is a string of at least 128 characters made
    only of base64 characters (so no whitespace at all).
    """
    if not value or not isinstance(value, str):
        return False
    if len(value) < MIN_ENCRYPTED_LENGTH:
        return False
    return _BASE64_PATTERN.match(value) is not None


def _preview(value: str) -> str:
    return value[:50] + "..."


def format_encrypted_field(value: Any, field_name: str = "") -> FieldDisplay:
    """Return the display form of a field, flagging suspect ciphertext."""
    if not value:
        return FieldDisplay(display=value or NOT_SPECIFIED_LABEL, is_encrypted=False)

    if is_encrypted(value):
        logger.warning(
            "Encrypted data detected in field %s (length=%d, preview=%s)",
            field_name,
            len(value),
            _preview(value),
        )
        return FieldDisplay(
            display=DECRYPTION_FAILED_LABEL,
            is_encrypted=True,
            original_value=value,
        )

    return FieldDisplay(display=value, is_encrypted=False)


def check_encrypted_fields(
    record: Any,
    field_names: Iterable[str] = WATCHED_PROFORMA_FIELDS,
) -> DetectionReport:
    """List the fields of ``record`` that still look encrypted.

    ``patient_name`` is always checked as well, since it is joined in
    from the patient table and should have been decrypted there.
    """
    report = DetectionReport()
    if not isinstance(record, Mapping):
        return report

    for name in field_names:
        if is_encrypted(record.get(name)):
            report.encrypted_fields.append(name)

    if "patient_name" not in report.encrypted_fields and is_encrypted(
        record.get("patient_name")
    ):
        report.encrypted_fields.append("patient_name")
        logger.error("patient_name is encrypted - backend decryption may have failed")

    return report


def mask_encrypted_fields(
    record: Any,
    field_names: Iterable[str],
) -> tuple[Any, DetectionReport]:
    """Copy ``record`` with suspect ciphertext replaced by a placeholder."""
    report = check_encrypted_fields(record, field_names)
    if not report.has_encrypted:
        return record, report

    masked = dict(record)
    for name in report.encrypted_fields:
        masked[name] = format_encrypted_field(record[name], name).display
    return masked, report
