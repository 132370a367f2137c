"""Shape decrypted records for output.

Every record leaving the server goes through the ciphertext detector, so
a value whose decryption silently failed is shown as a labelled
placeholder rather than as raw base64.
"""

from __future__ import annotations

from typing import Any

from psyemr.core.crypto.detection import mask_encrypted_fields
from psyemr.core.crypto.registry import FieldRegistry


def present_record(
    record: dict[str, Any],
    entity_type: str,
    registry: FieldRegistry,
) -> tuple[dict[str, Any], list[str]]:
    """Mask suspect ciphertext in one record.

    Returns:
        The display-safe record and the names of masked fields.
    """
    masked, report = mask_encrypted_fields(record, registry.fields_for(entity_type))
    return masked, report.encrypted_fields


def present_records(
    records: list[dict[str, Any]],
    entity_type: str,
    registry: FieldRegistry,
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Mask suspect ciphertext in a list of records.

    Returns:
        The display-safe records and one ``{"id", "fields"}`` warning per
        record that had masked fields.
    """
    shown: list[dict[str, Any]] = []
    warnings: list[dict[str, Any]] = []
    for record in records:
        masked, fields = present_record(record, entity_type, registry)
        shown.append(masked)
        if fields:
            warnings.append({"id": record.get("id"), "fields": fields})
    return shown, warnings
