"""MCP tools for inspecting encryption health.

Decryption failures never surface as errors: the codec returns the stored
value unchanged. These tools make them visible to operators, per record
and per schema column.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from psyemr.core.crypto.codec import CodecOutcome
from psyemr.core.crypto.detection import is_encrypted
from psyemr.core.storage.repository import RepositoryError
from psyemr.core.storage.schema_check import check_encrypted_columns

if TYPE_CHECKING:
    from psyemr.core.audit.logger import AuditLogger
    from psyemr.core.storage.repository import RecordsRepository

logger = logging.getLogger(__name__)


def register_integrity_tools(
    mcp: FastMCP,
    repository: RecordsRepository,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register encryption inspection tools on the MCP server."""
    codec = repository.codec

    @mcp.tool
    async def check_record_encryption(
        ctx: Context,
        entity_type: str,
        record_id: int,
    ) -> str:
        """Report how each sensitive field of one stored record decrypts.

        Fields are grouped into encrypted (decrypts cleanly), legacy plaintext
        (written before encryption), and failed (tampered data or wrong key).
        No field values are returned.

        Args:
            entity_type: One of 'patient', 'clinical_proforma', 'adl_file',
                'prescription'.
            record_id: The record's id.
        """
        if entity_type not in codec.registry:
            return json.dumps({
                "status": "error",
                "message": f"Unknown entity type: {entity_type!r}",
            })
        try:
            stored = repository.get_stored_row(entity_type, record_id)
        except RepositoryError as exc:
            return json.dumps({"status": "error", "message": str(exc)})
        if stored is None:
            return json.dumps({
                "status": "not_found",
                "entity_type": entity_type,
                "record_id": record_id,
            })

        encrypted: list[str] = []
        legacy: list[str] = []
        failed: list[dict[str, str]] = []
        for name in codec.registry.fields_for(entity_type):
            value = stored.get(name)
            if value is None or value == "":
                continue
            result = codec.field_codec.try_decrypt(value)
            if result.outcome is CodecOutcome.DECRYPTED:
                encrypted.append(name)
            elif result.outcome is CodecOutcome.FAILED:
                failed.append({"field": name, "reason": result.reason or ""})
            else:
                legacy.append(name)

        # Legacy values that look like ciphertext are envelopes we could not parse.
        suspect = [name for name in legacy if is_encrypted(stored.get(name))]

        if failed and audit_logger is not None:
            audit_logger.log_decrypt_failures(
                entity_type, record_id, [f["field"] for f in failed]
            )

        return json.dumps({
            "status": "ok" if not failed else "decryption_failures",
            "entity_type": entity_type,
            "record_id": record_id,
            "encrypted_fields": encrypted,
            "legacy_plaintext_fields": legacy,
            "suspect_ciphertext_fields": suspect,
            "failed_fields": failed,
        })

    @mcp.tool
    async def encryption_column_report(ctx: Context) -> str:
        """Check that every encrypted column is TEXT and can hold ciphertext."""
        report = check_encrypted_columns(repository.database, codec.registry)
        return json.dumps({
            "status": "ok" if report.ok else "action_required",
            "summary": report.summary(),
            "needs_widening": [
                f"{c.table}.{c.column} ({c.declared_type})" for c in report.needs_widening
            ],
            "numeric_errors": [
                f"{c.table}.{c.column} ({c.declared_type})" for c in report.errors
            ],
            "missing": [f"{c.table}.{c.column}" for c in report.missing],
        })
