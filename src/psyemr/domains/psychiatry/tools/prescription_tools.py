"""MCP tools for prescriptions attached to a clinical proforma."""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from psyemr.core.audit.logger import ACTION_CREATE, ACTION_DELETE, ACTION_READ
from psyemr.core.crypto.registry import CLINICAL_PROFORMA, PRESCRIPTION
from psyemr.core.storage.repository import RepositoryError
from psyemr.domains.psychiatry.domain_logic.presentation import present_records

if TYPE_CHECKING:
    from psyemr.core.audit.logger import AuditLogger
    from psyemr.core.storage.repository import RecordsRepository

logger = logging.getLogger(__name__)


def register_prescription_tools(
    mcp: FastMCP,
    repository: RecordsRepository,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register prescription tools on the MCP server."""
    registry = repository.codec.registry

    @mcp.tool
    async def add_prescriptions(
        ctx: Context,
        clinical_proforma_id: int,
        prescriptions: list[dict[str, Any]],
        patient_id: int | None = None,
    ) -> str:
        """Add medication lines to a visit.

        Medicine, dosage, details and notes are encrypted at rest. Lines
        without a medicine are skipped.

        Args:
            clinical_proforma_id: The visit the prescription belongs to.
            prescriptions: One dict per medication, e.g.
                ``{"medicine": "...", "dosage": "...", "when": "night",
                "frequency": "daily", "duration": "2 weeks", "qty": "14"}``.
            patient_id: The patient's id, stored alongside each line.
        """
        start = time.monotonic()
        items = []
        for item in prescriptions:
            line = dict(item)
            line["clinical_proforma_id"] = clinical_proforma_id
            if patient_id is not None:
                line.setdefault("patient_id", patient_id)
            items.append(line)

        try:
            if repository.get_stored_row(CLINICAL_PROFORMA, clinical_proforma_id) is None:
                raise RepositoryError(
                    f"Clinical proforma not found: {clinical_proforma_id!r}"
                )
            created = repository.create_prescriptions(items)
        except RepositoryError as exc:
            return json.dumps({"status": "error", "message": str(exc)})

        if audit_logger is not None:
            audit_logger.log_record_access(
                ACTION_CREATE,
                PRESCRIPTION,
                None,
                tool_name="add_prescriptions",
                tool_input=prescriptions,
                duration_ms=(time.monotonic() - start) * 1000,
                metadata={
                    "clinical_proforma_id": clinical_proforma_id,
                    "created": len(created),
                    "skipped": len(items) - len(created),
                },
            )
        shown, warnings = present_records(created, PRESCRIPTION, registry)
        return json.dumps({
            "status": "created",
            "clinical_proforma_id": clinical_proforma_id,
            "created": len(shown),
            "skipped": len(items) - len(shown),
            "prescriptions": shown,
            "encryption_warnings": warnings,
        })

    @mcp.tool
    async def get_prescriptions(ctx: Context, clinical_proforma_id: int) -> str:
        """List the prescription lines of a visit, decrypted.

        Args:
            clinical_proforma_id: The visit's id.
        """
        start = time.monotonic()
        lines = repository.list_prescriptions(clinical_proforma_id)
        if audit_logger is not None:
            audit_logger.log_record_access(
                ACTION_READ,
                PRESCRIPTION,
                None,
                tool_name="get_prescriptions",
                duration_ms=(time.monotonic() - start) * 1000,
                metadata={
                    "clinical_proforma_id": clinical_proforma_id,
                    "returned": len(lines),
                },
            )
        shown, warnings = present_records(lines, PRESCRIPTION, registry)
        return json.dumps({
            "status": "ok",
            "clinical_proforma_id": clinical_proforma_id,
            "prescriptions": shown,
            "encryption_warnings": warnings,
        })

    @mcp.tool
    async def delete_prescription(ctx: Context, prescription_id: int) -> str:
        """Delete one prescription line.

        Args:
            prescription_id: The prescription line's id.
        """
        if not repository.delete_prescription(prescription_id):
            return json.dumps({
                "status": "not_found",
                "prescription_id": prescription_id,
                "message": "No prescription found with that id.",
            })

        if audit_logger is not None:
            audit_logger.log_record_access(
                ACTION_DELETE,
                PRESCRIPTION,
                prescription_id,
                tool_name="delete_prescription",
            )
        return json.dumps({"status": "deleted", "prescription_id": prescription_id})
