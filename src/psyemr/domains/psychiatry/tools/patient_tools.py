"""MCP tools for patient registration and lookup.

Patient identifiers, addresses and family details are encrypted at rest;
these tools only ever see and return plaintext. Every access is
audit-logged without field values.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from psyemr.core.audit.logger import (
    ACTION_CREATE,
    ACTION_DELETE,
    ACTION_READ,
    ACTION_UPDATE,
)
from psyemr.core.crypto.registry import PATIENT
from psyemr.core.storage.repository import RepositoryError
from psyemr.domains.psychiatry.domain_logic.presentation import (
    present_record,
    present_records,
)

if TYPE_CHECKING:
    from psyemr.core.audit.logger import AuditLogger
    from psyemr.core.storage.repository import RecordsRepository

logger = logging.getLogger(__name__)


def register_patient_tools(
    mcp: FastMCP,
    repository: RecordsRepository,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register patient tools on the MCP server."""
    registry = repository.codec.registry

    def _audit(action: str, record_id: int | None, tool_name: str, start: float, **kw) -> None:
        if audit_logger is not None:
            audit_logger.log_record_access(
                action,
                PATIENT,
                record_id,
                tool_name=tool_name,
                duration_ms=(time.monotonic() - start) * 1000,
                **kw,
            )

    @mcp.tool
    async def register_patient(ctx: Context, patient: dict[str, Any]) -> str:
        """Register a new patient.

        Sensitive fields (name, contact number, addresses, family details,
        clinic numbers) are encrypted before they are stored.

        Args:
            patient: Patient fields keyed by column name, e.g.
                ``{"name": "...", "sex": "M", "age": 34, "contact_number": "..."}``.
        """
        start = time.monotonic()
        try:
            created = repository.create_patient(patient)
        except RepositoryError as exc:
            return json.dumps({"status": "error", "message": str(exc)})

        _audit(ACTION_CREATE, created["id"], "register_patient", start, tool_input=patient)
        shown, warnings = present_record(created, PATIENT, registry)
        return json.dumps({
            "status": "created",
            "patient": shown,
            "encryption_warnings": warnings,
        })

    @mcp.tool
    async def get_patient(ctx: Context, patient_id: int) -> str:
        """Fetch one patient by id, with sensitive fields decrypted.

        Args:
            patient_id: The patient's id.
        """
        start = time.monotonic()
        patient = repository.get_patient(patient_id)
        if patient is None:
            return json.dumps({
                "status": "not_found",
                "patient_id": patient_id,
                "message": "No patient found with that id.",
            })

        _audit(ACTION_READ, patient_id, "get_patient", start)
        shown, warnings = present_record(patient, PATIENT, registry)
        return json.dumps({
            "status": "ok",
            "patient": shown,
            "encryption_warnings": warnings,
        })

    @mcp.tool
    async def list_patients(ctx: Context, limit: int = 50, offset: int = 0) -> str:
        """List registered patients, newest first.

        Args:
            limit: Maximum number of patients to return (1-500).
            offset: Number of patients to skip.
        """
        limit = max(1, min(limit, 500))
        offset = max(0, offset)
        start = time.monotonic()
        patients = repository.list_patients(limit=limit, offset=offset)
        _audit(
            ACTION_READ, None, "list_patients", start,
            metadata={"returned": len(patients), "limit": limit, "offset": offset},
        )
        shown, warnings = present_records(patients, PATIENT, registry)
        return json.dumps({
            "status": "ok",
            "total": repository.count_patients(),
            "limit": limit,
            "offset": offset,
            "patients": shown,
            "encryption_warnings": warnings,
        })

    @mcp.tool
    async def update_patient(
        ctx: Context,
        patient_id: int,
        changes: dict[str, Any],
    ) -> str:
        """Update fields of an existing patient.

        Args:
            patient_id: The patient's id.
            changes: Fields to change, keyed by column name.
        """
        start = time.monotonic()
        try:
            updated = repository.update_patient(patient_id, changes)
        except RepositoryError as exc:
            return json.dumps({"status": "error", "message": str(exc)})
        if updated is None:
            return json.dumps({
                "status": "not_found",
                "patient_id": patient_id,
                "message": "No patient found with that id.",
            })

        _audit(
            ACTION_UPDATE, patient_id, "update_patient", start,
            tool_input=changes, metadata={"fields": sorted(changes)},
        )
        shown, warnings = present_record(updated, PATIENT, registry)
        return json.dumps({
            "status": "updated",
            "patient": shown,
            "encryption_warnings": warnings,
        })

    @mcp.tool
    async def delete_patient(ctx: Context, patient_id: int, confirm: str = "") -> str:
        """Permanently delete a patient and all their visits, ADL files and prescriptions.

        Args:
            patient_id: The patient's id.
            confirm: Must be exactly 'DELETE' to proceed. Safety gate.
        """
        if confirm != "DELETE":
            return json.dumps({
                "status": "confirmation_required",
                "message": "Set confirm='DELETE' to permanently delete this patient.",
            })

        start = time.monotonic()
        if not repository.delete_patient(patient_id):
            return json.dumps({
                "status": "not_found",
                "patient_id": patient_id,
                "message": "No patient found with that id.",
            })

        _audit(ACTION_DELETE, patient_id, "delete_patient", start)
        logger.warning("Patient %d deleted via MCP tool", patient_id)
        return json.dumps({"status": "deleted", "patient_id": patient_id})
