"""MCP tools for clinical proformas (visits) and ADL history files."""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from psyemr.core.audit.logger import ACTION_CREATE, ACTION_READ, ACTION_UPDATE
from psyemr.core.crypto.registry import ADL_FILE, CLINICAL_PROFORMA
from psyemr.core.storage.repository import RepositoryError
from psyemr.domains.psychiatry.domain_logic.presentation import (
    present_record,
    present_records,
)

if TYPE_CHECKING:
    from psyemr.core.audit.logger import AuditLogger
    from psyemr.core.storage.repository import RecordsRepository

logger = logging.getLogger(__name__)


def register_clinical_tools(
    mcp: FastMCP,
    repository: RecordsRepository,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register clinical proforma and ADL file tools on the MCP server."""
    registry = repository.codec.registry

    def _audit(
        action: str,
        entity_type: str,
        record_id: int | None,
        tool_name: str,
        start: float,
        **kw,
    ) -> None:
        if audit_logger is not None:
            audit_logger.log_record_access(
                action,
                entity_type,
                record_id,
                tool_name=tool_name,
                duration_ms=(time.monotonic() - start) * 1000,
                **kw,
            )

    # ------------------------------------------------------------------
    # Clinical proformas
    # ------------------------------------------------------------------

    @mcp.tool
    async def record_clinical_proforma(ctx: Context, proforma: dict[str, Any]) -> str:
        """Record a clinical proforma (visit) for a registered patient.

        Complaints, history, mental state examination and diagnosis fields
        are encrypted before they are stored.

        Args:
            proforma: Visit fields keyed by column name. Must include
                ``patient_id``.
        """
        start = time.monotonic()
        try:
            created = repository.create_clinical_proforma(proforma)
        except RepositoryError as exc:
            return json.dumps({"status": "error", "message": str(exc)})

        _audit(
            ACTION_CREATE, CLINICAL_PROFORMA, created["id"],
            "record_clinical_proforma", start, tool_input=proforma,
        )
        shown, warnings = present_record(created, CLINICAL_PROFORMA, registry)
        return json.dumps({
            "status": "created",
            "clinical_proforma": shown,
            "encryption_warnings": warnings,
        })

    @mcp.tool
    async def get_clinical_proforma(ctx: Context, proforma_id: int) -> str:
        """Fetch one clinical proforma by id, with fields decrypted.

        Args:
            proforma_id: The proforma's id.
        """
        start = time.monotonic()
        proforma = repository.get_clinical_proforma(proforma_id)
        if proforma is None:
            return json.dumps({
                "status": "not_found",
                "proforma_id": proforma_id,
                "message": "No clinical proforma found with that id.",
            })

        _audit(ACTION_READ, CLINICAL_PROFORMA, proforma_id, "get_clinical_proforma", start)
        shown, warnings = present_record(proforma, CLINICAL_PROFORMA, registry)
        return json.dumps({
            "status": "ok",
            "clinical_proforma": shown,
            "encryption_warnings": warnings,
        })

    @mcp.tool
    async def update_clinical_proforma(
        ctx: Context,
        proforma_id: int,
        changes: dict[str, Any],
    ) -> str:
        """Update fields of an existing clinical proforma.

        Args:
            proforma_id: The proforma's id.
            changes: Fields to change, keyed by column name.
        """
        start = time.monotonic()
        try:
            updated = repository.update_clinical_proforma(proforma_id, changes)
        except RepositoryError as exc:
            return json.dumps({"status": "error", "message": str(exc)})
        if updated is None:
            return json.dumps({
                "status": "not_found",
                "proforma_id": proforma_id,
                "message": "No clinical proforma found with that id.",
            })

        _audit(
            ACTION_UPDATE, CLINICAL_PROFORMA, proforma_id, "update_clinical_proforma",
            start, tool_input=changes, metadata={"fields": sorted(changes)},
        )
        shown, warnings = present_record(updated, CLINICAL_PROFORMA, registry)
        return json.dumps({
            "status": "updated",
            "clinical_proforma": shown,
            "encryption_warnings": warnings,
        })

    @mcp.tool
    async def list_patient_visits(ctx: Context, patient_id: int) -> str:
        """List a patient's clinical proformas, most recent first.

        Args:
            patient_id: The patient's id.
        """
        start = time.monotonic()
        visits = repository.list_clinical_proformas(patient_id)
        _audit(
            ACTION_READ, CLINICAL_PROFORMA, None, "list_patient_visits", start,
            metadata={"patient_id": patient_id, "returned": len(visits)},
        )
        shown, warnings = present_records(visits, CLINICAL_PROFORMA, registry)
        return json.dumps({
            "status": "ok",
            "patient_id": patient_id,
            "visit_count": len(shown),
            "visits": shown,
            "encryption_warnings": warnings,
        })

    # ------------------------------------------------------------------
    # ADL files
    # ------------------------------------------------------------------

    @mcp.tool
    async def save_adl_file(
        ctx: Context,
        adl: dict[str, Any],
        adl_id: int | None = None,
    ) -> str:
        """Create an ADL (detailed psychiatric history) file, or update one.

        Args:
            adl: ADL fields keyed by column name. New files must include
                ``patient_id`` and may reference ``clinical_proforma_id``.
            adl_id: Id of an existing ADL file to update. Omit to create.
        """
        start = time.monotonic()
        try:
            if adl_id is None:
                saved = repository.create_adl_file(adl)
                action, status = ACTION_CREATE, "created"
            else:
                saved = repository.update_adl_file(adl_id, adl)
                action, status = ACTION_UPDATE, "updated"
        except RepositoryError as exc:
            return json.dumps({"status": "error", "message": str(exc)})
        if saved is None:
            return json.dumps({
                "status": "not_found",
                "adl_id": adl_id,
                "message": "No ADL file found with that id.",
            })

        _audit(
            action, ADL_FILE, saved["id"], "save_adl_file", start,
            tool_input=adl, metadata={"fields": len(adl)},
        )
        shown, warnings = present_record(saved, ADL_FILE, registry)
        return json.dumps({
            "status": status,
            "adl_file": shown,
            "encryption_warnings": warnings,
        })

    @mcp.tool
    async def get_adl_file(ctx: Context, adl_id: int) -> str:
        """Fetch one ADL file by id, with fields decrypted.

        Args:
            adl_id: The ADL file's id.
        """
        start = time.monotonic()
        adl = repository.get_adl_file(adl_id)
        if adl is None:
            return json.dumps({
                "status": "not_found",
                "adl_id": adl_id,
                "message": "No ADL file found with that id.",
            })

        _audit(ACTION_READ, ADL_FILE, adl_id, "get_adl_file", start)
        shown, warnings = present_record(adl, ADL_FILE, registry)
        return json.dumps({
            "status": "ok",
            "adl_file": shown,
            "encryption_warnings": warnings,
        })
