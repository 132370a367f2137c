"""Audit logger — PHI-free record access and decryption-failure trail.

Records every create/read/update/delete of an entity record, plus every
field that failed to decrypt on read. Entries never contain field values:

* ``tool_input_hash`` — SHA-256 of canonical JSON of the tool input.
* ``metadata``        — field names and counts only.

Decryption failures are otherwise silent (the codec hands back the stored
value), so this table is where operators find them.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from psyemr.core.storage.database import EMRDatabase

logger = logging.getLogger(__name__)

ACTION_CREATE = "record_create"
ACTION_READ = "record_read"
ACTION_UPDATE = "record_update"
ACTION_DELETE = "record_delete"
ACTION_DECRYPT_FAILURE = "decrypt_failure"


# ---------------------------------------------------------------------------
# Input hashing
# ---------------------------------------------------------------------------

def _hash_input(data: Any) -> str:
    """SHA-256 hash of canonical JSON — no PHI stored in audit logs.

    Args:
        data: Tool input to hash. Must be JSON-serializable.

    Returns:
        Hex-encoded SHA-256 digest, or empty string on failure.
    """
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()
    except (TypeError, ValueError):
        return ""


# ---------------------------------------------------------------------------
# AuditEvent dataclass
# ---------------------------------------------------------------------------

@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str                          # one of the ACTION_* constants
    entity_type: str | None = None       # 'patient' | 'clinical_proforma' | ...
    record_id: int | None = None
    tool_name: str = ""
    tool_input_hash: str = ""
    duration_ms: float | None = None
    status: str = "success"              # 'success' | 'failure'
    error_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# AuditLogger
# ---------------------------------------------------------------------------

class AuditLogger:
    """Records audit events to the ``audit_log`` SQLite table.

    All writes are committed immediately so no audit entry is lost on crash.

    Usage::

        audit = AuditLogger(database)
        audit.log_record_access(
            "record_read", "patient", 12, tool_name="get_patient",
        )
    """

    def __init__(self, database: EMRDatabase) -> None:
        self._db = database

    # ---------------------------------------------------------------
    # Write
    # ---------------------------------------------------------------

    def log_event(self, event: AuditEvent) -> str:
        """Insert an audit event and return its UUID.

        Returns:
            The generated event ID, or an empty string if the write failed.
        """
        event_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()

        metadata_json = (
            json.dumps(event.metadata, separators=(",", ":"))
            if event.metadata
            else None
        )

        try:
            conn = self._db.connection
            conn.execute(
                """INSERT INTO audit_log
                   (id, timestamp, action, entity_type, record_id, tool_name,
                    tool_input_hash, duration_ms, status, error_type, metadata_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    event_id,
                    now,
                    event.action,
                    event.entity_type,
                    event.record_id,
                    event.tool_name or None,
                    event.tool_input_hash or None,
                    event.duration_ms,
                    event.status,
                    event.error_type,
                    metadata_json,
                ),
            )
            conn.commit()
        except Exception:
            logger.exception("Failed to write audit event — event lost")
            return ""

        return event_id

    def log_record_access(
        self,
        action: str,
        entity_type: str,
        record_id: int | None,
        *,
        tool_name: str = "",
        tool_input: Any = None,
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log one access to an entity record.

        Args:
            action: ``record_create``, ``record_read``, ``record_update``
                or ``record_delete``.
            entity_type: Registry name of the entity.
            record_id: Primary key of the record, if known.
            tool_name: Tool or caller that touched the record.
            tool_input: Input data (hashed, never stored raw).
            duration_ms: Execution time in milliseconds.
            status: 'success' or 'failure'.
            error_type: Exception class name on failure.
            metadata: Additional non-PHI metadata.

        Returns:
            The generated event ID.
        """
        return self.log_event(AuditEvent(
            action=action,
            entity_type=entity_type,
            record_id=record_id,
            tool_name=tool_name,
            tool_input_hash=_hash_input(tool_input) if tool_input else "",
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata=metadata or {},
        ))

    def log_decrypt_failures(
        self,
        entity_type: str,
        record_id: int | None,
        fields: list[str],
    ) -> str:
        """Log the fields of one record that came back undecrypted."""
        return self.log_event(AuditEvent(
            action=ACTION_DECRYPT_FAILURE,
            entity_type=entity_type,
            record_id=record_id,
            status="failure",
            error_type="DecryptionFailed",
            metadata={"fields": sorted(fields), "count": len(fields)},
        ))

    # ---------------------------------------------------------------
    # Read
    # ---------------------------------------------------------------

    def get_events(
        self,
        *,
        action: str | None = None,
        entity_type: str | None = None,
        record_id: int | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Query audit events with optional filters.

        Returns:
            List of event dicts, newest first.
        """
        conditions: list[str] = []
        params: list[Any] = []

        if action:
            conditions.append("action = ?")
            params.append(action)
        if entity_type:
            conditions.append("entity_type = ?")
            params.append(entity_type)
        if record_id is not None:
            conditions.append("record_id = ?")
            params.append(record_id)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        rows = self._db.connection.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def count_events(self, *, since: str | None = None) -> int:
        """Count total audit events, optionally since a timestamp."""
        if since:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE timestamp >= ?", (since,)
            ).fetchone()
        else:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log"
            ).fetchone()
        return row[0]

    def count_decrypt_failures(self, *, entity_type: str | None = None) -> int:
        """Count records that had at least one field fail to decrypt."""
        if entity_type:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE action = ? AND entity_type = ?",
                (ACTION_DECRYPT_FAILURE, entity_type),
            ).fetchone()
        else:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE action = ?",
                (ACTION_DECRYPT_FAILURE,),
            ).fetchone()
        return row[0]
