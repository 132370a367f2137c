"""SQLite database management for the psychiatry records store.

Handles connection lifecycle, schema creation, and schema versioning. Entity
tables are generated from their :class:`EntityTable` definitions plus the
field registry, so every encrypted column is created as unbounded TEXT.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from psyemr.core.crypto.registry import (
    ADL_FILE,
    CLINICAL_PROFORMA,
    PATIENT,
    PRESCRIPTION,
    FieldRegistry,
    default_registry,
)
from psyemr.core.storage.models import ENTITY_TABLES, EntityTable

logger = logging.getLogger(__name__)

# Current schema version. The version table stays so later column changes
# can be applied as numbered migrations to existing record files.
SCHEMA_VERSION = 1

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_proforma_patient      ON clinical_proforma(patient_id);
CREATE INDEX IF NOT EXISTS idx_adl_patient           ON adl_files(patient_id);
CREATE INDEX IF NOT EXISTS idx_prescriptions_proforma ON prescriptions(clinical_proforma_id);
CREATE INDEX IF NOT EXISTS idx_prescriptions_patient ON prescriptions(patient_id);
"""

_SCHEMA_VERSION_TABLE = """
CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

# Audit log (record access + decryption failures, no PHI)
_AUDIT_LOG = """
CREATE TABLE IF NOT EXISTS audit_log (
    id              TEXT PRIMARY KEY,
    timestamp       TEXT NOT NULL DEFAULT (datetime('now')),
    action          TEXT NOT NULL,
    entity_type     TEXT,
    record_id       INTEGER,
    tool_name       TEXT,
    tool_input_hash TEXT,
    duration_ms     REAL,
    status          TEXT NOT NULL DEFAULT 'success',
    error_type      TEXT,
    metadata_json   TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_action    ON audit_log(action);
CREATE INDEX IF NOT EXISTS idx_audit_entity    ON audit_log(entity_type, record_id);
"""


def build_table_ddl(definition: EntityTable, registry: FieldRegistry) -> str:
    """Render the CREATE TABLE statement for one entity table."""
    lines = ["    id INTEGER PRIMARY KEY AUTOINCREMENT"]
    for column, parent in definition.foreign_keys.items():
        not_null = " NOT NULL" if column in definition.required else ""
        lines.append(f"    {column} INTEGER{not_null} REFERENCES {parent}(id)")
    lines.extend(f"    {c} TEXT" for c in definition.text_columns)
    # Ciphertext is at least 128 characters: encrypted columns are never VARCHAR.
    lines.extend(f"    {c} TEXT" for c in definition.encrypted_columns(registry))
    lines.extend(f"    {c} INTEGER" for c in definition.integer_columns)
    lines.extend(f"    {c} REAL" for c in definition.real_columns)
    lines.append("    created_at TEXT NOT NULL DEFAULT (datetime('now'))")
    lines.append("    updated_at TEXT NOT NULL DEFAULT (datetime('now'))")
    body = ",\n".join(lines)
    return f"CREATE TABLE IF NOT EXISTS {definition.table} (\n{body}\n);\n"


def build_schema(registry: FieldRegistry) -> str:
    """Entity tables in dependency order, their indexes, then the audit log."""
    tables = "\n".join(
        build_table_ddl(ENTITY_TABLES[entity_type], registry)
        for entity_type in (PATIENT, CLINICAL_PROFORMA, ADL_FILE, PRESCRIPTION)
    )
    return _SCHEMA_VERSION_TABLE + tables + _INDEXES + _AUDIT_LOG


class DatabaseError(Exception):
    """Raised when database operations fail."""


class EMRDatabase:
    """SQLite database manager for the psychiatry records store.

    Supports both file-based and in-memory (`:memory:`) databases.
    In-memory mode is used for testing.

    Usage::

        db = EMRDatabase(":memory:")
        db.initialize()
        conn = db.connection
        # ... use connection ...
        db.close()
    """

    def __init__(
        self,
        db_path: str = ":memory:",
        registry: FieldRegistry | None = None,
    ) -> None:
        """Initialize database manager.

        Args:
            db_path: Path to SQLite file, or ":memory:" for in-memory DB.
            registry: Field registry used to lay out encrypted columns.
                Defaults to the packaged registry.
        """
        self._db_path = db_path
        self._registry = registry or default_registry()
        self._conn: sqlite3.Connection | None = None

    @property
    def registry(self) -> FieldRegistry:
        return self._registry

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the active database connection.

        Raises:
            DatabaseError: If the database has not been initialized.
        """
        if self._conn is None:
            raise DatabaseError("Database not initialized. Call initialize() first.")
        return self._conn

    def initialize(self) -> None:
        """Create the database connection and ensure schema exists.

        For file-based databases, creates parent directories if needed.
        Idempotent: safe to call multiple times.
        """
        if self._conn is not None:
            return  # Already initialized

        if self._db_path != ":memory:":
            db_file = Path(self._db_path).expanduser()
            db_file.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(db_file), check_same_thread=False)
        else:
            self._conn = sqlite3.connect(":memory:", check_same_thread=False)

        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

        self._ensure_schema()
        logger.info("Records database initialized: %s", self._db_path)

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist and record the schema version."""
        conn = self.connection

        # Always applied: CREATE IF NOT EXISTS is idempotent
        conn.executescript(build_schema(self._registry))

        current_version = self.get_schema_version()
        if current_version < SCHEMA_VERSION:
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            conn.commit()
            logger.info(
                "Schema updated from version %d to %d", current_version, SCHEMA_VERSION
            )

    def get_schema_version(self) -> int:
        """Return the current schema version."""
        cursor = self.connection.execute("SELECT MAX(version) FROM schema_version")
        row = cursor.fetchone()
        return row[0] if row[0] is not None else 0

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("Records database closed")

    def __enter__(self) -> EMRDatabase:
        self.initialize()
        return self

    def __exit__(self, *args) -> None:
        self.close()
