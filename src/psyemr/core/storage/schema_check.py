"""Verify that every encrypted column can actually hold ciphertext.

Ciphertext is at least 128 characters even for a one-character value, so
a registered column must be unbounded TEXT. A bounded VARCHAR column has
to be widened before encryption is enabled for it, and a numeric column
can never be encrypted at all (it belongs in the registry's
``numeric_excluded`` list instead).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from psyemr.core.crypto.registry import FieldRegistry
from psyemr.core.storage.database import EMRDatabase
from psyemr.core.storage.models import ENTITY_TABLES

logger = logging.getLogger(__name__)

COLUMN_TEXT = "text"
COLUMN_VARCHAR = "varchar"
COLUMN_NUMERIC = "numeric"
COLUMN_MISSING = "missing"

_VARCHAR_RE = re.compile(r"^(VARCHAR|CHAR|CHARACTER|NCHAR|NVARCHAR|VARYING)", re.IGNORECASE)
_NUMERIC_RE = re.compile(r"(INT|REAL|FLOA|DOUB|NUMERIC|DECIMAL|BOOL)", re.IGNORECASE)


@dataclass(frozen=True)
class ColumnStatus:
    table: str
    column: str
    declared_type: str
    kind: str


@dataclass
class ColumnReport:
    """Per-column verdicts for every registered column of every entity table."""

    columns: list[ColumnStatus] = field(default_factory=list)

    def _of_kind(self, kind: str) -> list[ColumnStatus]:
        return [c for c in self.columns if c.kind == kind]

    @property
    def needs_widening(self) -> list[ColumnStatus]:
        return self._of_kind(COLUMN_VARCHAR)

    @property
    def errors(self) -> list[ColumnStatus]:
        """Numeric columns: encrypting them would fail the write."""
        return self._of_kind(COLUMN_NUMERIC)

    @property
    def missing(self) -> list[ColumnStatus]:
        return self._of_kind(COLUMN_MISSING)

    @property
    def ok(self) -> bool:
        return not (self.needs_widening or self.errors)

    def summary(self) -> dict[str, int]:
        return {
            "checked": len(self.columns),
            "text": len(self._of_kind(COLUMN_TEXT)),
            "needs_widening": len(self.needs_widening),
            "numeric_errors": len(self.errors),
            "missing": len(self.missing),
        }


def classify_column_type(declared_type: str) -> str:
    """Map a declared SQL column type onto a column kind."""
    declared = (declared_type or "").strip()
    if not declared or declared.upper() in {"TEXT", "CLOB"}:
        return COLUMN_TEXT
    if _VARCHAR_RE.match(declared):
        return COLUMN_VARCHAR
    if _NUMERIC_RE.search(declared):
        return COLUMN_NUMERIC
    return COLUMN_TEXT


def check_encrypted_columns(
    database: EMRDatabase,
    registry: FieldRegistry | None = None,
) -> ColumnReport:
    """Inspect the live schema for every column the registry encrypts."""
    registry = registry or database.registry
    conn = database.connection
    report = ColumnReport()

    for entity_type in registry.entity_types:
        definition = ENTITY_TABLES.get(entity_type)
        if definition is None:
            logger.warning("No table known for registry entity %r, skipping", entity_type)
            continue

        rows = conn.execute(f"PRAGMA table_info({definition.table})").fetchall()
        declared = {row["name"]: row["type"] for row in rows}

        for column in registry.fields_for(entity_type):
            if column not in declared:
                kind = COLUMN_MISSING
                declared_type = ""
            else:
                declared_type = declared[column]
                kind = classify_column_type(declared_type)
            report.columns.append(
                ColumnStatus(
                    table=definition.table,
                    column=column,
                    declared_type=declared_type,
                    kind=kind,
                )
            )

    for status in report.needs_widening:
        logger.warning(
            "Column %s.%s is %s; widen it to TEXT before storing ciphertext",
            status.table,
            status.column,
            status.declared_type,
        )
    for status in report.errors:
        logger.error(
            "Column %s.%s is %s and cannot hold ciphertext; "
            "list it under numeric_excluded instead",
            status.table,
            status.column,
            status.declared_type,
        )
    for status in report.missing:
        logger.info("Column %s.%s does not exist, skipping", status.table, status.column)

    return report
