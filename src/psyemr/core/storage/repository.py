"""Records repository — CRUD for the four encryption-aware entities.

The repository mediates between row-shaped dicts and the SQLite database,
using :class:`RecordCodec` to encrypt registered fields on the way in and
decrypt them on the way out. Callers only ever see plaintext; they never
get an exception from the codec. Fields that fail to decrypt are returned
as stored and reported to the audit log.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from psyemr.core.crypto.records import RecordCodec
from psyemr.core.crypto.registry import (
    ADL_FILE,
    CLINICAL_PROFORMA,
    PATIENT,
    PRESCRIPTION,
)
from psyemr.core.storage.database import EMRDatabase
from psyemr.core.storage.models import ENTITY_TABLES, EntityTable

if TYPE_CHECKING:
    from psyemr.core.audit.logger import AuditLogger

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Raised when repository operations fail."""


class RecordsRepository:
    """CRUD repository for patients, visits, ADL files and prescriptions.

    Usage::

        db = EMRDatabase(":memory:")
        db.initialize()
        records = RecordCodec(FieldCodec(config), config.registry)
        repo = RecordsRepository(db, records)

        patient = repo.create_patient({"name": "Ravi Kumar", "sex": "M"})
        repo.get_patient(patient["id"])["name"]  # "Ravi Kumar"
    """

    def __init__(
        self,
        database: EMRDatabase,
        codec: RecordCodec,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._db = database
        self._codec = codec
        self._audit = audit_logger

    @property
    def database(self) -> EMRDatabase:
        return self._db

    @property
    def codec(self) -> RecordCodec:
        return self._codec

    # ------------------------------------------------------------------
    # Generic row handling
    # ------------------------------------------------------------------

    @staticmethod
    def _table(entity_type: str) -> EntityTable:
        try:
            return ENTITY_TABLES[entity_type]
        except KeyError:
            raise RepositoryError(f"Unknown entity type: {entity_type!r}") from None

    def _prepare(self, definition: EntityTable, data: Mapping[str, Any]) -> dict[str, Any]:
        """Map API names onto columns and drop anything the table lacks.

        An explicit column wins over its alias (``quantity`` over ``qty``).
        Lists are stored as comma-separated strings.
        """
        columns = set(definition.columns(self._codec.registry))
        prepared: dict[str, Any] = {}
        for key, value in data.items():
            column = definition.column_for(key)
            if column not in columns:
                continue
            if key != column and column in data:
                continue
            if isinstance(value, (list, tuple)):
                value = ",".join(str(v) for v in value)
            prepared[column] = value
        return prepared

    def _insert(
        self,
        entity_type: str,
        data: Mapping[str, Any],
        *,
        commit: bool = True,
    ) -> int:
        definition = self._table(entity_type)
        row = self._codec.encrypt_entity(entity_type, self._prepare(definition, data))
        conn = self._db.connection

        try:
            if row:
                columns = list(row)
                placeholders = ", ".join("?" for _ in columns)
                cursor = conn.execute(
                    f"INSERT INTO {definition.table} ({', '.join(columns)}) "
                    f"VALUES ({placeholders})",
                    [row[c] for c in columns],
                )
            else:
                cursor = conn.execute(f"INSERT INTO {definition.table} DEFAULT VALUES")
        except sqlite3.IntegrityError as exc:
            conn.rollback()
            raise RepositoryError(f"Cannot create {entity_type}: {exc}") from exc

        if commit:
            conn.commit()
        record_id = cursor.lastrowid
        logger.info("Created %s %d (%d fields)", entity_type, record_id, len(row))
        return record_id

    def _update(self, entity_type: str, record_id: int, changes: Mapping[str, Any]) -> bool:
        definition = self._table(entity_type)
        row = self._codec.encrypt_entity(entity_type, self._prepare(definition, changes))
        if not row:
            raise RepositoryError(f"No updatable fields given for {entity_type}")

        assignments = ", ".join(f"{c} = ?" for c in row)
        conn = self._db.connection
        try:
            cursor = conn.execute(
                f"UPDATE {definition.table} SET {assignments}, updated_at = datetime('now') "
                "WHERE id = ?",
                [*row.values(), record_id],
            )
        except sqlite3.IntegrityError as exc:
            conn.rollback()
            raise RepositoryError(f"Cannot update {entity_type} {record_id}: {exc}") from exc
        conn.commit()
        updated = cursor.rowcount > 0
        if updated:
            logger.info("Updated %s %d (%d fields)", entity_type, record_id, len(row))
        return updated

    def _decrypt_row(self, entity_type: str, row: Any) -> dict[str, Any]:
        """Decrypt a database row, reporting any field that fails."""
        fields = self._codec.registry.fields_for(entity_type)
        record, failures = self._codec.decrypt_object_report(dict(row), fields)
        if failures:
            names = [f.field for f in failures]
            logger.warning(
                "%d field(s) of %s %s could not be decrypted: %s",
                len(names),
                entity_type,
                record.get("id"),
                ", ".join(names),
            )
            if self._audit is not None:
                self._audit.log_decrypt_failures(entity_type, record.get("id"), names)
        return record

    def _fetch_one(self, entity_type: str, record_id: int) -> dict[str, Any] | None:
        definition = self._table(entity_type)
        row = self._db.connection.execute(
            f"SELECT * FROM {definition.table} WHERE id = ?", (record_id,)
        ).fetchone()
        if row is None:
            return None
        return self._decrypt_row(entity_type, row)

    def _fetch_many(
        self,
        entity_type: str,
        *,
        where: str = "",
        params: tuple[Any, ...] = (),
        order_by: str = "id DESC",
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        definition = self._table(entity_type)
        query = f"SELECT * FROM {definition.table}"
        if where:
            query += f" WHERE {where}"
        query += f" ORDER BY {order_by}"
        args = list(params)
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            args.extend([limit, offset])
        rows = self._db.connection.execute(query, args).fetchall()
        return [self._decrypt_row(entity_type, row) for row in rows]

    def _exists(self, entity_type: str, record_id: Any) -> bool:
        if record_id is None:
            return False
        definition = self._table(entity_type)
        row = self._db.connection.execute(
            f"SELECT 1 FROM {definition.table} WHERE id = ?", (record_id,)
        ).fetchone()
        return row is not None

    def get_stored_row(self, entity_type: str, record_id: int) -> dict[str, Any] | None:
        """Return a row exactly as stored (encrypted fields stay ciphertext)."""
        definition = self._table(entity_type)
        row = self._db.connection.execute(
            f"SELECT * FROM {definition.table} WHERE id = ?", (record_id,)
        ).fetchone()
        return dict(row) if row is not None else None

    def get_record(self, entity_type: str, record_id: int) -> dict[str, Any] | None:
        """Fetch and decrypt any entity record by type and id."""
        return self._fetch_one(entity_type, record_id)

    # ------------------------------------------------------------------
    # Patients
    # ------------------------------------------------------------------

    def create_patient(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Register a patient; sensitive fields are encrypted before insert.

        Returns:
            The stored patient, decrypted.
        """
        patient_id = self._insert(PATIENT, data)
        return self._fetch_one(PATIENT, patient_id)

    def get_patient(self, patient_id: int) -> dict[str, Any] | None:
        return self._fetch_one(PATIENT, patient_id)

    def list_patients(self, *, limit: int = 100, offset: int = 0) -> list[dict[str, Any]]:
        """List patients, newest first."""
        return self._fetch_many(PATIENT, limit=limit, offset=offset)

    def count_patients(self) -> int:
        row = self._db.connection.execute(
            f"SELECT COUNT(*) FROM {ENTITY_TABLES[PATIENT].table}"
        ).fetchone()
        return row[0]

    def update_patient(
        self, patient_id: int, changes: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        """Update a patient. Returns the updated patient, or None if not found."""
        if not self._update(PATIENT, patient_id, changes):
            return None
        return self._fetch_one(PATIENT, patient_id)

    def delete_patient(self, patient_id: int) -> bool:
        """Delete a patient together with their visits, ADL files and prescriptions.

        Returns:
            True if the patient was found and deleted.
        """
        if not self._exists(PATIENT, patient_id):
            return False

        conn = self._db.connection
        proformas = ENTITY_TABLES[CLINICAL_PROFORMA].table
        # Children first (FK references)
        conn.execute(
            f"DELETE FROM {ENTITY_TABLES[PRESCRIPTION].table} WHERE patient_id = ? "
            f"OR clinical_proforma_id IN (SELECT id FROM {proformas} WHERE patient_id = ?)",
            (patient_id, patient_id),
        )
        conn.execute(
            f"DELETE FROM {ENTITY_TABLES[ADL_FILE].table} WHERE patient_id = ?",
            (patient_id,),
        )
        conn.execute(f"DELETE FROM {proformas} WHERE patient_id = ?", (patient_id,))
        conn.execute(
            f"DELETE FROM {ENTITY_TABLES[PATIENT].table} WHERE id = ?", (patient_id,)
        )
        conn.commit()
        logger.info("Deleted patient %d and related records", patient_id)
        return True

    # ------------------------------------------------------------------
    # Clinical proformas (visits)
    # ------------------------------------------------------------------

    def create_clinical_proforma(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Record a visit for an existing patient.

        Raises:
            RepositoryError: If ``patient_id`` is missing or unknown.
        """
        patient_id = data.get("patient_id")
        if not self._exists(PATIENT, patient_id):
            raise RepositoryError(f"Patient not found: {patient_id!r}")
        proforma_id = self._insert(CLINICAL_PROFORMA, data)
        return self.get_clinical_proforma(proforma_id)

    def get_clinical_proforma(self, proforma_id: int) -> dict[str, Any] | None:
        """Fetch a visit, with the patient's decrypted name as ``patient_name``."""
        proforma = self._fetch_one(CLINICAL_PROFORMA, proforma_id)
        if proforma is None:
            return None
        patient = self._fetch_one(PATIENT, proforma["patient_id"])
        proforma["patient_name"] = patient.get("name") if patient else None
        return proforma

    def list_clinical_proformas(self, patient_id: int) -> list[dict[str, Any]]:
        """List a patient's visits, most recent first."""
        return self._fetch_many(
            CLINICAL_PROFORMA,
            where="patient_id = ?",
            params=(patient_id,),
            order_by="visit_date DESC, id DESC",
        )

    def update_clinical_proforma(
        self, proforma_id: int, changes: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        if not self._update(CLINICAL_PROFORMA, proforma_id, changes):
            return None
        return self.get_clinical_proforma(proforma_id)

    # ------------------------------------------------------------------
    # ADL files
    # ------------------------------------------------------------------

    def create_adl_file(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Create an ADL file for an existing patient (and optional visit).

        Raises:
            RepositoryError: If the patient or the referenced visit is unknown.
        """
        patient_id = data.get("patient_id")
        if not self._exists(PATIENT, patient_id):
            raise RepositoryError(f"Patient not found: {patient_id!r}")
        proforma_id = data.get("clinical_proforma_id")
        if proforma_id is not None and not self._exists(CLINICAL_PROFORMA, proforma_id):
            raise RepositoryError(f"Clinical proforma not found: {proforma_id!r}")
        adl_id = self._insert(ADL_FILE, data)
        return self._fetch_one(ADL_FILE, adl_id)

    def get_adl_file(self, adl_id: int) -> dict[str, Any] | None:
        return self._fetch_one(ADL_FILE, adl_id)

    def list_adl_files(self, patient_id: int) -> list[dict[str, Any]]:
        return self._fetch_many(ADL_FILE, where="patient_id = ?", params=(patient_id,))

    def update_adl_file(
        self, adl_id: int, changes: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        if not self._update(ADL_FILE, adl_id, changes):
            return None
        return self._fetch_one(ADL_FILE, adl_id)

    # ------------------------------------------------------------------
    # Prescriptions
    # ------------------------------------------------------------------

    @staticmethod
    def _with_medicine(data: Mapping[str, Any]) -> dict[str, Any]:
        # medicine is NOT NULL in practice: blank becomes "".
        prepared = dict(data)
        medicine = prepared.get("medicine")
        if medicine is None or not str(medicine).strip():
            prepared["medicine"] = ""
        return prepared

    def create_prescription(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Add one prescription line to a visit.

        Raises:
            RepositoryError: If ``clinical_proforma_id`` is missing or unknown.
        """
        proforma_id = data.get("clinical_proforma_id")
        if not proforma_id:
            raise RepositoryError("clinical_proforma_id is required")
        if not self._exists(CLINICAL_PROFORMA, proforma_id):
            raise RepositoryError(f"Clinical proforma not found: {proforma_id!r}")
        prescription_id = self._insert(PRESCRIPTION, self._with_medicine(data))
        return self._fetch_one(PRESCRIPTION, prescription_id)

    def create_prescriptions(self, items: list[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Add several prescription lines in one transaction.

        Entries without a ``clinical_proforma_id`` or a ``medicine`` are
        skipped.

        Raises:
            RepositoryError: If a line references an unknown patient or
                visit. No line of the batch is stored.

        Returns:
            The created prescriptions, decrypted, in input order.
        """
        if not isinstance(items, list) or not items:
            return []

        valid = [
            item for item in items
            if isinstance(item, Mapping)
            and item.get("clinical_proforma_id")
            and item.get("medicine")
        ]
        skipped = len(items) - len(valid)
        if skipped:
            logger.info("Skipped %d invalid prescription entries", skipped)
        if not valid:
            return []

        conn = self._db.connection
        try:
            ids = [self._insert(PRESCRIPTION, item, commit=False) for item in valid]
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        return [self._fetch_one(PRESCRIPTION, pid) for pid in ids]

    def get_prescription(self, prescription_id: int) -> dict[str, Any] | None:
        return self._fetch_one(PRESCRIPTION, prescription_id)

    def list_prescriptions(self, clinical_proforma_id: int) -> list[dict[str, Any]]:
        """List the prescription lines of one visit, in entry order."""
        return self._fetch_many(
            PRESCRIPTION,
            where="clinical_proforma_id = ?",
            params=(clinical_proforma_id,),
            order_by="id ASC",
        )

    def update_prescription(
        self, prescription_id: int, changes: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        if not self._update(PRESCRIPTION, prescription_id, changes):
            return None
        return self._fetch_one(PRESCRIPTION, prescription_id)

    def delete_prescription(self, prescription_id: int) -> bool:
        conn = self._db.connection
        cursor = conn.execute(
            f"DELETE FROM {ENTITY_TABLES[PRESCRIPTION].table} WHERE id = ?",
            (prescription_id,),
        )
        conn.commit()
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted prescription %d", prescription_id)
        return deleted
