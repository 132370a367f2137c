"""Table definitions for the four encryption-aware entities.

Encrypted columns come from the field registry; the definitions here list
everything else a table holds. Rows travel through the application as
plain dicts keyed by column name.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from psyemr.core.crypto.registry import (
    ADL_FILE,
    CLINICAL_PROFORMA,
    PATIENT,
    PRESCRIPTION,
    FieldRegistry,
)


@dataclass(frozen=True)
class EntityTable:
    """Columns of one entity table, apart from its encrypted ones."""

    entity_type: str                    # field registry key
    table: str
    text_columns: tuple[str, ...] = ()  # stored as plain TEXT
    integer_columns: tuple[str, ...] = ()
    real_columns: tuple[str, ...] = ()
    # column -> referenced table
    foreign_keys: dict[str, str] = field(default_factory=dict)
    # API field name -> column name
    aliases: dict[str, str] = field(default_factory=dict)
    required: tuple[str, ...] = ()

    @property
    def reference_columns(self) -> tuple[str, ...]:
        return tuple(self.foreign_keys)

    @property
    def plain_columns(self) -> tuple[str, ...]:
        """Columns never encrypted: references, plain text and numbers."""
        return (
            self.reference_columns
            + self.text_columns
            + self.integer_columns
            + self.real_columns
        )

    def encrypted_columns(self, registry: FieldRegistry) -> tuple[str, ...]:
        """Registered columns that get their own TEXT column in this table."""
        plain = set(self.plain_columns)
        return tuple(c for c in registry.fields_for(self.entity_type) if c not in plain)

    def columns(self, registry: FieldRegistry) -> tuple[str, ...]:
        """All writable columns (everything except id and timestamps)."""
        return self.plain_columns + self.encrypted_columns(registry)

    def column_for(self, name: str) -> str:
        """Map an API field name onto its column name."""
        return self.aliases.get(name, name)


PATIENT_TABLE = EntityTable(
    entity_type=PATIENT,
    table="registered_patient",
    text_columns=(
        "cr_no",
        "sex",
        "date",
        "category",
        "department",
        "case_complexity",
    ),
    integer_columns=(
        "age",
        "head_age",
        "year_of_marriage",
        "no_of_children_male",
        "no_of_children_female",
    ),
    real_columns=(
        "head_income",
        "patient_income",
        "family_income",
        "income",
    ),
)

CLINICAL_PROFORMA_TABLE = EntityTable(
    entity_type=CLINICAL_PROFORMA,
    table="clinical_proforma",
    text_columns=(
        "visit_date",
        "visit_type",
        "informant_present",
        "doctor_decision",
        "case_severity",
    ),
    foreign_keys={"patient_id": "registered_patient"},
    required=("patient_id",),
)

ADL_FILE_TABLE = EntityTable(
    entity_type=ADL_FILE,
    table="adl_files",
    text_columns=("adl_no", "file_status"),
    integer_columns=(
        "family_history_father_age",
        "family_history_father_death_age",
        "family_history_mother_age",
        "family_history_mother_death_age",
        "education_start_age",
        "sexual_menarche_age",
        "sexual_spouse_age",
        "development_weaning_age",
    ),
    foreign_keys={
        "patient_id": "registered_patient",
        "clinical_proforma_id": "clinical_proforma",
    },
    required=("patient_id",),
)

PRESCRIPTION_TABLE = EntityTable(
    entity_type=PRESCRIPTION,
    table="prescriptions",
    text_columns=("when_to_take", "frequency", "duration", "quantity"),
    foreign_keys={
        "patient_id": "registered_patient",
        "clinical_proforma_id": "clinical_proforma",
    },
    aliases={
        "qty": "quantity",
        "when": "when_to_take",
        "when_taken": "when_to_take",
    },
    required=("clinical_proforma_id",),
)

ENTITY_TABLES: dict[str, EntityTable] = {
    t.entity_type: t
    for t in (PATIENT_TABLE, CLINICAL_PROFORMA_TABLE, ADL_FILE_TABLE, PRESCRIPTION_TABLE)
}
