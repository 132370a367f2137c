"""Tests for the field registry."""

from __future__ import annotations

import pytest
import yaml

from psyemr.core.crypto.registry import (
    ADL_FILE,
    CLINICAL_PROFORMA,
    ENTITY_TYPES,
    PATIENT,
    PRESCRIPTION,
    FieldRegistry,
    RegistryError,
    default_registry,
    load_registry,
    parse_registry,
)


def _minimal(**overrides) -> dict:
    data = {name: {"encrypted": ["notes"], "numeric_excluded": []} for name in ENTITY_TYPES}
    data.update(overrides)
    return data


class TestPackagedRegistry:
    def test_has_all_entity_types(self, registry: FieldRegistry):
        assert set(registry.entity_types) == {
            PATIENT, CLINICAL_PROFORMA, ADL_FILE, PRESCRIPTION,
        }

    def test_prescription_fields(self, registry: FieldRegistry):
        assert registry.fields_for(PRESCRIPTION) == ("medicine", "dosage", "details", "notes")

    def test_patient_identity_fields_encrypted(self, registry: FieldRegistry):
        for column in ("name", "contact_number", "father_name", "psy_no", "assigned_doctor_name"):
            assert registry.is_encrypted(PATIENT, column)

    def test_proforma_clinical_fields_encrypted(self, registry: FieldRegistry):
        for column in ("diagnosis", "icd_code", "mse_delusions", "treatment_prescribed"):
            assert registry.is_encrypted(CLINICAL_PROFORMA, column)

    def test_adl_field_count(self, registry: FieldRegistry):
        fields = registry.fields_for(ADL_FILE)
        assert "consultant_comments" in fields
        assert len(fields) == len(set(fields))

    @pytest.mark.parametrize("entity_type,column", [
        (PATIENT, "head_age"),
        (PATIENT, "head_income"),
        (PATIENT, "patient_income"),
        (PATIENT, "family_income"),
        (PATIENT, "income"),
        (PATIENT, "year_of_marriage"),
        (PATIENT, "no_of_children_male"),
        (PATIENT, "no_of_children_female"),
        (ADL_FILE, "family_history_father_age"),
        (ADL_FILE, "family_history_mother_death_age"),
        (ADL_FILE, "education_start_age"),
        (ADL_FILE, "sexual_menarche_age"),
        (ADL_FILE, "sexual_spouse_age"),
        (ADL_FILE, "development_weaning_age"),
    ])
    def test_numeric_columns_excluded(self, registry, entity_type, column):
        assert column in registry.numeric_excluded(entity_type)
        assert not registry.is_encrypted(entity_type, column)

    def test_unlisted_column_not_encrypted(self, registry: FieldRegistry):
        assert not registry.is_encrypted(PATIENT, "sex")

    def test_default_registry_is_cached(self):
        assert default_registry() is default_registry()

    def test_fields_are_immutable(self, registry: FieldRegistry):
        assert isinstance(registry.fields_for(PATIENT), tuple)
        with pytest.raises(TypeError):
            registry._entries["patient"] = None  # noqa: SLF001


class TestRegistryValidation:
    def test_unknown_entity_type_raises(self, registry: FieldRegistry):
        with pytest.raises(RegistryError, match="Unknown entity type"):
            registry.fields_for("invoice")

    def test_missing_entity_raises(self):
        data = _minimal()
        del data[PRESCRIPTION]
        with pytest.raises(RegistryError, match="missing entity types"):
            parse_registry(data)

    def test_numeric_column_cannot_be_encrypted(self):
        data = _minimal(patient={"encrypted": ["name", "head_age"], "numeric_excluded": ["head_age"]})
        with pytest.raises(RegistryError, match="head_age"):
            parse_registry(data)

    def test_duplicate_column_raises(self):
        data = _minimal(patient={"encrypted": ["name", "name"]})
        with pytest.raises(RegistryError, match="duplicate"):
            parse_registry(data)

    def test_non_list_raises(self):
        data = _minimal(patient={"encrypted": "name"})
        with pytest.raises(RegistryError, match="list of column names"):
            parse_registry(data)

    def test_non_mapping_raises(self):
        with pytest.raises(RegistryError):
            parse_registry(["patient"])


class TestLoadRegistry:
    def test_load_from_file(self, tmp_path):
        path = tmp_path / "fields.yaml"
        path.write_text(yaml.safe_dump(_minimal()))
        registry = load_registry(path)
        assert registry.fields_for(ADL_FILE) == ("notes",)

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(RegistryError, match="Cannot load"):
            load_registry(tmp_path / "nope.yaml")
