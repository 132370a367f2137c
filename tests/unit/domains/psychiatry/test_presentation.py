"""Tests for masking undecrypted values before output."""

from __future__ import annotations

from psyemr.core.crypto.detection import DECRYPTION_FAILED_LABEL
from psyemr.core.crypto.registry import PATIENT, PRESCRIPTION
from psyemr.domains.psychiatry.domain_logic.presentation import (
    present_record,
    present_records,
)


class TestPresentRecord:
    def test_clean_record_unchanged(self, registry):
        record = {"id": 1, "name": "Ravi Kumar", "sex": "M"}
        shown, fields = present_record(record, PATIENT, registry)
        assert shown == record
        assert fields == []

    def test_undecrypted_field_masked(self, registry, other_key_codec):
        foreign = other_key_codec.encrypt_field("Ravi Kumar")
        shown, fields = present_record({"id": 1, "name": foreign}, PATIENT, registry)
        assert shown["name"] == DECRYPTION_FAILED_LABEL
        assert fields == ["name"]

    def test_unregistered_field_not_masked(self, registry, other_key_codec):
        foreign = other_key_codec.encrypt_field("x")
        shown, fields = present_record({"id": 1, "cr_no": foreign}, PATIENT, registry)
        assert shown["cr_no"] == foreign
        assert fields == []


class TestPresentRecords:
    def test_warnings_per_record(self, registry, other_key_codec):
        foreign = other_key_codec.encrypt_field("Lithium")
        shown, warnings = present_records(
            [{"id": 1, "medicine": "Sertraline"}, {"id": 2, "medicine": foreign}],
            PRESCRIPTION,
            registry,
        )
        assert [s["medicine"] for s in shown] == ["Sertraline", DECRYPTION_FAILED_LABEL]
        assert warnings == [{"id": 2, "fields": ["medicine"]}]
