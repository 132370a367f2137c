"""Apply the field codec to named fields of records and lists of records."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from psyemr.core.crypto.codec import CodecOutcome, FieldCodec
from psyemr.core.crypto.registry import FieldRegistry


@dataclass(frozen=True)
class FieldFailure:
    """A field whose stored value could not be decrypted."""

    field: str
    reason: str

def _has_value(value: Any) -> bool:
    return value is not None and value != ""

class RecordCodec:
    """Encrypts/decrypts a declared subset of fields on row-shaped dicts.

    Records are shallow-copied; fields not named, or named but empty, pass
    through untouched. Non-dict input comes back unchanged.

    Usage::

        records = RecordCodec(FieldCodec(config), config.registry)
        row = records.encrypt_entity("patient", {"name": "Ravi Kumar", "age": 34})
        records.decrypt_entity("patient", row)["name"]  # "Ravi Kumar"
    """

    def __init__(self, field_codec: FieldCodec, registry: FieldRegistry) -> None:
        self._codec = field_codec
        self._registry = registry

    @property
    def field_codec(self) -> FieldCodec:
        return self._codec

    @property
    def registry(self) -> FieldRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Objects
    # ------------------------------------------------------------------

    def encrypt_object(self, record: Any, field_names: Iterable[str]) -> Any:
        if not isinstance(record, Mapping):
            return record
        encrypted = dict(record)
        for name in field_names:
            if _has_value(encrypted.get(name)):
                encrypted[name] = self._codec.encrypt_field(encrypted[name])
        return encrypted

    def decrypt_object(self, record: Any, field_names: Iterable[str]) -> Any:
        if not isinstance(record, Mapping):
            return record
        decrypted = dict(record)
        for name in field_names:
            if _has_value(decrypted.get(name)):
                decrypted[name] = self._codec.decrypt_field(decrypted[name])
        return decrypted

    def decrypt_object_report(
        self, record: Any, field_names: Iterable[str]
    ) -> tuple[Any, list[FieldFailure]]:
        """Decrypt like :meth:`decrypt_object`, also listing failed fields.

        Values of failed fields are left as stored, exactly as the lenient
        path would leave them.
        """
        if not isinstance(record, Mapping):
            return record, []
        decrypted = dict(record)
        failures: list[FieldFailure] = []
        for name in field_names:
            if not _has_value(decrypted.get(name)):
                continue
            result = self._codec.try_decrypt(decrypted[name])
            decrypted[name] = result.value
            if result.outcome is CodecOutcome.FAILED:
                failures.append(FieldFailure(field=name, reason=result.reason or ""))
        return decrypted, failures

    # ------------------------------------------------------------------
    # Arrays
    # ------------------------------------------------------------------

    def encrypt_array(self, records: Any, field_names: Iterable[str]) -> Any:
        if not isinstance(records, list):
            return records
        names = tuple(field_names)
        return [self.encrypt_object(item, names) for item in records]

    def decrypt_array(self, records: Any, field_names: Iterable[str]) -> Any:
        if not isinstance(records, list):
            return records
        names = tuple(field_names)
        return [self.decrypt_object(item, names) for item in records]

    # ------------------------------------------------------------------
    # Registry-driven helpers
    # ------------------------------------------------------------------

    def encrypt_entity(self, entity_type: str, record: Any) -> Any:
        """Encrypt the registered fields of an entity record."""
        return self.encrypt_object(record, self._registry.fields_for(entity_type))

    def decrypt_entity(self, entity_type: str, record: Any) -> Any:
        """Decrypt the registered fields of an entity record."""
        return self.decrypt_object(record, self._registry.fields_for(entity_type))

    def decrypt_entities(self, entity_type: str, records: Any) -> Any:
        return self.decrypt_array(records, self._registry.fields_for(entity_type))
