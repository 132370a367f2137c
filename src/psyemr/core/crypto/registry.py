"""Field registry — which columns of which entity are encrypted at rest.

The registry is loaded once from ``encryption_fields.yaml`` and is
read-only afterwards. Its lists are authoritative: a column that is not
listed is never touched by the codec, however sensitive it looks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_PATH = Path(__file__).resolve().parent / "encryption_fields.yaml"

# Entity types every registry file must define.
PATIENT = "patient"
CLINICAL_PROFORMA = "clinical_proforma"
ADL_FILE = "adl_file"
PRESCRIPTION = "prescription"

ENTITY_TYPES = (PATIENT, CLINICAL_PROFORMA, ADL_FILE, PRESCRIPTION)


class RegistryError(Exception):
    """Raised when the field registry is missing or malformed."""


@dataclass(frozen=True)
class RegistryEntry:
    """Encrypted and numeric-excluded columns of one entity type."""

    entity_type: str
    encrypted: tuple[str, ...]
    numeric_excluded: tuple[str, ...] = ()


class FieldRegistry:
    """Immutable mapping of entity type to its encrypted columns."""

    def __init__(self, entries: Mapping[str, RegistryEntry]) -> None:
        self._entries = MappingProxyType(dict(entries))

    @property
    def entity_types(self) -> tuple[str, ...]:
        return tuple(self._entries)

    def entry(self, entity_type: str) -> RegistryEntry:
        try:
            return self._entries[entity_type]
        except KeyError:
            raise RegistryError(f"Unknown entity type: {entity_type!r}") from None

    def fields_for(self, entity_type: str) -> tuple[str, ...]:
        """Return the encrypted column names for an entity type."""
        return self.entry(entity_type).encrypted

    def numeric_excluded(self, entity_type: str) -> tuple[str, ...]:
        return self.entry(entity_type).numeric_excluded

    def is_encrypted(self, entity_type: str, column: str) -> bool:
        return column in self.entry(entity_type).encrypted

    def __contains__(self, entity_type: object) -> bool:
        return entity_type in self._entries

    def __repr__(self) -> str:
        counts = ", ".join(f"{k}={len(v.encrypted)}" for k, v in self._entries.items())
        return f"FieldRegistry({counts})"


def _string_list(value: Any, where: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise RegistryError(f"{where} must be a list of column names")
    if len(set(value)) != len(value):
        raise RegistryError(f"{where} contains duplicate column names")
    return tuple(value)


def parse_registry(data: Any) -> FieldRegistry:
    """Build a registry from already-parsed YAML data.

    Raises:
        RegistryError: If an entity is missing, an entry is malformed, or a
            column is listed both as encrypted and as numeric-excluded.
    """
    if not isinstance(data, dict):
        raise RegistryError("Registry must be a mapping of entity type to columns")

    missing = [name for name in ENTITY_TYPES if name not in data]
    if missing:
        raise RegistryError(f"Registry is missing entity types: {missing}")

    entries: dict[str, RegistryEntry] = {}
    for entity_type, body in data.items():
        if not isinstance(body, dict):
            raise RegistryError(f"Entry {entity_type!r} must be a mapping")
        encrypted = _string_list(body.get("encrypted"), f"{entity_type}.encrypted")
        excluded = _string_list(
            body.get("numeric_excluded"), f"{entity_type}.numeric_excluded"
        )
        overlap = sorted(set(encrypted) & set(excluded))
        if overlap:
            raise RegistryError(
                f"Numeric columns cannot be encrypted ({entity_type}): {overlap}"
            )
        entries[entity_type] = RegistryEntry(
            entity_type=entity_type,
            encrypted=encrypted,
            numeric_excluded=excluded,
        )
    return FieldRegistry(entries)


def load_registry(path: str | Path | None = None) -> FieldRegistry:
    """Load a field registry from a YAML file (the packaged one by default)."""
    path = Path(path).expanduser() if path else DEFAULT_REGISTRY_PATH
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise RegistryError(f"Cannot load field registry from {path}: {exc}") from exc

    registry = parse_registry(data)
    logger.info("Loaded field registry from %s: %r", path, registry)
    return registry


@lru_cache(maxsize=1)
def default_registry() -> FieldRegistry:
    """Return the packaged registry, loaded once per process."""
    return load_registry()
