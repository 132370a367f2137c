"""Shared test fixtures for Psychiatry EMR tests."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from psyemr.core.crypto.codec import FieldCodec  # noqa: E402
from psyemr.core.crypto.config import EncryptionConfig  # noqa: E402
from psyemr.core.crypto.records import RecordCodec  # noqa: E402
from psyemr.core.crypto.registry import FieldRegistry, default_registry  # noqa: E402

TEST_SECRET = b"test-master-secret-0123456789abcdef"

# Far below production strength; keeps record-level tests fast.
FAST_KDF_ITERATIONS = 1_000


# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENCRYPTION_KEY", TEST_SECRET.decode())
    monkeypatch.setenv("KDF_ITERATIONS", str(FAST_KDF_ITERATIONS))
    monkeypatch.setenv("DB_PATH", ":memory:")
    monkeypatch.setenv("ENCRYPTION_FIELDS_PATH", "")


# ---------------------------------------------------------------------------
# Encryption fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def registry() -> FieldRegistry:
    return default_registry()


@pytest.fixture
def encryption_config(registry: FieldRegistry) -> EncryptionConfig:
    """Config with a fixed secret and a fast KDF."""
    return EncryptionConfig(
        master_secret=TEST_SECRET,
        registry=registry,
        kdf_iterations=FAST_KDF_ITERATIONS,
    )


@pytest.fixture
def field_codec(encryption_config: EncryptionConfig) -> FieldCodec:
    return FieldCodec(encryption_config)


@pytest.fixture
def record_codec(field_codec: FieldCodec, registry: FieldRegistry) -> RecordCodec:
    return RecordCodec(field_codec, registry)


@pytest.fixture
def other_key_codec(registry: FieldRegistry) -> FieldCodec:
    """A codec configured with a different master secret."""
    return FieldCodec(EncryptionConfig(
        master_secret=b"a-completely-different-secret",
        registry=registry,
        kdf_iterations=FAST_KDF_ITERATIONS,
    ))


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def emr_db(registry: FieldRegistry):
    """Create an in-memory EMRDatabase for testing."""
    from psyemr.core.storage.database import EMRDatabase

    db = EMRDatabase(":memory:", registry=registry)
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def audit_logger(emr_db):
    """Create an AuditLogger backed by in-memory SQLite."""
    from psyemr.core.audit.logger import AuditLogger

    return AuditLogger(emr_db)


@pytest.fixture
def records_repository(emr_db, record_codec, audit_logger):
    """Create a RecordsRepository backed by in-memory SQLite."""
    from psyemr.core.storage.repository import RecordsRepository

    return RecordsRepository(emr_db, record_codec, audit_logger)


@pytest.fixture
def patient(records_repository) -> dict:
    return records_repository.create_patient({
        "name": "Ravi Kumar",
        "sex": "M",
        "age": 34,
        "contact_number": "9876543210",
        "city": "Chandigarh",
        "head_age": 61,
        "family_income": 25000.0,
    })
