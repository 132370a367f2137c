"""Psychiatry EMR MCP Server — application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from psyemr.core.audit.logger import AuditLogger
from psyemr.core.config.settings import get_settings
from psyemr.core.crypto.codec import FieldCodec
from psyemr.core.crypto.config import EncryptionConfig
from psyemr.core.crypto.records import RecordCodec
from psyemr.core.storage.database import EMRDatabase
from psyemr.core.storage.repository import RecordsRepository
from psyemr.core.storage.schema_check import check_encrypted_columns
from psyemr.domains.psychiatry.tools.clinical_tools import register_clinical_tools
from psyemr.domains.psychiatry.tools.integrity_tools import register_integrity_tools
from psyemr.domains.psychiatry.tools.patient_tools import register_patient_tools
from psyemr.domains.psychiatry.tools.prescription_tools import (
    register_prescription_tools,
)

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def build_repository(
    encryption_config: EncryptionConfig | None = None,
    db_path: str | None = None,
) -> tuple[RecordsRepository, AuditLogger]:
    """Wire database, codecs, audit logger and repository together."""
    settings = get_settings()
    config = encryption_config or EncryptionConfig.from_settings(settings)

    database = EMRDatabase(db_path or settings.db_path, registry=config.registry)
    database.initialize()

    report = check_encrypted_columns(database, config.registry)
    if not report.ok:
        logger.warning("Encrypted column check found problems: %s", report.summary())

    audit_logger = AuditLogger(database)
    codec = RecordCodec(FieldCodec(config), config.registry)
    repository = RecordsRepository(database, codec, audit_logger)
    logger.info(
        "Records store initialized: %s (schema v%d, %r)",
        db_path or settings.db_path,
        database.get_schema_version(),
        config.registry,
    )
    return repository, audit_logger


def create_app(
    *,
    repository_override: RecordsRepository | None = None,
    audit_logger_override: AuditLogger | None = None,
) -> FastMCP:
    """Create and configure the Psychiatry EMR MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Builds the immutable encryption config from settings
    3. Initializes the encrypted records store and audit log
    4. Registers all tools
    """
    server = FastMCP(
        "Psychiatry EMR",
        instructions=(
            "Psychiatry department medical records: patient registration, "
            "clinical proformas, ADL history files and prescriptions. "
            "Sensitive fields are encrypted at rest and returned decrypted."
        ),
    )

    if repository_override is not None:
        repository = repository_override
        audit_logger = audit_logger_override
    else:
        repository, audit_logger = build_repository()

    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        registry = repository.codec.registry
        return {
            "status": "ok",
            "server": "Psychiatry EMR",
            "version": VERSION,
            "schema_version": repository.database.get_schema_version(),
            "patients_stored": repository.count_patients(),
            "encrypted_field_counts": {
                entity_type: len(registry.fields_for(entity_type))
                for entity_type in registry.entity_types
            },
            "kdf_iterations": repository.codec.field_codec.config.kdf_iterations,
            "decrypt_failures_logged": (
                audit_logger.count_decrypt_failures() if audit_logger is not None else None
            ),
        }

    register_patient_tools(server, repository, audit_logger)
    register_clinical_tools(server, repository, audit_logger)
    register_prescription_tools(server, repository, audit_logger)
    register_integrity_tools(server, repository, audit_logger)
    logger.info("Psychiatry EMR tools registered")

    return server


# Module-level instance for FastMCP discovery.
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
