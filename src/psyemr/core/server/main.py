"""Psychiatry EMR server entry point — ``python -m psyemr.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from psyemr.core.config.settings import get_settings
from psyemr.core.server.app import create_app


def _is_loopback_host(host: str) -> bool:
    if host in {"localhost"}:
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def run() -> None:
    """Start the Psychiatry EMR MCP server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.emr_log_level.upper(), logging.INFO))

    logger = logging.getLogger(__name__)
    if not settings.emr_allow_insecure_bind and not _is_loopback_host(settings.emr_host):
        raise RuntimeError(
            "Refusing to bind the EMR server to a non-loopback host without an auth layer. "
            "Set EMR_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    logger.info(
        "Starting Psychiatry EMR server on %s:%d",
        settings.emr_host,
        settings.emr_port,
    )

    mcp = create_app()
    mcp.run(
        transport="streamable-http",
        host=settings.emr_host,
        port=settings.emr_port,
    )


if __name__ == "__main__":
    run()
