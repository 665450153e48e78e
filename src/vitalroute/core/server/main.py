"""VitalRoute server entry point: ``python -m vitalroute.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from vitalroute.core.config.settings import get_settings
from vitalroute.core.server.app import create_app


def _is_loopback_host(host: str) -> bool:
    if host in {"localhost"}:
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def run() -> None:
    """Start the VitalRoute MCP server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.vitalroute_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger = logging.getLogger(__name__)
    if not settings.vitalroute_allow_insecure_bind and not _is_loopback_host(
        settings.vitalroute_host
    ):
        raise RuntimeError(
            "Refusing to bind VitalRoute server to a non-loopback host without an auth layer. "
            "Set VITALROUTE_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    logger.info(
        "Starting VitalRoute server on %s:%d",
        settings.vitalroute_host,
        settings.vitalroute_port,
    )

    mcp = create_app()
    mcp.run(
        transport="streamable-http",
        host=settings.vitalroute_host,
        port=settings.vitalroute_port,
    )


if __name__ == "__main__":
    run()
