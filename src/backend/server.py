"""Run the backend HTTP API (server mode)."""

from __future__ import annotations

import argparse
from typing import Optional, Sequence

import uvicorn

from src.backend.config import Settings
from src.backend.logging_utils import configure_logging, get_logger

DEFAULT_PORT = 5000

logger = get_logger(__name__)


def resolve_port(raw: Optional[str], fallback: int = DEFAULT_PORT) -> int:
    """Parse a TCP port, falling back with a warning when the value is unusable."""
    if raw is None or raw == "":
        return fallback
    try:
        port = int(raw)
    except ValueError:
        logger.warning("server_port_invalid value=%s fallback=%s", raw, DEFAULT_PORT)
        return DEFAULT_PORT
    if not 0 < port < 65536:
        logger.warning("server_port_out_of_range value=%s fallback=%s", raw, DEFAULT_PORT)
        return DEFAULT_PORT
    return port


def main(argv: Optional[Sequence[str]] = None) -> None:
    configure_logging()
    settings = Settings.from_env()
    parser = argparse.ArgumentParser(description="Vocal session backend HTTP API.")
    parser.add_argument("--host", default=settings.server_host, help="Bind address.")
    parser.add_argument(
        "--port",
        default=None,
        help=f"Listen port (default {settings.server_port}).",
    )
    parser.add_argument("--reload", action="store_true", help="Reload on code changes.")
    args = parser.parse_args(argv)
    port = resolve_port(args.port, fallback=settings.server_port)
    logger.info("server_starting host=%s port=%s", args.host, port)
    uvicorn.run(
        "src.backend.main:app",
        host=args.host,
        port=port,
        reload=args.reload,
        log_config=None,
    )


if __name__ == "__main__":
    main()
