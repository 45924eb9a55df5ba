"""Application entry point for the QuizGuard monitoring service."""

from __future__ import annotations

import os

from quizguard.constants.network_constants import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    HOST_ENV_VAR,
    PORT_ENV_VAR,
)
from quizguard.core.quiz_monitor import QuizMonitor
from quizguard.server.api_server import start_api_server
from quizguard.utils.logging_config import configure_logging


def _resolve_address() -> tuple[str, int]:
    host = os.environ.get(HOST_ENV_VAR, DEFAULT_HOST)
    raw_port = os.environ.get(PORT_ENV_VAR)
    try:
        port = int(raw_port) if raw_port else DEFAULT_PORT
    except ValueError as exc:
        raise SystemExit(f"{PORT_ENV_VAR} must be an integer, got {raw_port!r}") from exc
    return host, port


def main() -> None:
    """Initialize logging and serve the monitoring API until interrupted."""
    logger = configure_logging()
    host, port = _resolve_address()
    logger.info("Starting QuizGuard on %s:%s", host, port)

    monitor = QuizMonitor()
    server_thread = start_api_server(monitor=monitor, host=host, port=port)
    try:
        server_thread.join()
    except KeyboardInterrupt:
        logger.info("Shutting down QuizGuard")


if __name__ == "__main__":
    main()
