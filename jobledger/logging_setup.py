from __future__ import annotations

import logging
import os
import sys
from typing import IO

PACKAGE_LOGGER = "jobledger"
LOG_LEVEL_ENV = "JOBLEDGER_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_configured = False


def resolve_level(value: int | str | None = None) -> int:
    """Map a level name, number or ``None`` (read the env) to a logging level."""
    if value is None:
        value = os.getenv(LOG_LEVEL_ENV)
    if isinstance(value, int):
        return value
    if not value or not value.strip():
        return logging.INFO
    normalized = value.strip().upper()
    if normalized.isdigit():
        return int(normalized)
    level = logging.getLevelName(normalized)
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: int | str | None = None, stream: IO[str] | None = None) -> None:
    global _configured
    if _configured:
        return

    resolved = resolve_level(level)
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.handlers = [
        handler
        for handler in package_logger.handlers
        if not isinstance(handler, logging.NullHandler)
    ]
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
    package_logger.addHandler(handler)
    package_logger.setLevel(resolved)
    package_logger.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    if not _configured and not package_logger.handlers:
        package_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)
