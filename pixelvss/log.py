"""
Logging utilities for pixelvss.

Modules log through ``get_logger(__name__)``. Scripts call
``configure_logging()`` once at startup to attach a handler to the package
logger, either human-readable or JSON lines.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional, Union

PACKAGE_LOGGER = "pixelvss"

# Extra fields that formatters pick up when passed via `extra=`
CONTEXT_FIELDS = ("phase", "row", "query", "count", "elapsed_ms")


class StructuredFormatter(logging.Formatter):
    """Formatter that outputs one JSON object per log line."""

    def __init__(self, include_timestamp: bool = True):
        super().__init__()
        self.include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_timestamp:
            log_entry["timestamp"] = datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat()

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Format: TIMESTAMP - LOGGER - LEVEL - MESSAGE [phase=X count=Y]
    """

    def __init__(self, include_timestamp: bool = True):
        if include_timestamp:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        else:
            fmt = "%(name)s - %(levelname)s - %(message)s"
        super().__init__(fmt)

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)

        context_parts = []
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                context_parts.append(f"{field}={value}")

        if context_parts:
            return f"{base} [{' '.join(context_parts)}]"
        return base


def get_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)
        level: Optional logging level override

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Corpus loaded", extra={"phase": "ingest", "count": 60000})
    """
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level)
    return logger


def configure_logging(
    level: Union[int, str] = logging.INFO,
    include_timestamp: bool = True,
    structured: bool = False,
) -> None:
    """
    Attach a stderr handler to the pixelvss package logger.

    Calling it again only updates the level; handlers are not duplicated.

    Args:
        level: Logging level, as int or name ("DEBUG", "INFO", ...)
        include_timestamp: Whether to include timestamps
        structured: JSON lines if True, human-readable otherwise
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    pkg_logger = logging.getLogger(PACKAGE_LOGGER)
    pkg_logger.setLevel(level)

    if not pkg_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        if structured:
            formatter: logging.Formatter = StructuredFormatter(include_timestamp=include_timestamp)
        else:
            formatter = HumanReadableFormatter(include_timestamp=include_timestamp)
        handler.setFormatter(formatter)
        pkg_logger.addHandler(handler)

    for handler in pkg_logger.handlers:
        handler.setLevel(level)
