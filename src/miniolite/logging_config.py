"""Structured logging configuration for miniolite.

The transport and client attach request details to their records as
``extra`` fields (see EXTRA_FIELDS). Both formatters render them: as JSON
keys, or as ``key=value`` pairs after the text message.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO

EXTRA_FIELDS = ("operation", "method", "path", "status", "duration_ms")

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def request_extras(record: logging.LogRecord) -> dict[str, object]:
    """Return the request extras present on ``record``, in EXTRA_FIELDS order."""
    extras = {}
    for key in EXTRA_FIELDS:
        val = getattr(record, key, None)
        if val is not None:
            extras[key] = val
    return extras


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects.

    Fields: timestamp, level, logger, message, plus any request extras.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(request_extras(record))
        return json.dumps(entry, default=str)


class RequestTextFormatter(logging.Formatter):
    """Human-readable lines with request extras appended as ``key=value``."""

    def __init__(self) -> None:
        super().__init__(TEXT_FORMAT)

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        extras = request_extras(record)
        if not extras:
            return line
        return line + " " + " ".join(f"{key}={val}" for key, val in extras.items())


def configure_logging(level: str = "INFO", fmt: str = "text", stream: IO[str] | None = None) -> None:
    """Configure the ``miniolite`` logger with the given level and format.

    Only the library's own logger is touched, so applications keep control
    of the root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        fmt: Format type: 'text' for human-readable, 'json' for structured.
        stream: Where to write; defaults to stderr.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logger = logging.getLogger("miniolite")
    logger.setLevel(numeric_level)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter() if fmt == "json" else RequestTextFormatter())
    logger.addHandler(handler)
