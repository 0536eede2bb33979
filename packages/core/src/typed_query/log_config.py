"""
Logger setup per execution mode.

* test: DEBUG, written to a temporary file so test output stays clean.
* development: DEBUG, pretty single-line output on stdout.
* production: INFO, one JSON object per line on stdout.

Structured data travels in ``extra`` (e.g. the dispatcher logs ``query``,
``query_args`` and ``duration_ms`` for every statement); both formatters
render it.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import tempfile
from datetime import datetime, timezone
from typing import IO, TYPE_CHECKING, Any

from .config import ExecutionMode, QuerySettings

if TYPE_CHECKING:
    from pathlib import Path

LOGGER_NAME = "typed_query"

_RESERVED = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
) | {"message", "asctime", "taskName"}


def _extras(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED}


class PrettyLogFormatter(logging.Formatter):
    """``▸ message  key=value ...`` for humans."""

    def format(self, record: logging.LogRecord) -> str:
        parts = [f"▸ {record.getMessage()}"]
        for key, value in _extras(record).items():
            parts.append(f"{key}={value!r}")
        line = "  ".join(parts)
        if record.levelno >= logging.WARNING:
            line = f"{record.levelname} {line}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class JsonLogFormatter(logging.Formatter):
    """One JSON document per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_extras(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def default_test_log_path() -> Path:
    from pathlib import Path

    return Path(tempfile.gettempdir()) / f"typed_query-test-{os.getpid()}.log"


def configure_logging(
    settings: QuerySettings | None = None,
    *,
    stream: IO[str] | None = None,
) -> logging.Handler:
    """
    Attach a handler to the ``typed_query`` logger according to *settings*.

    Replaces any handler previously installed by this function.  Returns
    the handler so callers can inspect or remove it.
    """
    settings = settings or QuerySettings.from_env()
    logger = logging.getLogger(LOGGER_NAME)

    for existing in list(logger.handlers):
        if getattr(existing, "_typed_query_handler", False):
            logger.removeHandler(existing)
            existing.close()

    handler: logging.Handler
    if stream is not None:
        handler = logging.StreamHandler(stream)
    elif settings.mode is ExecutionMode.TEST:
        handler = logging.FileHandler(default_test_log_path(), encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stdout)

    formatter: logging.Formatter = (
        JsonLogFormatter()
        if settings.effective_log_format == "json"
        else PrettyLogFormatter()
    )
    handler.setFormatter(formatter)
    handler._typed_query_handler = True  # type: ignore[attr-defined]

    logger.addHandler(handler)
    logger.setLevel(settings.effective_log_level)
    return handler
