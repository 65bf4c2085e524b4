"""
Logging setup for the Flask app and the importer worker.

Two line formats are supported through ``LOG_FORMAT``:

* ``text``: ``2026-01-06T14:05:52Z [leadbook] INFO message``
* ``json``: one JSON object per line, including any ``importer_*`` values
  passed through ``extra=`` so batch ids survive into log aggregation.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from flask import Flask

HANDLER_NAME = "leadbook-console"
_STRUCTURED_PREFIX = "importer_"


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _structured_fields(record: logging.LogRecord) -> dict[str, object]:
    return {key: value for key, value in record.__dict__.items() if key.startswith(_STRUCTURED_PREFIX)}


class TextFormatter(logging.Formatter):
    """ISO8601 UTC timestamps with a bracketed source tag."""

    def __init__(self, source: str = "leadbook"):
        self.source = source
        super().__init__()

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        fields = _structured_fields(record)
        if fields:
            rendered = " ".join(f"{key}={value}" for key, value in sorted(fields.items()))
            message = f"{message} [{rendered}]"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return f"{_timestamp()} [{self.source}] {record.levelname} {message}"


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "timestamp": _timestamp(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_structured_fields(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _resolve_level(value: object) -> int:
    if isinstance(value, int):
        return value
    level = logging.getLevelName(str(value or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(app: Flask) -> None:
    """
    Attach a single console handler to ``app.logger`` and quiet noisy loggers.

    Safe to call repeatedly; the handler is replaced rather than duplicated so
    tests can re-run it after changing ``LOG_LEVEL``.
    """
    level = _resolve_level(app.config.get("LOG_LEVEL", "INFO"))
    log_format = str(app.config.get("LOG_FORMAT", "text")).lower()

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(HANDLER_NAME)
    handler.setLevel(level)
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(TextFormatter())

    for existing in list(app.logger.handlers):
        if existing.get_name() == HANDLER_NAME:
            app.logger.removeHandler(existing)
    app.logger.addHandler(handler)
    app.logger.setLevel(level)

    # Pipeline modules log through their module loggers outside an app context
    package_logger = logging.getLogger("leadbook")
    for existing in list(package_logger.handlers):
        if existing.get_name() == HANDLER_NAME:
            package_logger.removeHandler(existing)
    package_logger.addHandler(handler)
    package_logger.setLevel(level)

    if not app.config.get("SQLALCHEMY_ECHO", False):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
