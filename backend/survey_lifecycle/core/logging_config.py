"""Logging for the survey lifecycle service.

Lifecycle code logs through module loggers and attaches the survey it acted
on with ``extra=survey_context(...)``. Two renderings of the same records:

- production: one JSON object per line, context fields as top-level keys
- development: a short text line, with ``[survey=... actor=...]`` appended
  when the record carries them
"""

from __future__ import annotations

import enum
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

CONTEXT_FIELDS = ("survey_id", "actor_id", "status", "error_kind", "request_id")

_DEV_FORMAT = "%(asctime)s %(levelname)-8s %(name)s | %(message)s"

# Libraries that are noisy at INFO.
_QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "alembic": logging.INFO,
}


def survey_context(survey_id: Any = None, actor_id: Any = None, **fields: Any) -> dict[str, str]:
    """Build the ``extra=`` mapping for a lifecycle log call.

    Ids are stringified; ``None`` values and unknown keys are dropped so the
    JSON output only ever carries :data:`CONTEXT_FIELDS`.
    """
    values = {"survey_id": survey_id, "actor_id": actor_id, **fields}
    return {
        key: value.value if isinstance(value, enum.Enum) else str(value)
        for key, value in values.items()
        if key in CONTEXT_FIELDS and value is not None
    }


def _context_of(record: logging.LogRecord) -> dict[str, Any]:
    return {field: getattr(record, field) for field in CONTEXT_FIELDS if hasattr(record, field)}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context_of(record),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class DevFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__(_DEV_FORMAT, datefmt="%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context_of(record)
        ids = " ".join(
            f"{label}={context[field]}"
            for field, label in (("survey_id", "survey"), ("actor_id", "actor"))
            if context.get(field)
        )
        if not ids:
            return line
        # Keep a traceback (if any) on the lines after the message.
        head, sep, tail = line.partition("\n")
        return f"{head} [{ids}]{sep}{tail}"


def configure_logging(environment: str = "development", level: str = "INFO") -> None:
    """Replace the root logger's handlers with a single stdout handler."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(DevFormatter() if environment == "development" else JSONFormatter())
    root.addHandler(handler)

    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)
