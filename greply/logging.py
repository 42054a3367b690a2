"""Logging utilities for greply and the programs that drive it.

Library modules only ever call ``logging.getLogger(__name__)`` and attach
structured context through ``extra=``; handlers are installed by the
embedding program through :func:`configure_logging`.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any, Literal

LogFormat = Literal["text", "json"]
LogDestination = Literal["stdout", "stderr"]

LOGGER_NAMESPACE = "greply"
_TEXT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_RESERVED_RECORD_KEYS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "process",
    "processName",
    "taskName",
    "message",
    "asctime",
}


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_RECORD_KEYS and not key.startswith("_")
    }


class JsonFormatter(logging.Formatter):
    """Format log records as structured JSON objects."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: dict[str, Any] = {
            "timestamp": datetime.now(tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = self.formatStack(record.stack_info)
        payload.update(_extra_fields(record))
        return json.dumps(payload, default=_stringify)


class KeyValueFormatter(logging.Formatter):
    """Human-readable lines with ``extra=`` context appended as ``key=value`` pairs."""

    def __init__(self) -> None:
        super().__init__(_TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        line = super().format(record)
        extras = _extra_fields(record)
        if not extras:
            return line
        context = " ".join(f"{key}={_stringify(value)}" for key, value in sorted(extras.items()))
        head, sep, tail = line.partition("\n")
        return f"{head} | {context}{sep}{tail}"


def configure_logging(
    *,
    level: str | int = "INFO",
    fmt: LogFormat = "text",
    destination: LogDestination = "stderr",
) -> logging.Logger:
    """Replace the root handlers with one stream handler for greply diagnostics."""
    resolved_level = _resolve_level(level)
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(resolved_level)

    stream = sys.stdout if destination == "stdout" else sys.stderr
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter() if fmt == "json" else KeyValueFormatter())
    root.addHandler(handler)
    return root


def _resolve_level(value: str | int) -> int:
    if isinstance(value, int):
        return value
    normalized = value.upper()
    resolved = logging.getLevelName(normalized)
    if not isinstance(resolved, int):  # logging returns the input string when it fails
        raise ValueError(f"Unknown log level: {value}")
    return resolved


def _stringify(value: Any) -> str:
    return str(value)


# Silence "no handler" warnings for programs that never configure logging.
logging.getLogger(LOGGER_NAMESPACE).addHandler(logging.NullHandler())


__all__ = [
    "LOGGER_NAMESPACE",
    "JsonFormatter",
    "KeyValueFormatter",
    "LogDestination",
    "LogFormat",
    "configure_logging",
]
