"""
Structured Logging

JSON-structured logging with context propagation, layered on the
standard library so every module can keep using logging.getLogger(__name__).

Design decisions:
- Structured JSON output
- Log level filtering
- Context enrichment via context variables
- Multiple handlers (console, file)
"""

import contextvars
import json
import logging
import sys
import traceback
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, TextIO

ROOT_LOGGER = "kbstore"

# Attributes every LogRecord carries; anything else came in through `extra=`
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys()
) | {"message", "asctime", "log_context"}

# Context variables for log enrichment
_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "log_context", default={}
)


def _extra_data(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


class ContextFilter(logging.Filter):
    """Attach the current log context to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.log_context = dict(_log_context.get())
        return True


class JSONFormatter(logging.Formatter):
    """Render records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        result: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        data = _extra_data(record)
        if data:
            result["data"] = data

        context = getattr(record, "log_context", None)
        if context:
            result.update(context)

        if record.exc_info and record.exc_info[1] is not None:
            error = record.exc_info[1]
            result["error"] = {
                "message": str(error),
                "type": type(error).__name__,
                "stack_trace": "".join(traceback.format_exception(*record.exc_info)),
            }

        return json.dumps(result, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable single-line format."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        output = f"[{timestamp}] {record.levelname:8s} {record.getMessage()}"

        data = _extra_data(record)
        context = getattr(record, "log_context", None)
        if context:
            data = {**context, **data}
        if data:
            output += f" | {data}"
        if record.exc_info and record.exc_info[1] is not None:
            output += f" | ERROR: {record.exc_info[1]}"

        return output


@contextmanager
def log_context(**kwargs: Any):
    """
    Context manager for adding context to logs.

    Usage:
        with log_context(source="rss", category="news"):
            logger.info("Ingesting feed")
    """
    current = _log_context.get()
    token = _log_context.set({**current, **kwargs})

    try:
        yield
    finally:
        _log_context.reset(token)


def clear_context() -> None:
    """Clear all context values."""
    _log_context.set({})


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Get a logger inside the package namespace."""
    if name != ROOT_LOGGER and not name.startswith(f"{ROOT_LOGGER}."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


def configure_logging(
    level: str | int = "INFO",
    json_output: bool = True,
    log_file: str | None = None,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Configure and return the package root logger.

    Safe to call more than once; previous handlers are replaced.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter: logging.Formatter = JSONFormatter() if json_output else TextFormatter()
    context_filter = ContextFilter()

    console = logging.StreamHandler(stream or sys.stderr)
    console.setFormatter(formatter)
    console.addFilter(context_filter)
    logger.addHandler(console)

    if log_file:
        # Files always get JSON so they stay machine readable
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        file_handler.addFilter(context_filter)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
