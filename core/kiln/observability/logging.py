"""
Structured logging with trace context propagation.

Every kiln tags the logs emitted while it runs with its context_id, so all
lines for one request can be grouped without passing ids around:

    KilnHandler.handle() -> set_trace_context(context_id=kiln.id)
        ↓ (ContextVar)
    resolve() / glazes / compute functions -> logger.debug(...)
        ↓
    StructuredFormatter -> {"context_id": "...", "node_id": "...", ...}

Two output modes: JSON lines for production, colored text for development.
"""

import json
import logging
import os
import re
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from kiln.config import get_log_format, get_log_level

# Trace fields merged into every record (context_id, request_id, ...)
trace_context: ContextVar[dict[str, Any] | None] = ContextVar("kiln_trace_context", default=None)

ANSI_ESCAPE_PATTERN = re.compile(r"\x1b\[[0-9;]*m")

# Record attributes (set through ``extra=``) copied into JSON output
EXTRA_FIELDS = ("event", "node_id", "latency_ms", "outcome")


def strip_ansi_codes(text: str) -> str:
    """Remove ANSI escape codes from text for clean JSON logging."""
    return ANSI_ESCAPE_PATTERN.sub("", text)


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter: one object per line.

    Fields: timestamp, level, logger, message, the current trace context,
    any of EXTRA_FIELDS present on the record, and exception text.
    """

    def format(self, record: logging.LogRecord) -> str:
        context = trace_context.get() or {}

        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": strip_ansi_codes(record.getMessage()),
        }
        log_entry.update(context)

        for name in EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = strip_ansi_codes(value) if isinstance(value, str) else value

        if record.exc_info:
            log_entry["exception"] = strip_ansi_codes(self.formatException(record.exc_info))

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Colored single-line logs with a short kiln id prefix."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        context = trace_context.get() or {}
        context_id = context.get("context_id", "")

        prefix_parts = []
        if context_id:
            prefix_parts.append(f"kiln:{context_id[:8]}")
        node_id = getattr(record, "node_id", None)
        if node_id:
            prefix_parts.append(f"node:{node_id}")
        context_prefix = f"[{' | '.join(prefix_parts)}] " if prefix_parts else ""

        color = self.COLORS.get(record.levelname, "")
        level = f"{record.levelname:<8}"

        event = ""
        record_event = getattr(record, "event", None)
        if record_event is not None:
            event = f" [{record_event}]"

        message = f"{color}[{level}]{self.RESET} {context_prefix}{record.getMessage()}{event}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


def configure_logging(
    level: str | None = None,
    format: str | None = None,  # "json", "human", or "auto"
) -> None:
    """
    Configure logging for an application embedding kiln.

    Call once at startup. Missing arguments come from kiln configuration
    (KILN_LOG_LEVEL / KILN_LOG_FORMAT or ~/.kiln/configuration.json).

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: "json", "human", or "auto" (JSON when LOG_FORMAT=json or
            ENV=production, else human)
    """
    level = level or get_log_level()
    format = format or get_log_format()

    if format == "auto":
        log_format_env = os.getenv("LOG_FORMAT", "").lower()
        env = os.getenv("ENV", "development").lower()
        format = "json" if log_format_env == "json" or env == "production" else "human"

    formatter: logging.Formatter
    if format == "json":
        formatter = StructuredFormatter()
    else:
        formatter = HumanReadableFormatter()

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())


def set_trace_context(**kwargs: Any) -> None:
    """
    Merge fields into the trace context of the current thread / task.

    Called by the lifecycle layer with context_id=kiln.id; applications may
    add their own fields (request_id, user, ...).
    """
    current = trace_context.get() or {}
    trace_context.set({**current, **kwargs})


def get_trace_context() -> dict:
    """Return a copy of the current trace context (empty dict if unset)."""
    context = trace_context.get() or {}
    return context.copy()


def clear_trace_context() -> None:
    """Clear trace context (between tests, or before an unrelated request)."""
    trace_context.set(None)
