"""
Observability for kiln: structured logging with trace context.

- ContextVar-based trace context (context_id of the running kiln)
- JSON logging for production, human-readable logging for development
"""

from kiln.observability.logging import (
    HumanReadableFormatter,
    StructuredFormatter,
    clear_trace_context,
    configure_logging,
    get_trace_context,
    set_trace_context,
)

__all__ = [
    "configure_logging",
    "get_trace_context",
    "set_trace_context",
    "clear_trace_context",
    "StructuredFormatter",
    "HumanReadableFormatter",
]
