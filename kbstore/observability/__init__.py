"""
Observability Module

Structured logging for the knowledge store.
"""

from kbstore.observability.logging import (
    ContextFilter,
    JSONFormatter,
    TextFormatter,
    clear_context,
    configure_logging,
    get_logger,
    log_context,
)

__all__ = [
    "ContextFilter",
    "JSONFormatter",
    "TextFormatter",
    "clear_context",
    "configure_logging",
    "get_logger",
    "log_context",
]
