"""
Observability module for trace correlation, structured logging and
payload sanitizing.
"""

from nodeflow.observability.logging import (
    clear_trace_context,
    configure_logging,
    get_trace_context,
    sanitize_payload,
    set_trace_context,
    summarize_payload,
)

__all__ = [
    "configure_logging",
    "get_trace_context",
    "set_trace_context",
    "clear_trace_context",
    "sanitize_payload",
    "summarize_payload",
]
