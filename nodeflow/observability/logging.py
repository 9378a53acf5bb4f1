"""
Structured logging with automatic trace context propagation.

Key Features:
- Standard logger.info() calls pick up the active node and iteration
- ContextVar-based propagation: safe across concurrently iterating agent nodes
- Dual output modes: JSON for production, human-readable for development
- Payload sanitizing for request/response bodies recorded on nodes

Architecture:
    AgentOrchestrator.process_agent_node() -> sets node_id / iteration
        ↓ (automatic propagation via ContextVar)
    Planner / ToolRegistry / tools -> logger.info("message")
        ↓
    Formatter -> every line carries node_id and iteration
"""

import copy
import json
import logging
import os
import re
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# Context variable for trace propagation
trace_context: ContextVar[dict[str, Any] | None] = ContextVar("trace_context", default=None)

# ANSI escape code pattern (matches \033[...m or \x1b[...m)
ANSI_ESCAPE_PATTERN = re.compile(r"\x1b\[[0-9;]*m|\033\[[0-9;]*m")

REDACTED = "********"
SENSITIVE_KEY_PARTS = ("key", "token", "secret", "password", "auth")
MAX_STRING_LENGTH = 1000
STRING_EXCERPT_LENGTH = 100
MAX_LIST_ITEMS = 10


def strip_ansi_codes(text: str) -> str:
    """Remove ANSI escape codes from text for clean JSON logging."""
    return ANSI_ESCAPE_PATTERN.sub("", text)


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Produces machine-parseable log entries with:
    - Standard fields (timestamp, level, logger, message)
    - Trace context (node_id, iteration, workflow_id, ...)
    - Custom fields from extra dict
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        context = trace_context.get() or {}

        message = strip_ansi_codes(record.getMessage())

        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": message,
        }

        log_entry.update(context)

        event = getattr(record, "event", None)
        if event is not None:
            log_entry["event"] = strip_ansi_codes(event) if isinstance(event, str) else event

        for attr in ("latency_ms", "tokens_used", "node_id", "tool_id", "model"):
            value = getattr(record, attr, None)
            if value is not None:
                log_entry[attr] = value

        if record.exc_info:
            exception_text = self.formatException(record.exc_info)
            log_entry["exception"] = strip_ansi_codes(exception_text)

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Human-readable formatter for development.

    Provides colorized logs prefixed with the active node and iteration.
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as human-readable string."""
        context = trace_context.get() or {}
        workflow_id = context.get("workflow_id", "")
        node_id = context.get("node_id", "")
        iteration = context.get("iteration")

        prefix_parts = []
        if workflow_id:
            prefix_parts.append(f"wf:{workflow_id[:8]}")
        if node_id:
            prefix_parts.append(f"node:{node_id}")
        if iteration is not None:
            prefix_parts.append(f"iter:{iteration}")

        context_prefix = f"[{' | '.join(prefix_parts)}] " if prefix_parts else ""

        color = self.COLORS.get(record.levelname, "")
        reset = self.RESET

        level = f"{record.levelname:<8}"

        event = ""
        record_event = getattr(record, "event", None)
        if record_event is not None:
            event = f" [{record_event}]"

        line = f"{color}[{level}]{reset} {context_prefix}{record.getMessage()}{event}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(
    level: str = "INFO",
    format: str = "auto",  # "json", "human", or "auto"
) -> None:
    """
    Configure structured logging for the application.

    Call once at startup (the CLI does this; tests usually rely on caplog).

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Output format:
            - "json": Machine-parseable JSON (for production)
            - "human": Human-readable with colors (for development)
            - "auto": JSON if LOG_FORMAT=json or ENV=production, else human
    """
    if format == "auto":
        log_format_env = os.getenv("LOG_FORMAT", "").lower()
        env = os.getenv("ENV", "development").lower()

        if log_format_env == "json" or env == "production":
            format = "json"
        else:
            format = "human"

    if format == "json":
        formatter: logging.Formatter = StructuredFormatter()
        os.environ["NO_COLOR"] = "1"
    else:
        formatter = HumanReadableFormatter()

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # httpx logs every request at INFO; route it through our formatter at WARNING
    for logger_name in ("httpx", "httpcore"):
        third_party = logging.getLogger(logger_name)
        third_party.handlers.clear()
        third_party.propagate = True
        third_party.setLevel(logging.WARNING)


def set_trace_context(**kwargs: Any) -> None:
    """
    Set trace context for the current execution.

    Context is stored in a ContextVar and propagates through awaits within
    the same task. The orchestrator sets node_id and iteration for the
    duration of one agent iteration.

    Args:
        **kwargs: Context fields (workflow_id, node_id, iteration, ...)
    """
    current = trace_context.get() or {}
    trace_context.set({**current, **kwargs})


def get_trace_context() -> dict:
    """
    Get current trace context.

    Returns:
        Dict with node_id, iteration, etc. Empty dict if no context set.
    """
    context = trace_context.get() or {}
    return context.copy()


def clear_trace_context() -> None:
    """Clear trace context (mostly useful between tests)."""
    trace_context.set(None)


# ---------------------------------------------------------------------------
# Payload sanitizing
# ---------------------------------------------------------------------------


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in SENSITIVE_KEY_PARTS)


def _sanitize_string(value: str) -> str:
    if len(value) <= MAX_STRING_LENGTH:
        return value
    if value.startswith("data:image"):
        return "[BASE64_IMAGE]"
    return f"{value[:STRING_EXCERPT_LENGTH]} ... [truncated, total length: {len(value)}]"


def _sanitize(value: Any, masked: bool = False) -> Any:
    # ``masked`` is set below a sensitive key and covers everything nested there
    if isinstance(value, dict):
        return {k: _sanitize(v, masked or _is_sensitive_key(str(k))) for k, v in value.items()}
    if isinstance(value, list):
        result = [_sanitize(item, masked) for item in value[:MAX_LIST_ITEMS]]
        if len(value) > MAX_LIST_ITEMS:
            result.append(f"... [truncated, total items: {len(value)}]")
        return result
    if isinstance(value, str):
        if masked:
            return REDACTED if value else value
        return _sanitize_string(value)
    return value


def sanitize_payload(payload: Any) -> Any:
    """
    Copy a request/response payload with secrets masked and bulk trimmed.

    - Strings under keys containing key/token/secret/password/auth are
      replaced by a fixed redaction string, including strings nested in
      dicts or lists held by such a key.
    - Other strings over 1000 chars are cut to a 100-char excerpt with a
      length annotation (base64 image data URLs collapse to a marker).
    - Lists over 10 items keep the first 10 plus a count marker.

    Args:
        payload: JSON-like value (dict, list, str, ...)

    Returns:
        Sanitized deep copy, or None for an empty payload
    """
    if payload is None:
        return None

    try:
        sanitized = json.loads(json.dumps(payload))
    except (TypeError, ValueError):
        text = repr(payload)
        return {
            "_note": "Payload could not be serialized",
            "_type": type(payload).__name__,
            "_repr": text[:STRING_EXCERPT_LENGTH]
            + ("..." if len(text) > STRING_EXCERPT_LENGTH else ""),
        }

    return _sanitize(sanitized)


def summarize_payload(payload: Any) -> str:
    """One-line description of a chat request or response for log output."""
    if not payload:
        return "No data"

    if isinstance(payload, dict):
        if "messages" in payload:
            return f"Chat with {len(payload['messages'])} messages"

        choices = payload.get("choices") or []
        if choices and isinstance(choices[0], dict):
            message = choices[0].get("message") or {}
            tool_calls = message.get("tool_calls") or []
            if tool_calls:
                names = ", ".join(tc.get("function", {}).get("name", "?") for tc in tool_calls)
                return f"Response with tool calls: {names}"
            content = message.get("content")
            if content:
                return f'"{content[:50]}{"..." if len(content) > 50 else ""}"'

    text = json.dumps(copy.deepcopy(payload), default=str)
    return text[:100] + ("..." if len(text) > 100 else "")
