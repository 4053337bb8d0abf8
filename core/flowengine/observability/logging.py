"""
Structured logging with conversation-scoped trace context.

Every log record emitted while a conversation turn is being processed picks
up the turn's identifiers automatically:

    ConversationRuntime.handle() -> set_trace_context(conversation_id, flow_id)
        ↓ (ContextVar propagation)
    FlowExecutor loop            -> set_trace_context(node_id=...)
        ↓
    logger.info("...")           -> record carries all of the above

Two output modes: JSON lines for production, colorized text for development.
"""

import json
import logging
import os
import re
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

trace_context: ContextVar[dict[str, Any] | None] = ContextVar("trace_context", default=None)

ANSI_ESCAPE_PATTERN = re.compile(r"\x1b\[[0-9;]*m|\033\[[0-9;]*m")

# Extra attributes copied from ``logger.info(..., extra={...})`` into JSON output
_EXTRA_FIELDS = ("event", "node_id", "node_type", "status", "latency_ms", "model")


def strip_ansi_codes(text: str) -> str:
    """Remove ANSI escape codes from text for clean JSON logging."""
    return ANSI_ESCAPE_PATTERN.sub("", text)


class StructuredFormatter(logging.Formatter):
    """JSON formatter: one object per line with trace context merged in."""

    def format(self, record: logging.LogRecord) -> str:
        context = trace_context.get() or {}

        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": strip_ansi_codes(record.getMessage()),
        }
        log_entry.update(context)

        for name in _EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is None:
                continue
            log_entry[name] = strip_ansi_codes(value) if isinstance(value, str) else value

        if record.exc_info:
            log_entry["exception"] = strip_ansi_codes(self.formatException(record.exc_info))

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Colorized single-line formatter with a short conversation prefix."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    # (context key, label); conversation ids are shortened to their random tail
    PREFIX_FIELDS = (("conversation_id", "conv"), ("flow_id", "flow"), ("node_id", "node"))

    def _prefix(self) -> str:
        context = trace_context.get() or {}
        parts = []
        for key, label in self.PREFIX_FIELDS:
            value = context.get(key)
            if not value:
                continue
            if key == "conversation_id":
                value = value[-8:]
            parts.append(f"{label}:{value}")
        return f"[{' | '.join(parts)}] " if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        line = f"{color}[{record.levelname:<8}]{self.RESET} {self._prefix()}{record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# Client libraries whose loggers should flow through the root JSON handler
_THIRD_PARTY_LOGGERS = ("LiteLLM", "httpcore", "httpx", "openai", "aiohttp.access")


def _resolve_format(format: str) -> str:
    if format != "auto":
        return format
    if os.getenv("LOG_FORMAT", "").lower() == "json":
        return "json"
    return "json" if os.getenv("ENV", "development").lower() == "production" else "human"


def configure_logging(level: str = "INFO", format: str = "auto") -> None:
    """
    Install a single root handler. Called once by the CLI and the server.

    ``format`` is "json", "human" or "auto"; auto means JSON when
    LOG_FORMAT=json or ENV=production.
    """
    json_output = _resolve_format(format) == "json"
    if json_output:
        _disable_third_party_colors()

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter() if json_output else HumanReadableFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level.upper())

    if json_output:
        for name in _THIRD_PARTY_LOGGERS:
            client_logger = logging.getLogger(name)
            client_logger.handlers.clear()
            client_logger.propagate = True


def _disable_third_party_colors() -> None:
    os.environ["NO_COLOR"] = "1"
    os.environ["FORCE_COLOR"] = "0"
    import litellm

    litellm.suppress_debug_info = True


def set_trace_context(**kwargs: Any) -> None:
    """
    Merge fields (conversation_id, flow_id, node_id, ...) into the current
    trace context. Propagates through awaits within the same task.
    """
    current = trace_context.get() or {}
    trace_context.set({**current, **kwargs})


def get_trace_context() -> dict:
    """Return a copy of the current trace context (empty dict if unset)."""
    context = trace_context.get() or {}
    return context.copy()


def clear_trace_context() -> None:
    """Reset trace context, e.g. between test cases."""
    trace_context.set(None)
