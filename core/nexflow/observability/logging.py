"""
Structured logging with run correlation.

Every log line written while a flow runs carries the flow id, execution id
and current node id without any caller passing them around:

    FlowExecutionEngine     -> sets flow_id, execution_id per run
        engine step         -> sets node_id per step
            executor code   -> logger.info("...") is tagged automatically

The ids live in a ContextVar, so concurrent runs on the same event loop never
see each other's context, and a SYNC child run restores its parent's context
when it returns.
"""

import json
import logging
import os
import re
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from typing import Any

trace_context: ContextVar[dict[str, Any] | None] = ContextVar("nexflow_trace_context", default=None)

ANSI_ESCAPE_PATTERN = re.compile(r"\x1b\[[0-9;]*m")

# Loggers of libraries we call into; in JSON mode they are routed through the root handler
THIRD_PARTY_LOGGERS = ("LiteLLM", "httpcore", "httpx", "sqlalchemy.engine")


def strip_ansi_codes(text: str) -> str:
    return ANSI_ESCAPE_PATTERN.sub("", text)


class StructuredFormatter(logging.Formatter):
    """
    One JSON object per line.

    Fields: timestamp, level, logger, message, then whatever trace context
    is active (flow_id, execution_id, node_id), then the optional extras
    event / latency_ms / model, then exception text.
    """

    EXTRA_FIELDS = ("event", "latency_ms", "model", "attempt")

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": strip_ansi_codes(record.getMessage()),
        }
        entry.update(trace_context.get() or {})

        for name in self.EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = strip_ansi_codes(value) if isinstance(value, str) else value

        if record.exc_info:
            entry["exception"] = strip_ansi_codes(self.formatException(record.exc_info))

        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Colorized single-line output prefixed with the short run ids."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        context = trace_context.get() or {}
        prefix_parts = []
        if context.get("flow_id"):
            prefix_parts.append(f"flow:{context['flow_id']}")
        if context.get("execution_id"):
            prefix_parts.append(f"exec:{str(context['execution_id'])[-8:]}")
        if context.get("node_id"):
            prefix_parts.append(f"node:{context['node_id']}")
        context_prefix = f"[{' | '.join(prefix_parts)}] " if prefix_parts else ""

        color = self.COLORS.get(record.levelname, "")
        message = f"{color}[{record.levelname:<8}]{self.RESET} {context_prefix}{record.getMessage()}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


def configure_logging(level: str = "INFO", format: str = "auto") -> None:
    """
    Configure root logging once at process start (CLI entry point, service startup).

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        format: "json", "human", or "auto" (JSON when LOG_FORMAT=json or
            ENV=production, human otherwise)
    """
    if format == "auto":
        wants_json = os.getenv("LOG_FORMAT", "").lower() == "json"
        in_production = os.getenv("ENV", "development").lower() == "production"
        format = "json" if wants_json or in_production else "human"

    if format == "json":
        formatter: logging.Formatter = StructuredFormatter()
        _disable_third_party_colors()
    else:
        formatter = HumanReadableFormatter()

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    if format == "json":
        for logger_name in THIRD_PARTY_LOGGERS:
            third_party = logging.getLogger(logger_name)
            third_party.handlers.clear()
            third_party.propagate = True


def _disable_third_party_colors() -> None:
    os.environ["NO_COLOR"] = "1"
    os.environ["FORCE_COLOR"] = "0"
    try:
        import litellm

        if hasattr(litellm, "suppress_debug_info"):
            litellm.suppress_debug_info = True
    except (ImportError, AttributeError):
        pass


def set_trace_context(**kwargs: Any) -> Token:
    """
    Merge fields into the current trace context.

    Returns the ContextVar token so a caller that scopes a nested run can
    put the previous context back with reset_trace_context().
    """
    current = trace_context.get() or {}
    return trace_context.set({**current, **kwargs})


def reset_trace_context(token: Token) -> None:
    trace_context.reset(token)


def get_trace_context() -> dict:
    """A copy of the active context, empty when nothing is set."""
    return dict(trace_context.get() or {})


def clear_trace_context() -> None:
    trace_context.set(None)
