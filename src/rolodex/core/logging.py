"""Structured logging for rolodex.

Call sites keep using ``logging.getLogger(__name__)``; a structlog
``ProcessorFormatter`` on the root handlers renders every record, either as
colored console text or as JSON lines. Each event carries the owner being
processed (from a ContextVar) and the active OpenTelemetry trace/span ids.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from pathlib import Path
from typing import Any

import structlog
from opentelemetry import trace

_owner_context: ContextVar[str | None] = ContextVar("rolodex_owner", default=None)

_ZERO_TRACE_ID = "0" * 32
_ZERO_SPAN_ID = "0" * 16

# Chatty third-party loggers that are capped at WARNING.
_NOISE_LOGGERS = (
    "httpx",
    "httpcore",
    "asyncpg",
    "alembic.runtime.migration",
)


def set_owner_context(owner_id: str | None) -> None:
    """Attach *owner_id* to log events emitted from the current task."""
    _owner_context.set(owner_id)


def get_owner_context() -> str | None:
    return _owner_context.get()


def add_owner_context(logger: Any, method_name: str, event_dict: dict) -> dict:
    event_dict["owner"] = _owner_context.get()
    return event_dict


def add_otel_context(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Add ``trace_id``/``span_id``; zeroed when no span is recording."""
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        event_dict["trace_id"] = trace.format_trace_id(span_context.trace_id)
        event_dict["span_id"] = trace.format_span_id(span_context.span_id)
    else:
        event_dict["trace_id"] = _ZERO_TRACE_ID
        event_dict["span_id"] = _ZERO_SPAN_ID
    return event_dict


def _pre_chain(time_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt),
        add_owner_context,
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
    ]


def _formatter(
    renderer: structlog.types.Processor, time_fmt: str
) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=_pre_chain(time_fmt),
    )


def configure_logging(level: str = "INFO", fmt: str = "text", log_file: Path | None = None) -> None:
    """Install the root handlers.

    ``fmt`` is ``"text"`` or ``"json"``. Unknown level names fall back to INFO.
    When ``log_file`` is given, JSON lines at DEBUG and above are also
    appended to it.
    """
    json_output = fmt == "json"
    time_fmt = "iso" if json_output else "%H:%M:%S"
    renderer = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_formatter(renderer, time_fmt))
    handlers: list[logging.Handler] = [console]

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer(), "iso"))
        handlers.append(file_handler)

    root = logging.getLogger()
    root.handlers = handlers
    resolved = logging.getLevelName(level.upper())
    root.setLevel(resolved if isinstance(resolved, int) else logging.INFO)

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[*_pre_chain(time_fmt), structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
