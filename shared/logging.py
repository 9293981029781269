"""
Shared logging configuration for the Morph view client.

Log events are structlog dicts rendered as JSON. Every event emitted while a
view fetch is running carries that fetch's ``fetch_id``, so the miss, the
polls and the final outcome of one request can be grouped.
"""

import logging
import sys
import uuid
from contextvars import ContextVar, Token
from typing import Any, Callable, Dict, Optional, TextIO

import structlog
from opentelemetry import trace

fetch_id_var: ContextVar[Optional[str]] = ContextVar("morph_fetch_id", default=None)

Processor = Callable[[Any, str, Dict[str, Any]], Dict[str, Any]]


def configure_logging(service_name: str, log_level: str = "info", stream: TextIO = sys.stdout) -> None:
    """Configure structured logging for a process embedding the client."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            service_context(service_name),
            add_trace_context,
            add_fetch_context,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=stream,
        level=getattr(logging, log_level.upper()),
    )


def service_context(service_name: str) -> Processor:
    """Processor stamping the embedding service and the client component."""

    def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service_name)
        logger_name = event_dict.get("logger", "")
        if "." in logger_name:
            event_dict["component"] = logger_name.split(".", 1)[1]
        return event_dict

    return add_service_context


def add_trace_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add trace context to log events."""
    current_span = trace.get_current_span()
    if current_span and current_span.is_recording():
        span_context = current_span.get_span_context()
        if span_context.trace_id != 0:
            event_dict["trace_id"] = f"{span_context.trace_id:032x}"
        if span_context.span_id != 0:
            event_dict["span_id"] = f"{span_context.span_id:016x}"

    return event_dict


def add_fetch_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    fetch_id = fetch_id_var.get()
    if fetch_id:
        event_dict["fetch_id"] = fetch_id
    return event_dict


def start_fetch(fetch_id: Optional[str] = None) -> Token:
    """Mark the current context as running one view fetch."""
    return fetch_id_var.set(fetch_id or uuid.uuid4().hex)


def end_fetch(token: Token) -> None:
    fetch_id_var.reset(token)


def current_fetch_id() -> Optional[str]:
    return fetch_id_var.get()


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
