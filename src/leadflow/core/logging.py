"""Structlog configuration helpers with OpenTelemetry enrichment."""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from typing import Any

import structlog
from opentelemetry.trace import get_current_span

_CONFIGURED = False


def _otel_enricher(
    _: Any,
    __: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Inject OpenTelemetry trace identifiers into the log event if available."""

    span_context = get_current_span().get_span_context()
    if span_context.is_valid:
        event_dict.setdefault("trace_id", f"{span_context.trace_id:032x}")
        event_dict.setdefault("span_id", f"{span_context.span_id:016x}")
    return event_dict


def configure_logging(level: int = logging.INFO, *, service: str | None = None) -> None:
    """Configure structlog with JSON output and OTEL context.

    ``service`` is bound as a context variable so every event emitted by the
    process (gateway or worker) carries it.
    """

    global _CONFIGURED
    if service:
        structlog.contextvars.bind_contextvars(service=service)
    if _CONFIGURED:
        return

    logging.basicConfig(format="%(message)s", level=level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
            _otel_enricher,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _CONFIGURED = True


def bind_log_context(**values: Any) -> None:
    """Bind job/conversation identifiers for the current task."""

    structlog.contextvars.bind_contextvars(
        **{key: str(value) for key, value in values.items() if value is not None}
    )


def clear_log_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to the provided name."""

    configure_logging()
    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(name)
