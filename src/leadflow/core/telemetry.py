"""Telemetry utilities for tracing and metrics instrumentation."""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from leadflow.core.config import TelemetrySettings

logger = logging.getLogger(__name__)

_TRACING_INITIALISED = False


def init_tracing(service_name: str, settings: TelemetrySettings) -> bool:
    """Configure the tracer provider with an OTLP exporter.

    Returns ``False`` when no endpoint is configured; the process then runs
    with the no-op tracer.
    """

    global _TRACING_INITIALISED
    if _TRACING_INITIALISED:
        return True

    endpoint = settings.exporter_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not endpoint:
        logger.warning(
            "distributed tracing disabled; no OTLP endpoint configured",
            extra={"service_name": service_name},
        )
        return False

    tracer_provider = TracerProvider(
        resource=Resource.create({"service.name": service_name})
    )
    tracer_provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(
                endpoint=endpoint,
                headers=parse_exporter_headers(settings.exporter_headers),
            )
        )
    )
    trace.set_tracer_provider(tracer_provider)
    HTTPXClientInstrumentor().instrument()
    _TRACING_INITIALISED = True
    logger.info(
        "tracing initialised",
        extra={"service_name": service_name, "endpoint": endpoint},
    )
    return True


def instrument_fastapi_app(app: FastAPI) -> None:
    """Attach OpenTelemetry instrumentation to a FastAPI application."""

    tracer_provider = trace.get_tracer_provider()
    if isinstance(tracer_provider, TracerProvider):
        FastAPIInstrumentor.instrument_app(app, tracer_provider=tracer_provider)
    else:
        FastAPIInstrumentor.instrument_app(app)


def parse_exporter_headers(header_value: str | None) -> dict[str, str] | None:
    """Parse a comma-separated ``key=value`` header string for OTLP exporters."""

    if not header_value:
        return None

    headers: dict[str, str] = {}
    for part in (segment.strip() for segment in header_value.split(",")):
        if not part:
            continue
        if "=" not in part:
            logger.warning("ignoring malformed OTLP header segment", extra={"segment": part})
            continue
        key, value = part.split("=", 1)
        headers[key.strip()] = value.strip()
    return headers or None
