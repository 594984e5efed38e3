from __future__ import annotations

import logging
from typing import Any

import pytest

from leadflow.core import telemetry
from leadflow.core.config import TelemetrySettings
from leadflow.core.telemetry import init_tracing, parse_exporter_headers

pytestmark = pytest.mark.unit


def test_parse_exporter_headers_handles_malformed_segments():
    headers = parse_exporter_headers("authorization=Bearer token,invalid,env=prod")
    assert headers == {"authorization": "Bearer token", "env": "prod"}
    assert parse_exporter_headers(None) is None


def test_init_tracing_logs_warning_when_endpoint_missing(monkeypatch, caplog):
    monkeypatch.setattr(telemetry, "_TRACING_INITIALISED", False)
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)

    caplog.set_level(logging.WARNING)

    enabled = init_tracing("test-service", TelemetrySettings(exporter_endpoint=None))

    assert enabled is False
    assert any(
        "distributed tracing disabled" in record.message for record in caplog.records
    )


def test_init_tracing_logs_success_when_endpoint_supplied(monkeypatch, caplog):
    class DummyExporter:  # pragma: no cover - simple stub
        def __init__(self, *args: Any, **kwargs: Any) -> None:
            self.args = args
            self.kwargs = kwargs

    class DummyProcessor:  # pragma: no cover - simple stub
        def __init__(self, exporter: DummyExporter) -> None:
            self.exporter = exporter

    class DummyInstrumentor:  # pragma: no cover - simple stub
        def instrument(self) -> None:
            return None

    class DummyProvider:  # pragma: no cover - simple stub
        def __init__(self, *args: Any, **kwargs: Any) -> None:
            self.processors: list[Any] = []

        def add_span_processor(self, processor: Any) -> None:
            self.processors.append(processor)

    monkeypatch.setattr(telemetry, "OTLPSpanExporter", DummyExporter)
    monkeypatch.setattr(telemetry, "BatchSpanProcessor", DummyProcessor)
    monkeypatch.setattr(telemetry, "HTTPXClientInstrumentor", DummyInstrumentor)
    monkeypatch.setattr(telemetry, "TracerProvider", DummyProvider)
    monkeypatch.setattr(telemetry.trace, "set_tracer_provider", lambda provider: None)
    monkeypatch.setattr(telemetry, "_TRACING_INITIALISED", False)

    caplog.set_level(logging.INFO)

    enabled = init_tracing(
        "test-service",
        TelemetrySettings(
            exporter_endpoint="http://collector:4318/v1/traces",
            exporter_headers="x-api-key=secret",
        ),
    )

    assert enabled is True
    assert any("tracing initialised" in record.message for record in caplog.records)
