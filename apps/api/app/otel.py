from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import Span

from app.context import get_correlation_id
from app.core.config import Settings, get_settings


SERVICE_NAMESPACE = "subscriptions"

_exporters_installed = False
_provider: TracerProvider | None = None


def _tracer_provider(settings: Settings) -> TracerProvider:
    global _provider

    if _provider is None:
        _provider = TracerProvider(
            resource=Resource.create(
                {
                    "service.name": settings.otel_service_name,
                    "service.namespace": SERVICE_NAMESPACE,
                    "service.version": settings.app_version,
                    "deployment.environment": settings.app_env,
                }
            )
        )
        trace.set_tracer_provider(_provider)
    return _provider


def setup_otel(settings: Settings | None = None) -> TracerProvider | None:
    """Install the global tracer provider and its exporters once per process."""
    global _exporters_installed

    settings = settings or get_settings()
    if not settings.otel_enabled:
        return None

    provider = _tracer_provider(settings)
    if _exporters_installed:
        return provider

    if settings.otel_exporter_otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _exporters_installed = True
    return provider


def setup_inmemory_otel(settings: Settings | None = None) -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    _tracer_provider(settings or get_settings()).add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def tag_correlation_id(span: Span | None, correlation_id: str | None = None) -> None:
    correlation_id = correlation_id or get_correlation_id()
    if span is not None and span.is_recording() and correlation_id:
        span.set_attribute("correlation_id", correlation_id)


@contextmanager
def traced(tracer: trace.Tracer, name: str, **attributes: str) -> Iterator[Span]:
    with tracer.start_as_current_span(name, attributes=attributes) as span:
        tag_correlation_id(span)
        yield span


def get_fastapi_server_request_hook():
    def server_request_hook(span, scope: dict[str, Any]) -> None:  # type: ignore[no-untyped-def]
        raw = dict(scope.get("headers", [])).get(b"x-correlation-id")
        if raw:
            tag_correlation_id(span, raw.decode("latin-1"))

    return server_request_hook
