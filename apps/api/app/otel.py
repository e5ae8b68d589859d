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
from opentelemetry.trace import Span, Tracer

from app.core.config import Settings


# request headers copied onto the server span
_SPAN_HEADERS = {
    b"x-correlation-id": "correlation_id",
    b"x-dealership-id": "dealership_id",
}

_provider: TracerProvider | None = None
_exporters_installed = False


def tracer_provider(service_name: str, version: str = "0.1.0") -> TracerProvider:
    """Return the process-wide provider, installing it on first use."""

    global _provider
    if _provider is None:
        resource = Resource.create({"service.name": service_name, "service.version": version})
        _provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(_provider)
    return _provider


def setup_otel(settings: Settings) -> TracerProvider | None:
    global _exporters_installed

    if not settings.otel_enabled:
        return None

    provider = tracer_provider(settings.otel_service_name, settings.app_version)
    if _exporters_installed:
        return provider

    if settings.otel_exporter_otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)
        provider.add_span_processor(BatchSpanProcessor(exporter))
    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _exporters_installed = True
    return provider


def setup_inmemory_otel(service_name: str = "dealer-crm-api") -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    tracer_provider(service_name).add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def get_tracer(name: str) -> Tracer:
    return trace.get_tracer(name)


@contextmanager
def start_span(tracer: Tracer, name: str, **attributes: str | int) -> Iterator[Span]:
    with tracer.start_as_current_span(name) as span:
        for key, value in attributes.items():
            span.set_attribute(key, value)
        yield span


def server_request_hook(span: Span | None, scope: dict[str, Any]) -> None:
    if span is None or not span.is_recording():
        return
    for raw_name, raw_value in scope.get("headers", []):
        attribute = _SPAN_HEADERS.get(raw_name.lower())
        if attribute and raw_value:
            span.set_attribute(attribute, raw_value.decode("latin-1").strip())
