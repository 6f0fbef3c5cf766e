"""OpenTelemetry tracing configuration."""

from __future__ import annotations

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
)

from stackpilot.config import ObservabilitySettings


def setup_tracing(settings: ObservabilitySettings) -> None:
    """Install a tracer provider exporting workflow spans."""
    if not settings.tracing_enabled:
        return

    resource = Resource.create({
        "service.name": settings.service_name,
        "service.version": "0.1.0",
    })
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)


def get_tracer(name: str = "stackpilot") -> trace.Tracer:
    return trace.get_tracer(name)
