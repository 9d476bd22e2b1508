from __future__ import annotations

from app.core.config import settings
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor


def get_tracer(name: str) -> trace.Tracer:
    """Tracer for app spans; a no-op until `init_otel` installs a provider."""
    return trace.get_tracer(name)


def init_otel(app) -> None:
    if not settings.otel_enabled:
        return

    resource = Resource.create({"service.name": settings.api_name})
    provider = TracerProvider(resource=resource)

    # OTEL_EXPORTER_OTLP_ENDPOINT still wins when the setting is blank.
    endpoint = settings.otel_otlp_endpoint or None
    exporter = OTLPSpanExporter(endpoint=endpoint) if endpoint else OTLPSpanExporter()

    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    FastAPIInstrumentor.instrument_app(app)
    # Proxy calls from the http lookup provider show up as child spans.
    HTTPXClientInstrumentor().instrument()
