from contextlib import contextmanager
from typing import Iterator

from core.config import settings
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, SpanKind

tracer = trace.get_tracer("generation-gateway")


def setup_telemetry():
    resource = Resource.create({"service.name": settings.APP_NAME, "deployment.environment": settings.ENV})
    provider = TracerProvider(resource=resource)

    # Console export only; an OTLP exporter slots in here once a collector exists
    provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)


@contextmanager
def provider_span(provider_id: str, method: str, path: str) -> Iterator[Span]:
    """Client span around one upstream provider call. Exceptions are recorded on the span."""
    with tracer.start_as_current_span(
        "provider.request",
        kind=SpanKind.CLIENT,
        attributes={"provider": provider_id, "http.method": method, "http.route": path},
    ) as span:
        yield span
