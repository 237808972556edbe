import logging
from typing import Optional, Sequence

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import CollectorRegistry, Info
from prometheus_fastapi_instrumentator import Instrumentator

logger = logging.getLogger("uvicorn.error")


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that filters out noisy ASGI body spans from streaming responses.
    A streamed completion would otherwise produce one span per relayed chunk.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


def configure_tracing(
    service_name: str, otlp_endpoint: Optional[str], otlp_headers: str = ""
) -> TracerProvider:
    """Install the process-wide tracer provider. Call once at startup."""
    tracer_provider = TracerProvider(
        resource=Resource.create({"service.name": service_name})
    )
    if otlp_endpoint:
        otlp_exporter = OTLPSpanExporter(
            endpoint=otlp_endpoint,
            headers=otlp_headers or None,
        )
        tracer_provider.add_span_processor(
            BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
        )
        logger.info(f"[Telemetry] Exporting traces to {otlp_endpoint}")
    trace.set_tracer_provider(tracer_provider)
    return tracer_provider


def instrument_app(app: FastAPI, service_name: str) -> None:
    """Attach request tracing and a Prometheus ``/metrics`` endpoint to an app."""
    FastAPIInstrumentor.instrument_app(app, excluded_urls="/metrics")

    # One registry per app keeps repeated app construction (tests, dual listeners) clean
    registry = CollectorRegistry()
    Instrumentator(registry=registry).instrument(app).expose(app)

    app_info = Info("fastapi_app_info", "Application Info", registry=registry)
    app_info.info({"app_name": service_name})
