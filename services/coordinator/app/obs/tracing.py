"""
OpenTelemetry distributed tracing for the Artisan coordinator service.
"""
from typing import Optional, Dict, Any
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.trace.export import ConsoleSpanExporter
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.resources import Resource
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from app.config import settings


def setup_tracing():
    """Configure OpenTelemetry tracing for the application."""
    if not settings.ENABLE_TRACING:
        return None

    resource = Resource.create({
        "service.name": settings.SERVICE_NAME,
        "service.version": "1.0.0",
        "deployment.environment": settings.ENVIRONMENT,
    })

    tracer_provider = TracerProvider(resource=resource)
    trace.set_tracer_provider(tracer_provider)

    if settings.OTEL_EXPORTER_OTLP_ENDPOINT:
        exporter = OTLPSpanExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT)
    else:
        exporter = ConsoleSpanExporter()

    tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
    return tracer_provider


def instrument_fastapi(app):
    """Instrument FastAPI application with OpenTelemetry."""
    if settings.ENABLE_TRACING:
        FastAPIInstrumentor.instrument_app(app)
    return app


def get_current_trace_id() -> Optional[str]:
    """Get the current trace ID from the active span."""
    current_span = trace.get_current_span()
    if current_span and current_span.is_recording():
        span_context = current_span.get_span_context()
        if span_context.is_valid:
            return format(span_context.trace_id, '032x')
    return None


def add_span_attributes(attributes: Dict[str, Any]):
    """Add attributes to the current active span."""
    current_span = trace.get_current_span()
    if current_span and current_span.is_recording():
        for key, value in attributes.items():
            current_span.set_attribute(key, value)


def add_span_error(error: BaseException, attributes: Optional[Dict[str, Any]] = None):
    """Add error information to the current active span."""
    current_span = trace.get_current_span()
    if current_span and current_span.is_recording():
        current_span.set_status(trace.Status(trace.StatusCode.ERROR, str(error)))
        current_span.set_attribute("error", True)
        current_span.set_attribute("error.type", type(error).__name__)

        if attributes:
            for key, value in attributes.items():
                current_span.set_attribute(key, value)
