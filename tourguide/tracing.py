"""
OpenTelemetry tracing setup for the Tour Guide gateway.

Traces session creation, tool execution, transcription and memory writes.
"""

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.trace import Status, StatusCode
import structlog

from . import __version__

logger = structlog.get_logger(__name__)

# Global tracer instance
_tracer: trace.Tracer | None = None
_tracing_enabled: bool = False


def init_tracing(
    service_name: str = "tourguide-gateway",
    otlp_endpoint: str = None
) -> trace.Tracer:
    """
    Initialize OpenTelemetry tracing.

    Args:
        service_name: Name of the service for traces
        otlp_endpoint: OTLP HTTP endpoint (defaults to settings.otel_endpoint)

    Returns:
        Configured tracer instance
    """
    global _tracer, _tracing_enabled

    if _tracer is not None:
        return _tracer

    from .config import settings
    _tracing_enabled = settings.otel_enabled

    if not _tracing_enabled:
        logger.info("tracing_disabled", reason="OTEL_ENABLED=false")
        # No-op tracer
        _tracer = trace.get_tracer(__name__)
        return _tracer

    if otlp_endpoint is None:
        otlp_endpoint = settings.otel_endpoint

    resource = Resource.create({
        "service.name": service_name,
        "service.version": __version__,
    })

    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
    trace.set_tracer_provider(provider)

    # mem0 and Maps calls go through httpx
    HTTPXClientInstrumentor().instrument()

    _tracer = trace.get_tracer(__name__)
    logger.info("tracing_initialized", endpoint=otlp_endpoint)
    return _tracer


def get_tracer() -> trace.Tracer:
    """Get the global tracer instance, initializing if needed."""
    global _tracer
    if _tracer is None:
        _tracer = init_tracing()
    return _tracer


class SpanContext:
    """Context manager for creating traced spans with attributes."""

    def __init__(self, name: str, **attributes):
        self.name = name
        self.attributes = attributes
        self.span = None

    def __enter__(self):
        tracer = get_tracer()
        self.span = tracer.start_span(self.name)
        self.span.__enter__()
        for key, value in self.attributes.items():
            if value is not None:
                self.span.set_attribute(key, value)
        return self.span

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.span.set_status(Status(StatusCode.ERROR, str(exc_val)))
            self.span.record_exception(exc_val)
        else:
            self.span.set_status(Status(StatusCode.OK))
        self.span.__exit__(exc_type, exc_val, exc_tb)
        return False


# Convenience functions for common span types
def start_session_span(connection_id: str, user_id: str, model: str = None):
    """Start a span for opening an upstream live session."""
    return SpanContext(
        "upstream.open",
        connection_id=connection_id,
        user_id=user_id,
        model=model,
    )


def start_tool_span(tool_name: str, arguments: dict = None):
    """Start a span for tool execution."""
    return SpanContext(
        f"tool.{tool_name}",
        tool_name=tool_name,
        arguments=str(arguments) if arguments else None
    )


def start_transcription_span(audio_bytes: int, model: str = None):
    return SpanContext(
        "upstream.transcribe",
        audio_bytes=audio_bytes,
        model=model,
    )


def start_memory_span(operation: str, user_id: str):
    return SpanContext(
        f"memory.{operation}",
        user_id=user_id,
    )
