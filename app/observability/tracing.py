"""
Distributed Tracing with OpenTelemetry.

Provides end-to-end request tracing across the API, the database and
outbound provider calls.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Status, StatusCode, Tracer

from app.config import settings


def setup_tracing() -> None:
    """
    Configure OpenTelemetry tracing with OTLP export.

    Sets up:
    - TracerProvider with service resource
    - OTLP exporter to collector
    """
    if not settings.tracing_enabled:
        return

    resource = Resource.create(
        {
            "service.name": settings.service_name,
            "service.version": settings.api_version,
            "deployment.environment": settings.environment,
        }
    )

    provider = TracerProvider(resource=resource)
    otlp_exporter = OTLPSpanExporter(
        endpoint=settings.otlp_endpoint,
        insecure=settings.otlp_insecure,
    )
    provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

    trace.set_tracer_provider(provider)


def instrument_fastapi(app: Any) -> None:
    """
    Instrument FastAPI application for automatic tracing.

    Must be called after app creation.
    """
    if not settings.tracing_enabled:
        return

    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine: Any) -> None:
    """
    Instrument SQLAlchemy engine for automatic query tracing.

    Must be called for each database engine.
    """
    if not settings.tracing_enabled:
        return

    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def get_tracer(name: str) -> Tracer:
    """Get a tracer instance for manual span creation."""
    return trace.get_tracer(name)


def add_span_attributes(span: Span, **attributes: Any) -> None:
    """Add attributes to a span, stringifying non-primitive values and skipping None."""
    for key, value in attributes.items():
        if value is not None:
            if isinstance(value, (str, int, float, bool)):
                span.set_attribute(key, value)
            else:
                span.set_attribute(key, str(value))


def set_span_error(span: Span, error: Exception) -> None:
    """Mark span as error and record exception."""
    span.set_status(Status(StatusCode.ERROR, str(error)))
    span.record_exception(error)


@contextmanager
def trace_operation(operation_name: str, **attributes: Any) -> Iterator[Span]:
    """
    Create a traced operation as the current span.

    Usage:
        with trace_operation("provision_service", billing_subscription_id=sub_id) as span:
            span.set_attribute("provider_instance_id", instance_id)
    """
    tracer = get_tracer("app.operations")
    with tracer.start_as_current_span(
        operation_name, record_exception=False, set_status_on_exception=False
    ) as span:
        add_span_attributes(span, **attributes)
        try:
            yield span
        except Exception as exc:
            set_span_error(span, exc)
            raise
