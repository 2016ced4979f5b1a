"""OpenTelemetry setup for tracing webhook handling and engine transitions."""

import logging
from typing import TYPE_CHECKING

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from prima.config import settings

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)


def setup_telemetry(app: "FastAPI") -> bool:
    """Configure OpenTelemetry tracing for the FastAPI application.

    Returns True when an exporter was installed. Without an OTLP endpoint the
    global tracer stays a no-op, so engine spans cost nothing.
    """
    if not settings.OTEL_EXPORTER_OTLP_ENDPOINT:
        logger.info("Telemetry disabled: OTEL_EXPORTER_OTLP_ENDPOINT not configured")
        return False

    try:
        resource = Resource.create(
            {
                "service.name": settings.OTEL_SERVICE_NAME,
                "service.version": "0.1.0",
                "deployment.environment": "development" if settings.DEBUG else "production",
            }
        )

        tracer_provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(tracer_provider)

        otlp_exporter = OTLPSpanExporter(
            endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT,
            insecure=True,
        )
        tracer_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

        FastAPIInstrumentor.instrument_app(
            app,
            tracer_provider=tracer_provider,
            excluded_urls="health,api/docs,api/redoc,api/openapi.json",
        )

        logger.info(
            f"Telemetry enabled: exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}"
        )
        return True

    except Exception as e:
        logger.warning(f"Failed to setup telemetry: {e}")
        return False


def get_tracer(name: str) -> trace.Tracer:
    """Get a tracer instance for manual span creation.

    Example:
        tracer = get_tracer(__name__)
        with tracer.start_as_current_span("conversation.open") as span:
            span.set_attribute("conversation.context", "verification")
    """
    return trace.get_tracer(name)


def instrument_httpx() -> None:
    """Instrument httpx for outbound WhatsApp API tracing."""
    try:
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

        HTTPXClientInstrumentor().instrument()
        logger.info("httpx instrumentation enabled")
    except ImportError:
        logger.debug("httpx instrumentation not available")


def instrument_sqlalchemy() -> None:
    """Instrument SQLAlchemy for conversation state query tracing."""
    try:
        from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

        SQLAlchemyInstrumentor().instrument(enable_commenter=True)
        logger.info("SQLAlchemy instrumentation enabled")
    except ImportError:
        logger.debug("SQLAlchemy instrumentation not available")


def instrument_redis() -> None:
    """Instrument Redis for rate limiter and cache tracing."""
    try:
        from opentelemetry.instrumentation.redis import RedisInstrumentor

        RedisInstrumentor().instrument()
        logger.info("Redis instrumentation enabled")
    except ImportError:
        logger.debug("Redis instrumentation not available")


def setup_all_instrumentation(app: "FastAPI") -> None:
    """Setup telemetry with all available client instrumentations."""
    if setup_telemetry(app):
        instrument_httpx()
        instrument_sqlalchemy()
        instrument_redis()
