"""Distributed tracing.

Only traces are exported over OTLP; counters live in Prometheus (see
lemons.core.metrics). Without OTEL_EXPORTER_OTLP_ENDPOINT the global tracer
provider stays the no-op default, so spans opened through ``tracer`` cost
nothing in development and tests.
"""
import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from lemons.core.config import settings

logger = logging.getLogger(__name__)

tracer = trace.get_tracer("lemons")


def tracing_enabled() -> bool:
    return bool(settings.OTEL_EXPORTER_OTLP_ENDPOINT)


def configure_tracing() -> bool:
    """Install the OTLP tracer provider. Returns False when tracing is off or fails to start."""
    if not tracing_enabled():
        return False

    try:
        provider = TracerProvider(resource=Resource.create({
            "service.name": settings.OTEL_SERVICE_NAME,
            "deployment.environment": settings.OTEL_ENVIRONMENT,
        }))
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True))
        )
        trace.set_tracer_provider(provider)
        return True
    except Exception as e:
        logger.warning(f"Tracing disabled, exporter setup failed: {e}")
        return False


def instrument(app=None, engine=None):
    """Attach request and query spans to the given app and/or engine"""
    if app is not None:
        try:
            FastAPIInstrumentor.instrument_app(app, excluded_urls="health,metrics")
        except Exception as e:
            logger.warning(f"Failed to instrument FastAPI: {e}")
    if engine is not None:
        try:
            SQLAlchemyInstrumentor().instrument(engine=engine)
        except Exception as e:
            logger.warning(f"Failed to instrument SQLAlchemy: {e}")
