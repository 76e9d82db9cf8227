"""OpenTelemetry spans for analysis runs, reflection rounds, and database calls.

Spans are recorded only after ``setup_tracing()`` has installed a provider;
until then ``get_tracer`` hands out no-op tracers, so library users pay
nothing for the instrumentation.
"""

import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from article_lens.config import get_settings

logger = logging.getLogger(__name__)

SERVICE_NAME = "article-lens"

_provider: TracerProvider | None = None
_sqla_instrumentor = SQLAlchemyInstrumentor()


def setup_tracing(endpoint: str | None = None) -> TracerProvider:
    """Export spans over OTLP gRPC; safe to call more than once."""
    global _provider
    if _provider is not None:
        return _provider

    endpoint = endpoint or get_settings().otlp_endpoint
    provider = TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True)))
    trace.set_tracer_provider(provider)

    _provider = provider
    logger.info("Exporting traces to %s", endpoint)
    return provider


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def instrument_engine(async_engine) -> None:
    """Trace queries on an async engine (instrumentation wraps its sync engine)."""
    _sqla_instrumentor.instrument(engine=async_engine.sync_engine)
