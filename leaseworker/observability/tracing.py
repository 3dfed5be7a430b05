"""
OpenTelemetry tracing setup.

Until `setup_tracing` runs, `get_tracer` hands out the API's default tracer,
which records nothing and starts no exporter threads.
"""

from collections.abc import Iterator
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Tracer
from sqlalchemy.ext.asyncio import AsyncEngine

from leaseworker import __version__
from leaseworker.config import get_settings

# Global tracer instance
_tracer: Tracer | None = None


def setup_tracing(engine: AsyncEngine | None = None) -> Tracer:
    """
    Export spans over OTLP and optionally trace the SQL store's queries.

    Args:
        engine: Engine whose statements become child spans of the job spans.

    Returns:
        Tracer: The tracer instance.
    """
    global _tracer

    settings = get_settings()

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.otel_service_name,
                "service.version": __version__,
            }
        )
    )
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(
                endpoint=settings.otel_exporter_otlp_endpoint,
                insecure=True,
            )
        )
    )
    trace.set_tracer_provider(provider)

    if engine is not None:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)

    _tracer = trace.get_tracer(settings.otel_service_name)
    return _tracer


def get_tracer() -> Tracer:
    """Get the configured tracer, or the API default when tracing is off."""
    if _tracer is None:
        return trace.get_tracer("leaseworker")
    return _tracer


@contextmanager
def job_span(name: str, jid: str | None = None, **attributes: str) -> Iterator[Span]:
    """
    Start a span for one step of a job attempt.

    Exceptions leaving the block are recorded on the span by the SDK.

    Example:
        with job_span(SPAN_PERFORM_JOB, job.jid, queue=job.queue_name) as span:
            ...
    """
    with get_tracer().start_as_current_span(name) as span:
        if jid is not None:
            span.set_attribute("job.jid", jid)
        for key, value in attributes.items():
            span.set_attribute(f"job.{key}", value)
        yield span
