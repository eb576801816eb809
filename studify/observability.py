from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def init_otel(
    *,
    app: object,
    enabled: bool,
    service_name: str,
    otlp_endpoint: Optional[str],
    console_exporter: bool,
    sample_rate: float,
    environment: str = "dev",
) -> None:
    if not enabled:
        return

    resource = Resource.create({"service.name": service_name, "deployment.environment": environment})
    provider = TracerProvider(resource=resource, sampler=ParentBased(TraceIdRatioBased(sample_rate)))

    if console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    if otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))

    trace.set_tracer_provider(provider)

    # Inbound requests (minus health checks) and the supabase client's PostgREST calls over httpx
    FastAPIInstrumentor.instrument_app(app, excluded_urls="health")  # type: ignore[arg-type]
    httpx_instrumentor = HTTPXClientInstrumentor()
    if not httpx_instrumentor.is_instrumented_by_opentelemetry:
        httpx_instrumentor.instrument()
    logger.info(f"Tracing enabled for {service_name} (sample rate {sample_rate})")


def get_tracer() -> trace.Tracer:
    return trace.get_tracer("studify")


@contextmanager
def attempt_span(name: str, attempt_id: str) -> Iterator[trace.Span]:
    """Span around a scoring step; callers tag ``studify.scoring_path`` once they know it."""
    with get_tracer().start_as_current_span(name) as span:
        span.set_attribute("studify.attempt_id", attempt_id)
        yield span
