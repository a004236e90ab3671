import logging
import os

import structlog
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

# OpenTelemetry
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

_tracer_provider_configured = False


def _enabled(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


def add_otel_ids(logger, log_method, event_dict):
    """Structlog processor: stamps the current trace and span ids on every event."""
    span = trace.get_current_span()
    if span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = trace.format_trace_id(ctx.trace_id)
        event_dict["span_id"] = trace.format_span_id(ctx.span_id)
    return event_dict


def configure_logging(level: str = None):
    """JSON lines with ISO timestamps; LOG_LEVEL picks the threshold (default INFO)."""
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_otel_ids,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level_name, logging.INFO)),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_tracing(app: FastAPI, service_name: str):
    global _tracer_provider_configured
    # One provider per process: mounted service apps share the first one
    if not _tracer_provider_configured:
        provider = TracerProvider(resource=Resource.create({SERVICE_NAME: service_name}))
        trace.set_tracer_provider(provider)

        # OTLP gRPC to the collector (Jaeger listens on localhost:4317 by default)
        exporter = OTLPSpanExporter(endpoint=os.getenv("OTLP_ENDPOINT", "http://localhost:4317"), insecure=True)
        provider.add_span_processor(BatchSpanProcessor(exporter))

        # Child spans for gateway, maps and mail relay calls
        HTTPXClientInstrumentor().instrument()
        _tracer_provider_configured = True

    FastAPIInstrumentor.instrument_app(app)


def configure_metrics(app: FastAPI):
    # Request latency and status codes, served at /metrics
    Instrumentator().instrument(app).expose(app, include_in_schema=False)


def setup_observability(app: FastAPI, service_name: str):
    """
    Logging, tracing and metrics for one service app.
    Call at import time of the app's main module. Tracing is skipped when
    OTEL_ENABLED is false (tests, local runs).
    """
    configure_logging()
    if _enabled("OTEL_ENABLED"):
        configure_tracing(app, service_name)
    configure_metrics(app)
