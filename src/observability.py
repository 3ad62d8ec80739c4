"""
Observability and monitoring setup for the face authentication microservice.
"""

import asyncio
from typing import Optional, Dict, Any, Callable
from functools import wraps

import structlog
from opentelemetry import trace, metrics
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor

logger = structlog.get_logger()

# Global tracer and meter
tracer: Optional[trace.Tracer] = None
meter: Optional[metrics.Meter] = None

# Metrics instruments
request_duration: Optional[metrics.Histogram] = None
registration_counter: Optional[metrics.Counter] = None
login_counter: Optional[metrics.Counter] = None
match_distance_histogram: Optional[metrics.Histogram] = None


def setup_observability(
    service_name: str = "face-auth-microservice",
    service_version: str = "1.0.0",
    otlp_endpoint: Optional[str] = None,
    enable_console_export: bool = False
) -> None:
    """
    Set up OpenTelemetry tracing and metrics.

    Args:
        service_name: Name of the service for tracing
        service_version: Version of the service
        otlp_endpoint: OTLP endpoint for trace/metric export
        enable_console_export: Whether to enable console export for development
    """
    global tracer, meter
    global request_duration, registration_counter, login_counter, match_distance_histogram

    logger.info(
        "Setting up observability",
        service_name=service_name,
        service_version=service_version,
        otlp_endpoint=otlp_endpoint
    )

    resource = Resource.create({
        "service.name": service_name,
        "service.version": service_version,
    })

    # Set up tracing
    trace_provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))

    if enable_console_export:
        trace_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer(__name__)

    # Set up metrics
    metric_readers = []

    if otlp_endpoint:
        metric_readers.append(
            PeriodicExportingMetricReader(
                exporter=OTLPMetricExporter(endpoint=otlp_endpoint),
                export_interval_millis=30000  # 30 seconds
            )
        )

    if enable_console_export:
        metric_readers.append(
            PeriodicExportingMetricReader(
                exporter=ConsoleMetricExporter(),
                export_interval_millis=60000  # 60 seconds
            )
        )

    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=metric_readers))
    meter = metrics.get_meter(__name__)

    request_duration = meter.create_histogram(
        name="face_auth_request_duration_seconds",
        description="Face registration and login duration in seconds",
        unit="s"
    )

    registration_counter = meter.create_counter(
        name="face_registrations_total",
        description="Total number of face registrations",
        unit="1"
    )

    login_counter = meter.create_counter(
        name="face_logins_total",
        description="Total number of face login attempts by outcome",
        unit="1"
    )

    match_distance_histogram = meter.create_histogram(
        name="face_match_distance",
        description="Euclidean distance of successful face matches",
        unit="1"
    )

    logger.info("Observability setup completed")


def instrument_fastapi_app(app) -> None:
    """
    Instrument FastAPI application with OpenTelemetry.

    Must run before the application starts serving requests.

    Args:
        app: FastAPI application instance
    """
    if tracer is None:
        logger.warning("Tracer not initialized, call setup_observability() first")
        return

    FastAPIInstrumentor.instrument_app(app)

    # The Supabase client talks to PostgREST over httpx
    HTTPXClientInstrumentor().instrument()

    LoggingInstrumentor().instrument(set_logging_format=True)

    logger.info("FastAPI application instrumented with OpenTelemetry")


def trace_function(operation_name: Optional[str] = None):
    """
    Decorator to trace function execution.

    Args:
        operation_name: Optional custom operation name for the span
    """
    def decorator(func: Callable) -> Callable:
        span_name = operation_name or f"{func.__module__}.{func.__name__}"

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            if tracer is None:
                return await func(*args, **kwargs)

            with tracer.start_as_current_span(span_name) as span:
                span.set_attribute("function.name", func.__name__)
                span.set_attribute("function.module", func.__module__)
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    span.record_exception(e)
                    span.set_attribute("success", False)
                    span.set_attribute("error.type", type(e).__name__)
                    raise
                span.set_attribute("success", True)
                return result

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            if tracer is None:
                return func(*args, **kwargs)

            with tracer.start_as_current_span(span_name) as span:
                span.set_attribute("function.name", func.__name__)
                span.set_attribute("function.module", func.__module__)
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    span.record_exception(e)
                    span.set_attribute("success", False)
                    span.set_attribute("error.type", type(e).__name__)
                    raise
                span.set_attribute("success", True)
                return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def record_registration_metrics(success: bool, processing_time: float) -> None:
    """
    Record metrics for registration operations.

    Args:
        success: Whether registration stored a new identity
        processing_time: Time taken for registration in seconds
    """
    if registration_counter is None or request_duration is None:
        return

    attributes = {
        "operation": "registration",
        "success": str(success).lower()
    }

    registration_counter.add(1, attributes)
    request_duration.record(processing_time, attributes)


def record_login_metrics(
    outcome: str,
    processing_time: float,
    distance: Optional[float] = None
) -> None:
    """
    Record metrics for login operations.

    Args:
        outcome: One of "success", "not_recognized", "rate_limited",
            "invalid_input" or "error"
        processing_time: Time taken for the login in seconds
        distance: Distance of the matched embedding, on success
    """
    if login_counter is None or request_duration is None:
        return

    attributes = {
        "operation": "login",
        "outcome": outcome
    }

    login_counter.add(1, attributes)
    request_duration.record(processing_time, attributes)

    if distance is not None and match_distance_histogram is not None:
        match_distance_histogram.record(distance, {"outcome": outcome})


def get_trace_context() -> Dict[str, Any]:
    """
    Get current trace context information.

    Returns:
        Dict with trace ID and span ID if available
    """
    current_span = trace.get_current_span()
    if current_span is None or not current_span.is_recording():
        return {}

    span_context = current_span.get_span_context()
    return {
        "trace_id": f"{span_context.trace_id:032x}",
        "span_id": f"{span_context.span_id:016x}",
    }


class TracingContextMiddleware:
    """
    Middleware to add tracing context to structured logs.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        trace_context = get_trace_context()
        if trace_context:
            structlog.contextvars.bind_contextvars(**trace_context)

        await self.app(scope, receive, send)
