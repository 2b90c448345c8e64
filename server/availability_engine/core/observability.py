"""Observability setup for OpenTelemetry, metrics, and structured logging."""

import logging

import structlog
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from .config import settings

SERVICE_NAME = "availability-engine"

# Prometheus metrics
REGISTRY = CollectorRegistry()

# Request metrics
REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=REGISTRY
)

REQUEST_DURATION = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    registry=REGISTRY
)

# Business metrics
SLOTS_GENERATED = Counter(
    'slots_generated_total',
    'Total slots materialized from availability rules',
    registry=REGISTRY
)

SLOT_RESERVATIONS = Counter(
    'slot_reservations_total',
    'Slot reservation attempts by outcome',
    ['outcome'],
    registry=REGISTRY
)

SLOT_RELEASES = Counter(
    'slot_releases_total',
    'Total capacity releases',
    registry=REGISTRY
)

SLOTS_COMPLETED = Counter(
    'slots_completed_total',
    'Total slots marked completed by the sweep',
    registry=REGISTRY
)

WAITLIST_PROMOTIONS = Counter(
    'waitlist_promotions_total',
    'Total waitlist entries notified of a free spot',
    registry=REGISTRY
)

WAITLIST_EXPIRED = Counter(
    'waitlist_expired_total',
    'Total waitlist notifications expired without booking',
    registry=REGISTRY
)

NOTIFICATION_FAILURES = Counter(
    'notification_failures_total',
    'Notification events that could not be delivered',
    ['event'],
    registry=REGISTRY
)

CAPACITY_UTILIZATION = Gauge(
    'slot_capacity_utilization',
    'Booked share of slot capacity in percent',
    ['slot_id'],
    registry=REGISTRY
)


def setup_structured_logging():
    """Configure structured logging with structlog."""

    def add_trace_context(logger, method_name, event_dict):
        """Add trace context to log events."""
        span = trace.get_current_span()
        if span and span.is_recording():
            ctx = span.get_span_context()
            event_dict['trace_id'] = format(ctx.trace_id, '032x')
            event_dict['span_id'] = format(ctx.span_id, '016x')
        return event_dict

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_trace_context,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _resource(app_name: str) -> Resource:
    return Resource.create({
        "service.name": app_name,
        "service.version": "1.0.0",
        "environment": settings.environment,
    })


def setup_tracing(app_name: str = SERVICE_NAME):
    """Setup OpenTelemetry tracing."""
    provider = TracerProvider(resource=_resource(app_name))
    trace.set_tracer_provider(provider)

    if settings.otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otlp_endpoint)))

    return trace.get_tracer(__name__)


def setup_metrics(app_name: str = SERVICE_NAME):
    """Setup OpenTelemetry metrics."""
    if settings.otlp_endpoint:
        otlp_exporter = OTLPMetricExporter(endpoint=settings.otlp_endpoint)
        reader = PeriodicExportingMetricReader(exporter=otlp_exporter, export_interval_millis=60000)
        metrics.set_meter_provider(MeterProvider(resource=_resource(app_name), metric_readers=[reader]))

    return metrics.get_meter(__name__)


def instrument_fastapi(app):
    """Instrument FastAPI with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy():
    """Instrument SQLAlchemy with OpenTelemetry."""
    SQLAlchemyInstrumentor().instrument()


class MetricsCollector:
    """Collector for business metrics."""

    @staticmethod
    def record_slots_generated(count: int):
        if count > 0:
            SLOTS_GENERATED.inc(count)

    @staticmethod
    def record_reservation(outcome: str):
        """Record a reservation attempt ('reserved', 'capacity_exceeded', ...)."""
        SLOT_RESERVATIONS.labels(outcome=outcome).inc()

    @staticmethod
    def record_release():
        SLOT_RELEASES.inc()

    @staticmethod
    def record_slots_completed(count: int):
        if count > 0:
            SLOTS_COMPLETED.inc(count)

    @staticmethod
    def record_waitlist_promotion():
        WAITLIST_PROMOTIONS.inc()

    @staticmethod
    def record_waitlist_expired(count: int):
        if count > 0:
            WAITLIST_EXPIRED.inc(count)

    @staticmethod
    def record_notification_failure(event: str):
        NOTIFICATION_FAILURES.labels(event=event).inc()

    @staticmethod
    def set_capacity_utilization(slot_id: str, capacity: int, booked: int):
        """Set booked share of a slot's capacity."""
        utilization = (booked / capacity * 100.0) if capacity else 0.0
        CAPACITY_UTILIZATION.labels(slot_id=slot_id).set(utilization)


def get_prometheus_metrics():
    """Get Prometheus metrics for the /metrics endpoint."""
    return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()


class StructuredLogger:
    """Structured logger with business context."""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def info(self, message: str, **kwargs):
        self.logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs):
        self.logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs):
        self.logger.error(message, **kwargs)

    def debug(self, message: str, **kwargs):
        self.logger.debug(message, **kwargs)

    def exception(self, message: str, **kwargs):
        self.logger.exception(message, **kwargs)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name)
