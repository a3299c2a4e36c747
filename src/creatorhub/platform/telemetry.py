"""
OpenTelemetry setup for distributed tracing and metrics.

Configures OTLP exporters and instrumentation for FastAPI and SQLAlchemy.
"""

from collections.abc import Sequence

import structlog
from fastapi import FastAPI
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import (
    DEPLOYMENT_ENVIRONMENT,
    SERVICE_NAME,
    SERVICE_VERSION,
    Resource,
)
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter, SpanExportResult

from creatorhub.platform.settings import get_settings

logger = structlog.get_logger(__name__)


class ResilientOTLPExporter(SpanExporter):
    """Wraps OTLP exporter to handle connection failures gracefully."""

    def __init__(self, exporter: SpanExporter) -> None:
        self.exporter = exporter
        self._connection_failed = False

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        try:
            result = self.exporter.export(spans)
            if self._connection_failed:
                logger.info("OTLP connection restored")
                self._connection_failed = False
            return result
        except Exception as e:
            if not self._connection_failed:
                logger.warning("OTLP export failed - spans will be dropped", error=str(e))
                self._connection_failed = True
            return SpanExportResult.FAILURE

    def shutdown(self) -> None:
        self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return self.exporter.force_flush(timeout_millis)


def create_resource() -> Resource:
    """Create OpenTelemetry resource with service information."""
    settings = get_settings()
    resource_attributes = {
        SERVICE_NAME: settings.observability.otel_service_name,
        SERVICE_VERSION: settings.app_version,
        DEPLOYMENT_ENVIRONMENT: settings.environment.value,
    }
    resource_attributes.update(settings.observability.otel_resource_attributes)

    return Resource.create(resource_attributes)


def setup_telemetry(app: FastAPI | None = None) -> None:
    """
    Setup OpenTelemetry tracing/metrics export.

    Without this call the OpenTelemetry API hands out no-op tracers and
    meters, so instrumented code works unchanged in tests and scripts.

    Args:
        app: Optional FastAPI application to instrument
    """
    settings = get_settings()

    if not settings.observability.otel_enabled:
        logger.debug("OpenTelemetry is disabled by configuration")
        return

    resource = create_resource()
    endpoint = (settings.observability.otel_endpoint or "").rstrip("/")

    tracer_provider = TracerProvider(resource=resource)
    if endpoint:
        exporter = ResilientOTLPExporter(
            OTLPSpanExporter(endpoint=f"{endpoint}/v1/traces", timeout=5)
        )
        tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(tracer_provider)

    metric_readers = []
    if endpoint:
        metric_readers.append(
            PeriodicExportingMetricReader(
                exporter=OTLPMetricExporter(endpoint=f"{endpoint}/v1/metrics", timeout=30),
                export_interval_millis=60000,
            )
        )
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=metric_readers))

    if app is not None and settings.observability.otel_instrument_fastapi:
        FastAPIInstrumentor.instrument_app(
            app,
            tracer_provider=trace.get_tracer_provider(),
            excluded_urls="health",
        )

    if settings.observability.otel_instrument_sqlalchemy:
        from creatorhub.platform.db import get_async_engine

        SQLAlchemyInstrumentor().instrument(
            engine=get_async_engine().sync_engine,
            tracer_provider=trace.get_tracer_provider(),
        )

    logger.info(
        "OpenTelemetry telemetry configured",
        service_name=settings.observability.otel_service_name,
        endpoint=endpoint or None,
    )


def get_tracer(name: str, version: str | None = None) -> trace.Tracer:
    """
    Get a tracer for the given component name.

    Args:
        name: Component/module name
        version: Optional component version

    Returns:
        OpenTelemetry Tracer instance
    """
    return trace.get_tracer(name, version or "")


def get_meter(name: str, version: str | None = None) -> metrics.Meter:
    """
    Get a meter for the given component name.

    Args:
        name: Component/module name
        version: Optional component version

    Returns:
        OpenTelemetry Meter instance
    """
    return metrics.get_meter(name, version or "")


def record_error(span: trace.Span, error: Exception) -> None:
    """Record an error in the given span."""
    span.record_exception(error)
    span.set_status(trace.Status(trace.StatusCode.ERROR, str(error)))


__all__ = [
    "setup_telemetry",
    "get_tracer",
    "get_meter",
    "record_error",
]
