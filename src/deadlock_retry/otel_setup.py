from __future__ import annotations

import os
from typing import Optional

# Kept behind try/except so deadlock-retry works without opentelemetry
# installed; init_* then become no-ops.
try:
    from opentelemetry import trace, metrics
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader

    _OTEL_AVAILABLE = True
except Exception:  # pragma: no cover - graceful fallback when OTEL is missing
    _OTEL_AVAILABLE = False

    TracerProvider = object  # type: ignore[assignment,misc]
    MeterProvider = object  # type: ignore[assignment,misc]


_tracer_provider: Optional[TracerProvider] = None
_meter_provider: Optional[MeterProvider] = None


def _build_resource(service_name: str) -> "Resource":
    return Resource.create(
        {
            "service.name": service_name,
            "service.version": os.getenv("DEADLOCK_RETRY_SERVICE_VERSION", "dev"),
        }
    )


def _span_exporter(exporter: str):
    if exporter.lower() == "grpc":
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    else:
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    return OTLPSpanExporter()


def _metric_exporter(exporter: str):
    if exporter.lower() == "grpc":
        from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
    else:
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
    return OTLPMetricExporter()


def init_tracer(service_name: str = "deadlock-retry", exporter: str = "http") -> None:
    """
    Install a global TracerProvider exporting over OTLP.

    :param exporter: "http" (default) or "grpc"
    """
    global _tracer_provider

    if not _OTEL_AVAILABLE or _tracer_provider is not None:
        return

    provider = TracerProvider(resource=_build_resource(service_name))
    provider.add_span_processor(BatchSpanProcessor(_span_exporter(exporter)))
    trace.set_tracer_provider(provider)
    _tracer_provider = provider


def init_metrics(service_name: str = "deadlock-retry", exporter: str = "http") -> None:
    """Install a global MeterProvider exporting over OTLP ("http" or "grpc")."""
    global _meter_provider

    if not _OTEL_AVAILABLE or _meter_provider is not None:
        return

    reader = PeriodicExportingMetricReader(_metric_exporter(exporter))
    provider = MeterProvider(resource=_build_resource(service_name), metric_readers=[reader])
    metrics.set_meter_provider(provider)
    _meter_provider = provider
