"""
OpenTelemetry providers for the spans and metrics plugins emit.

``init_telemetry()`` builds a TracerProvider and MeterProvider wired to one
exporter backend:

  - Console exporters (development)
  - OTLP/gRPC exporters (production)
  - OTLP/HTTP exporters (when gRPC is not available)

Environment variables, read at call time:

  OTEL_SERVICE_NAME              - Overrides the service_name argument
  OTEL_EXPORTER_OTLP_ENDPOINT   - Used when no otlp_endpoint is passed
  OTEL_EXPORTER_OTLP_HEADERS    - Used when no otlp_headers are passed
                                   (e.g. "Authorization=Bearer xxx")
"""

from __future__ import annotations

import importlib
import os
from enum import Enum
from typing import Any, Optional

from opentelemetry import metrics, trace
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    MetricExporter,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SpanExporter,
)

_SDK_VERSION = "0.1.0"
_DEFAULT_ENDPOINT = "http://localhost:4317"


class ExporterType(str, Enum):
    CONSOLE = "console"
    OTLP_GRPC = "otlp_grpc"
    OTLP_HTTP = "otlp_http"


def init_telemetry(
    service_name: str = "tracehook",
    exporter: ExporterType = ExporterType.CONSOLE,
    otlp_endpoint: Optional[str] = None,
    otlp_headers: Optional[dict[str, str]] = None,
    metric_export_interval_ms: int = 10_000,
    set_global: bool = True,
) -> tuple[TracerProvider, MeterProvider]:
    """
    Create tracer and meter providers for *exporter*.

    Args:
        service_name: Service name for the OTel resource.
        exporter: Which exporter backend to use.
        otlp_endpoint: OTLP endpoint. Falls back to OTEL_EXPORTER_OTLP_ENDPOINT.
        otlp_headers: OTLP headers. Falls back to OTEL_EXPORTER_OTLP_HEADERS.
        metric_export_interval_ms: How often to flush metrics.
        set_global: Install the providers as the OTel global providers.

    Returns:
        Tuple of (TracerProvider, MeterProvider).
    """
    exporter = ExporterType(exporter)
    resource = Resource.create(
        {
            "service.name": os.environ.get("OTEL_SERVICE_NAME", service_name),
            "telemetry.sdk.language": "python",
            "tracehook.version": _SDK_VERSION,
        }
    )

    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(
        BatchSpanProcessor(_span_exporter(exporter, otlp_endpoint, otlp_headers))
    )

    metric_reader = PeriodicExportingMetricReader(
        _metric_exporter(exporter, otlp_endpoint, otlp_headers),
        export_interval_millis=metric_export_interval_ms,
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])

    if set_global:
        trace.set_tracer_provider(tracer_provider)
        metrics.set_meter_provider(meter_provider)

    return tracer_provider, meter_provider


def shutdown_telemetry(
    tracer_provider: TracerProvider,
    meter_provider: MeterProvider,
    timeout_ms: int = 5_000,
) -> None:
    """Flush and shut down providers. Call on process exit."""
    tracer_provider.force_flush(timeout_millis=timeout_ms)
    tracer_provider.shutdown()
    meter_provider.shutdown()


# --- Exporter factories ---


def _span_exporter(
    exporter: ExporterType, endpoint: Optional[str], headers: Optional[dict[str, str]]
) -> SpanExporter:
    if exporter == ExporterType.CONSOLE:
        return ConsoleSpanExporter()
    if exporter == ExporterType.OTLP_GRPC:
        from_module = "opentelemetry.exporter.otlp.proto.grpc.trace_exporter"
    else:
        from_module = "opentelemetry.exporter.otlp.proto.http.trace_exporter"
    cls = _import_exporter(from_module, "OTLPSpanExporter", exporter)
    return cls(**_exporter_kwargs(exporter, endpoint, headers, "/v1/traces"))


def _metric_exporter(
    exporter: ExporterType, endpoint: Optional[str], headers: Optional[dict[str, str]]
) -> MetricExporter:
    if exporter == ExporterType.CONSOLE:
        return ConsoleMetricExporter()
    if exporter == ExporterType.OTLP_GRPC:
        from_module = "opentelemetry.exporter.otlp.proto.grpc.metric_exporter"
    else:
        from_module = "opentelemetry.exporter.otlp.proto.http.metric_exporter"
    cls = _import_exporter(from_module, "OTLPMetricExporter", exporter)
    return cls(**_exporter_kwargs(exporter, endpoint, headers, "/v1/metrics"))


def _import_exporter(module_path: str, class_name: str, exporter: ExporterType) -> Any:
    try:
        return getattr(importlib.import_module(module_path), class_name)
    except ImportError as e:
        package = (
            "opentelemetry-exporter-otlp-proto-grpc"
            if exporter == ExporterType.OTLP_GRPC
            else "opentelemetry-exporter-otlp-proto-http"
        )
        raise ImportError(
            f"{exporter.value} exporter requires '{package}'. "
            "Install with: pip install tracehook[otlp]"
        ) from e


def _exporter_kwargs(
    exporter: ExporterType,
    endpoint: Optional[str],
    headers: Optional[dict[str, str]],
    http_path: str,
) -> dict[str, Any]:
    resolved = endpoint or os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT", _DEFAULT_ENDPOINT)
    resolved_headers = _resolve_headers(headers)

    kwargs: dict[str, Any] = {}
    if exporter == ExporterType.OTLP_HTTP:
        if not resolved.endswith(http_path):
            resolved = resolved.rstrip("/") + http_path
        if resolved_headers:
            kwargs["headers"] = resolved_headers
    elif resolved_headers:
        # gRPC metadata is a sequence of pairs
        kwargs["headers"] = list(resolved_headers.items())
    kwargs["endpoint"] = resolved
    return kwargs


def _resolve_headers(headers: Optional[dict[str, str]]) -> Optional[dict[str, str]]:
    if headers:
        return headers
    raw = os.environ.get("OTEL_EXPORTER_OTLP_HEADERS")
    if not raw:
        return None
    parsed: dict[str, str] = {}
    for pair in raw.split(","):
        if "=" in pair:
            k, v = pair.split("=", 1)
            parsed[k.strip()] = v.strip()
    return parsed or None
