"""Tests for telemetry provider setup."""

from __future__ import annotations

import pytest
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.trace import TracerProvider

from tracehook.otel_setup import (
    ExporterType,
    _exporter_kwargs,
    _resolve_headers,
    init_telemetry,
    shutdown_telemetry,
)


class TestInitTelemetry:
    def test_console_providers(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("OTEL_SERVICE_NAME", raising=False)
        tp, mp = init_telemetry(service_name="svc", set_global=False)
        try:
            assert isinstance(tp, TracerProvider)
            assert isinstance(mp, MeterProvider)
            assert tp.resource.attributes["service.name"] == "svc"
        finally:
            shutdown_telemetry(tp, mp)

    def test_service_name_from_environment(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("OTEL_SERVICE_NAME", "from-env")
        tp, mp = init_telemetry(service_name="svc", set_global=False)
        try:
            assert tp.resource.attributes["service.name"] == "from-env"
        finally:
            shutdown_telemetry(tp, mp)

    def test_exporter_accepts_string(self):
        tp, mp = init_telemetry(exporter="console", set_global=False)
        shutdown_telemetry(tp, mp)


class TestExporterKwargs:
    def test_http_appends_signal_path(self):
        kwargs = _exporter_kwargs(ExporterType.OTLP_HTTP, "http://collector:4318/", None, "/v1/traces")
        assert kwargs == {"endpoint": "http://collector:4318/v1/traces"}

    def test_http_keeps_full_path(self):
        kwargs = _exporter_kwargs(
            ExporterType.OTLP_HTTP, "http://collector:4318/v1/metrics", {"a": "b"}, "/v1/metrics"
        )
        assert kwargs == {"endpoint": "http://collector:4318/v1/metrics", "headers": {"a": "b"}}

    def test_grpc_headers_are_pairs(self):
        kwargs = _exporter_kwargs(ExporterType.OTLP_GRPC, "collector:4317", {"a": "b"}, "/v1/traces")
        assert kwargs == {"endpoint": "collector:4317", "headers": [("a", "b")]}

    def test_endpoint_from_environment(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", "collector:9999")
        kwargs = _exporter_kwargs(ExporterType.OTLP_GRPC, None, None, "/v1/traces")
        assert kwargs["endpoint"] == "collector:9999"


class TestHeaders:
    def test_explicit_headers_win(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("OTEL_EXPORTER_OTLP_HEADERS", "x=1")
        assert _resolve_headers({"y": "2"}) == {"y": "2"}

    def test_parses_environment(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("OTEL_EXPORTER_OTLP_HEADERS", "api-key = secret, tenant=a=b, junk")
        assert _resolve_headers(None) == {"api-key": "secret", "tenant": "a=b"}

    def test_empty_environment(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("OTEL_EXPORTER_OTLP_HEADERS", raising=False)
        assert _resolve_headers(None) is None
