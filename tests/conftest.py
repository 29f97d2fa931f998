"""
Shared test fixtures for tracehook tests.

OTel global providers can only be set once per process. We use session-scoped
setup for the providers and clear the in-memory exporter before each test.

Import-hook tests build throwaway packages (with ``*.dist-info`` metadata)
under ``tmp_path`` and import them for real; the ``site`` fixture puts the
directory on ``sys.path`` and undoes every import side effect afterwards.
"""

from __future__ import annotations

import importlib
import sys
import textwrap
import threading
from pathlib import Path
from typing import Optional, Sequence
from unittest import mock

import pytest
from opentelemetry import metrics, trace
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    SimpleSpanProcessor,
    SpanExporter,
    SpanExportResult,
)


class InMemorySpanExporter(SpanExporter):
    """Minimal in-memory exporter for test assertions."""

    def __init__(self) -> None:
        self._spans: list[ReadableSpan] = []
        self._lock = threading.Lock()

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        with self._lock:
            self._spans.extend(spans)
        return SpanExportResult.SUCCESS

    def get_finished_spans(self) -> list[ReadableSpan]:
        with self._lock:
            return list(self._spans)

    def clear(self) -> None:
        with self._lock:
            self._spans.clear()

    def shutdown(self) -> None:
        pass

    def force_flush(self, timeout_millis: int = 0) -> bool:
        return True


# Module-level singletons: set once, reused across all tests
_span_exporter = InMemorySpanExporter()
_metric_reader = InMemoryMetricReader()
_otel_initialized = False


def _ensure_otel() -> None:
    global _otel_initialized
    if _otel_initialized:
        return
    resource = Resource.create({"service.name": "test"})

    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(SimpleSpanProcessor(_span_exporter))
    trace.set_tracer_provider(tracer_provider)

    meter_provider = MeterProvider(resource=resource, metric_readers=[_metric_reader])
    metrics.set_meter_provider(meter_provider)

    _otel_initialized = True


@pytest.fixture(autouse=True)
def _reset_exporter():
    """Clear collected spans before each test so tests are isolated."""
    _ensure_otel()
    _span_exporter.clear()
    yield


@pytest.fixture(autouse=True)
def _restore_meta_path():
    """Remove any import hook a test leaves behind."""
    saved = list(sys.meta_path)
    yield
    sys.meta_path[:] = saved


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    """Access the shared in-memory span exporter."""
    return _span_exporter


@pytest.fixture
def metric_reader() -> InMemoryMetricReader:
    """Access the shared in-memory metric reader."""
    return _metric_reader


# ---------------------------------------------------------------------------
# Throwaway packages
# ---------------------------------------------------------------------------


class SitePackages:
    """Writes importable packages plus dist-info metadata into one directory."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.names: list[str] = []

    @property
    def path(self) -> str:
        return str(self.root).replace("\\", "/")

    def add(
        self,
        name: str,
        version: Optional[str] = "1.0.0",
        files: Optional[dict[str, str]] = None,
        init: str = "",
        dist_name: Optional[str] = None,
        single_file: bool = False,
    ) -> Path:
        """
        Create package *name*. *files* maps paths relative to the package
        directory to their source; intermediate directories get an empty
        ``__init__.py``.
        """
        if single_file:
            target = self.root / f"{name}.py"
            target.write_text(textwrap.dedent(init))
        else:
            target = self.root / name
            target.mkdir()
            (target / "__init__.py").write_text(textwrap.dedent(init))
            for relative, source in (files or {}).items():
                path = target / relative
                parent = path.parent
                while parent != target:
                    parent.mkdir(parents=True, exist_ok=True)
                    init_file = parent / "__init__.py"
                    if not init_file.exists():
                        init_file.write_text("")
                    parent = parent.parent
                path.write_text(textwrap.dedent(source))

        if version is not None:
            dist = dist_name or name
            info = self.root / f"{dist.replace('-', '_')}-{version}.dist-info"
            info.mkdir()
            (info / "METADATA").write_text(
                f"Metadata-Version: 2.1\nName: {dist}\nVersion: {version}\n"
            )
            (info / "top_level.txt").write_text(f"{name}\n")

        self.names.append(name)
        importlib.invalidate_caches()
        return target

    def purge(self) -> None:
        """Forget every module imported from this directory."""
        for module_name in list(sys.modules):
            if module_name.partition(".")[0] in self.names:
                del sys.modules[module_name]


@pytest.fixture
def site(tmp_path: Path):
    root = tmp_path / "site-packages"
    root.mkdir()
    packages = SitePackages(root)
    sys.path.insert(0, str(root))
    yield packages
    packages.purge()
    if str(root) in sys.path:
        sys.path.remove(str(root))
    importlib.invalidate_caches()


@pytest.fixture
def engine() -> mock.Mock:
    """Engine double with patch/prepatch/unload that leave exports unchanged."""
    fake = mock.Mock(spec=["patch", "prepatch", "unload"])
    fake.patch.return_value = None
    fake.prepatch.return_value = None
    return fake

