"""
One-line auto-instrumentation.

Usage::

    from tracehook import auto_instrument
    auto_instrument()                              # built-in + entry-point plugins
    auto_instrument(plugins=[my_plugin])           # plus explicit plugins
    auto_instrument(preload=["kafka"])             # patch kafka the moment it loads

Call it as early as possible: libraries imported afterwards are patched as
they load, libraries imported before are patched in place when the
instrumenter is enabled.
"""

from __future__ import annotations

import atexit
import logging
import os
from importlib.metadata import entry_points
from typing import Any, Mapping, Optional, Sequence

from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.trace import TracerProvider

from tracehook.errors import PluginLoadError
from tracehook.instrumentation import Plugin
from tracehook.instrumenter import Instrumenter
from tracehook.otel_setup import ExporterType, init_telemetry, shutdown_telemetry
from tracehook.plugins import BUILTIN_PLUGINS

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "tracehook.plugins"
DISABLED_PLUGINS_ENV = "TRACEHOOK_DISABLED_PLUGINS"

# Process-wide engine and the providers it reports to, set by auto_instrument()
_instrumenter: Optional[Instrumenter] = None
_providers: Optional[tuple[TracerProvider, MeterProvider]] = None
_atexit_registered = False


def get_instrumenter() -> Optional[Instrumenter]:
    """Return the engine created by ``auto_instrument()``, or None."""
    return _instrumenter


def _ensure_instrumenter(
    service_name: str,
    exporter: ExporterType,
    otlp_endpoint: Optional[str],
    otlp_headers: Optional[dict[str, str]],
) -> Instrumenter:
    global _instrumenter, _providers, _atexit_registered

    if _instrumenter is not None:
        return _instrumenter

    tracer_provider, meter_provider = init_telemetry(
        service_name=service_name,
        exporter=exporter,
        otlp_endpoint=otlp_endpoint,
        otlp_headers=otlp_headers,
    )
    _providers = (tracer_provider, meter_provider)
    _instrumenter = Instrumenter(tracer_provider=tracer_provider, meter_provider=meter_provider)

    if not _atexit_registered:
        atexit.register(_shutdown_providers)
        _atexit_registered = True

    return _instrumenter


def _shutdown_providers() -> None:
    global _providers
    providers, _providers = _providers, None
    if providers is None:
        return
    try:
        shutdown_telemetry(*providers)
    except Exception:
        logger.debug("Error during telemetry shutdown", exc_info=True)


def disabled_plugins() -> set[str]:
    """Plugin names listed in TRACEHOOK_DISABLED_PLUGINS."""
    raw = os.environ.get(DISABLED_PLUGINS_ENV, "")
    return {name.strip() for name in raw.split(",") if name.strip()}


def discover_plugins() -> list[Plugin]:
    """Load plugins registered under the ``tracehook.plugins`` entry-point group."""
    found: list[Plugin] = []
    for ep in entry_points(group=ENTRY_POINT_GROUP):
        try:
            obj = ep.load()
            if callable(obj) and not isinstance(obj, Plugin):
                obj = obj()
            if not isinstance(obj, Plugin):
                raise PluginLoadError(
                    f"Entry point {ep.name} returned {type(obj).__name__}, expected Plugin"
                )
        except Exception:
            logger.warning("Failed to load plugin entry point %s", ep.name, exc_info=True)
            continue
        found.append(obj)
    return found


def auto_instrument(
    *,
    service_name: str = "tracehook",
    exporter: ExporterType = ExporterType.CONSOLE,
    otlp_endpoint: Optional[str] = None,
    otlp_headers: Optional[dict[str, str]] = None,
    plugins: Optional[Sequence[Plugin]] = None,
    preload: Optional[Sequence[str]] = None,
    config: Optional[Mapping[str, Mapping[str, Any]]] = None,
    discover: bool = True,
) -> dict[str, bool]:
    """
    Register instrumentation plugins and start intercepting imports.

    Parameters
    ----------
    service_name : str
        OpenTelemetry service name (default ``"tracehook"``).
    exporter : ExporterType
        Telemetry exporter: CONSOLE, OTLP_GRPC, or OTLP_HTTP.
    otlp_endpoint : str, optional
        OTLP collector endpoint.
    otlp_headers : dict, optional
        Extra headers for the OTLP exporter.
    plugins : list of Plugin, optional
        Plugins to register in addition to the built-in ones.
    preload : list of str, optional
        Names of plugins to fully patch at import time instead of at
        activation.
    config : dict, optional
        Per-plugin configuration, keyed by plugin name.
    discover : bool
        Also load plugins from the ``tracehook.plugins`` entry-point group.

    Returns
    -------
    dict[str, bool]
        Maps plugin name to whether it was registered. Plugins disabled
        through TRACEHOOK_DISABLED_PLUGINS map to False.
    """
    instrumenter = _ensure_instrumenter(service_name, exporter, otlp_endpoint, otlp_headers)

    candidates: list[Plugin] = list(BUILTIN_PLUGINS)
    if discover:
        candidates.extend(discover_plugins())
    candidates.extend(plugins or ())

    config = config or {}
    preload_names = set(preload or ())
    disabled = disabled_plugins()
    known = {plugin.name for plugin in candidates}

    unknown = preload_names - known
    if unknown:
        logger.warning("Unknown preload plugins (ignored): %s", ", ".join(sorted(unknown)))

    results: dict[str, bool] = {}
    for plugin in candidates:
        if plugin.name in disabled:
            logger.debug("Skipping %s (disabled by %s)", plugin.name, DISABLED_PLUGINS_ENV)
            results[plugin.name] = False
            continue
        if plugin.name in preload_names:
            instrumenter.preload(plugin, config.get(plugin.name))
        else:
            instrumenter.use(plugin, config.get(plugin.name))
        results[plugin.name] = True

    instrumenter.enable()

    registered = sorted(name for name, ok in results.items() if ok)
    if registered:
        logger.info("Registered %d plugin(s): %s", len(registered), ", ".join(registered))

    return results


def uninstrument() -> None:
    """Unpatch everything, stop intercepting imports and flush telemetry."""
    global _instrumenter
    instrumenter, _instrumenter = _instrumenter, None
    if instrumenter is not None:
        instrumenter.disable()
    _shutdown_providers()
