"""
tracehook: import-time auto-instrumentation for Python libraries, built on OpenTelemetry.

Quick start::

    from tracehook import auto_instrument
    auto_instrument()
    # Supported libraries now emit spans, whether imported before or after.

Manual setup::

    from tracehook import Instrumentation, Instrumenter, Plugin

    plugin = Plugin("mylib", Instrumentation("mylib", versions=("^2.0.0",), patch=patch))
    instrumenter = Instrumenter()
    instrumenter.use(plugin)
    instrumenter.enable()
"""

from tracehook.auto import auto_instrument, discover_plugins, get_instrumenter, uninstrument
from tracehook.errors import InvalidRange, PluginLoadError, TracehookError
from tracehook.hook import ModuleHook, hook
from tracehook.instrumentation import Instrumentation, Plugin, PluginMeta, plugin_map
from tracehook.instrumenter import Instrumenter
from tracehook.loader import Loader
from tracehook.otel_setup import ExporterType, init_telemetry, shutdown_telemetry
from tracehook.versions import coerce, matches

__all__ = [
    # One-line auto-instrumentation
    "auto_instrument",
    "uninstrument",
    "discover_plugins",
    "get_instrumenter",
    # Plugins
    "Instrumentation",
    "Plugin",
    "PluginMeta",
    "plugin_map",
    # Engine and loader
    "Instrumenter",
    "Loader",
    "ModuleHook",
    "hook",
    "coerce",
    "matches",
    # Telemetry
    "ExporterType",
    "init_telemetry",
    "shutdown_telemetry",
    # Errors
    "InvalidRange",
    "PluginLoadError",
    "TracehookError",
]

__version__ = "0.1.0"
