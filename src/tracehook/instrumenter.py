"""
Default instrumentation engine.

Owns a ``Loader`` and applies each ``Instrumentation``'s ``patch`` callback
with an OpenTelemetry tracer. Plugins registered with ``use()`` only get
their lightweight ``prepatch`` while modules load; ``enable()`` is the
activation step that applies the full patch to everything already loaded,
and from then on normal-phase loads are patched fully as well. Preloaded
plugins are patched as their targets load, and ``enable()`` also reaches
targets that were imported before they were registered.

A plugin the loader has unloaded after a failure is not registered again.

Usage::

    instrumenter = Instrumenter()
    instrumenter.use(kafka_plugin, {"service": "orders"})
    instrumenter.enable()
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from opentelemetry import metrics, trace
from opentelemetry.metrics import MeterProvider
from opentelemetry.trace import TracerProvider

from tracehook.instrumentation import Instrumentation, Plugin, PluginMeta
from tracehook.loader import Loader

logger = logging.getLogger(__name__)


class Instrumenter:
    def __init__(
        self,
        tracer_provider: Optional[TracerProvider] = None,
        meter_provider: Optional[MeterProvider] = None,
        loader: Optional[Loader] = None,
        tracer_name: str = "tracehook",
    ) -> None:
        self._tracer = trace.get_tracer(tracer_name, tracer_provider=tracer_provider)
        self._meter = metrics.get_meter(tracer_name, meter_provider=meter_provider)
        self._loader = loader or Loader(self)
        self._plugins: dict[Plugin, PluginMeta] = {}
        self._preplugins: dict[Plugin, PluginMeta] = {}
        # Instrumentation -> module objects it has patched
        self._patched: dict[Instrumentation, list[Any]] = {}
        self._enabled = False

        self._patch_counter = self._meter.create_counter(
            name="tracehook.patches.total",
            description="Modules patched by an instrumentation plugin",
            unit="1",
        )
        self._unload_counter = self._meter.create_counter(
            name="tracehook.plugin.unloads.total",
            description="Plugins unloaded after a failure or on disable",
            unit="1",
        )

    @property
    def tracer(self) -> trace.Tracer:
        return self._tracer

    @property
    def loader(self) -> Loader:
        return self._loader

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def plugins(self) -> dict[Plugin, PluginMeta]:
        return dict(self._plugins)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def use(self, plugin: Plugin, config: Optional[Mapping[str, Any]] = None) -> None:
        """Register *plugin* for normal-phase loading; activate it if enabled."""
        if self._disabled(plugin):
            return
        meta = PluginMeta(plugin.name, dict(config or {}))
        self._plugins[plugin] = meta
        self._loader.reload(self._plugins)
        if self._enabled:
            self._activate(plugin, meta)

    def preload(self, plugin: Plugin, config: Optional[Mapping[str, Any]] = None) -> None:
        """Register *plugin* to be fully patched as soon as its target loads."""
        if self._disabled(plugin):
            return
        meta = PluginMeta(plugin.name, dict(config or {}))
        self._preplugins[plugin] = meta
        self._loader.preload(self._preplugins)
        if self._enabled:
            self._activate(plugin, meta)

    def enable(self) -> None:
        """Apply the full patch of every registered plugin to already-loaded modules."""
        self._enabled = True
        for plugin, meta in list(self._preplugins.items()) + list(self._plugins.items()):
            self._activate(plugin, meta)

    def disable(self) -> None:
        """Unload every plugin and stop intercepting imports."""
        for plugin in list(self._plugins) + list(self._preplugins):
            self.unload(plugin)
        self._enabled = False
        self._loader.close()

    def _disabled(self, plugin: Plugin) -> bool:
        # A plugin the loader unloaded after a failure stays off for the loader's lifetime
        if plugin in self._loader.unloaded:
            logger.debug("Plugin %s was disabled after an error; not registering it again", plugin.name)
            return True
        return False

    def _activate(self, plugin: Plugin, meta: PluginMeta) -> None:
        for instrumentation in plugin.instrumentations:
            if plugin in self._loader.unloaded:
                return
            try:
                self._loader.load(instrumentation, meta.config)
            except Exception:
                logger.error("Error while trying to patch %s", meta.name, exc_info=True)
                self._loader.unload(plugin)
                return

    # ------------------------------------------------------------------
    # Engine contract
    # ------------------------------------------------------------------

    def patch(self, instrumentation: Instrumentation, exports: Any, config: Any) -> Any:
        if instrumentation.patch is None:
            return None

        patched = self._patched.setdefault(instrumentation, [])
        if any(module is exports for module in patched):
            return None

        result = instrumentation.patch(exports, self._tracer, config or {})
        patched.append(exports if result is None else result)
        self._patch_counter.add(1, {"module": instrumentation.identifier})
        logger.debug("Patched %s", instrumentation.identifier)
        return result

    def prepatch(self, instrumentation: Instrumentation, exports: Any) -> Any:
        if self._enabled:
            meta = self._meta_for(instrumentation)
            if meta is not None:
                return self.patch(instrumentation, exports, meta.config)
        if instrumentation.prepatch is None:
            return None
        return instrumentation.prepatch(exports)

    def unload(self, plugin: Plugin) -> None:
        """Revert every patch applied for *plugin* and forget it."""
        for instrumentation in plugin.instrumentations:
            for exports in self._patched.pop(instrumentation, []):
                if instrumentation.unpatch is None:
                    continue
                try:
                    instrumentation.unpatch(exports, self._tracer)
                except Exception:
                    logger.warning("Failed to unpatch %s", instrumentation.identifier, exc_info=True)

        used = self._plugins.pop(plugin, None)
        preloaded = self._preplugins.pop(plugin, None)
        if used is not None or preloaded is not None:
            self._unload_counter.add(1, {"plugin": plugin.name})
            logger.debug("Unloaded plugin %s", plugin.name)

    def is_patched(self, instrumentation: Instrumentation, exports: Any) -> bool:
        return any(module is exports for module in self._patched.get(instrumentation, ()))

    def _meta_for(self, instrumentation: Instrumentation) -> Optional[PluginMeta]:
        for plugin, meta in self._plugins.items():
            if any(i is instrumentation for i in plugin.instrumentations):
                return meta
        return None
