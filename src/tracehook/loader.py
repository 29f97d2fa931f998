"""
Instrumentation loader: decides whether and when a module reaches the engine.

The loader subscribes one import hook to the root names of every registered
plugin. When a module under those names finishes executing:

  1. Its identifier is checked against the preload and normal snapshots;
     modules in neither are returned untouched.
  2. For each phase containing it, plugins targeting the identifier at the
     installed version are validated: a plugin whose declared internal file
     is missing from the package is unloaded.
  3. The remaining plugins are dispatched in declaration order. Preload
     plugins get the engine's full ``patch``; normal plugins get the
     engine's ``prepatch`` if it has one. Each plugin receives the exports
     returned by the previous one.

A plugin that raises while patching is unloaded and the module keeps the
exports it had before that plugin ran. Nothing raised here reaches the
code performing the import.

``load()`` is the pull-based path used when a plugin is activated after
its target has already been imported.
"""

from __future__ import annotations

import logging
import os
from importlib.machinery import all_suffixes
from typing import Any, Optional, Protocol

from tracehook.history import ModuleLoadHistory
from tracehook.hook import ModuleHook, hook
from tracehook.instrumentation import Instrumentation, Plugin, PluginMap
from tracehook.metadata import PackageMetadataResolver
from tracehook.registry import Registry, RegistrySnapshot
from tracehook.scan import find_loaded_modules
from tracehook.versions import matches

logger = logging.getLogger(__name__)


class InstrumenterProtocol(Protocol):
    """What the loader needs from an instrumentation engine.

    ``prepatch(instrumentation, exports)`` is optional and looked up at
    dispatch time.
    """

    def patch(self, instrumentation: Instrumentation, exports: Any, config: Any) -> Any: ...

    def unload(self, plugin: Plugin) -> None: ...


class Loader:
    def __init__(
        self,
        instrumenter: InstrumenterProtocol,
        resolver: Optional[PackageMetadataResolver] = None,
        history: Optional[ModuleLoadHistory] = None,
    ) -> None:
        self._instrumenter = instrumenter
        self._resolver = resolver or PackageMetadataResolver()
        self._history = history if history is not None else ModuleLoadHistory()
        self._registry = Registry()
        self._unloaded: set[Plugin] = set()
        self._hook: Optional[ModuleHook] = None

    @property
    def registry(self) -> Registry:
        return self._registry

    @property
    def history(self) -> ModuleLoadHistory:
        return self._history

    @property
    def unloaded(self) -> frozenset[Plugin]:
        return frozenset(self._unloaded)

    @property
    def hook(self) -> Optional[ModuleHook]:
        return self._hook

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def reload(self, plugins: PluginMap) -> None:
        """Replace the normal-phase plugins and resubscribe the import hook."""
        self._registry.reload(plugins)
        self._subscribe()

    def preload(self, plugins: PluginMap) -> None:
        """Replace the preload-phase plugins and resubscribe the import hook."""
        self._registry.preload(plugins)
        self._subscribe()

    def close(self) -> None:
        if self._hook is not None:
            self._hook.unhook()
            self._hook = None

    def _subscribe(self) -> None:
        names = self._registry.names
        previous = self._hook
        self._hook = hook(names, self._hook_module, history=self._history) if names else None
        if previous is not None:
            previous.unhook()

    # ------------------------------------------------------------------
    # Eager path
    # ------------------------------------------------------------------

    def load(self, instrumentation: Instrumentation, config: Any) -> int:
        """
        Patch every already-loaded module *instrumentation* targets.

        Returns the number of modules handed to the engine. Engine errors
        propagate to the caller.
        """
        modules = find_loaded_modules(instrumentation, self._history, self._resolver)
        for entry in modules:
            result = self._instrumenter.patch(instrumentation, entry.exports, config)
            if result is not None and result is not entry.exports:
                self._history.replace(entry.module_name, result)
        return len(modules)

    # ------------------------------------------------------------------
    # Interception
    # ------------------------------------------------------------------

    def _hook_module(self, exports: Any, identifier: str, base_dir: Optional[str]) -> Any:
        phases = list(self._registry.phases(identifier))
        if not phases:
            return exports

        version = self._resolver.version(identifier.partition("/")[0], base_dir)

        for is_preload, snapshot in phases:
            for plugin in self._targeting(snapshot, identifier, version):
                self._validate(snapshot, plugin, identifier, base_dir, version)
            exports = self._dispatch(is_preload, snapshot, identifier, exports, version)

        return exports

    def _targeting(self, snapshot: RegistrySnapshot, identifier: str, version: Optional[str]) -> list[Plugin]:
        return [
            plugin
            for plugin in snapshot.plugins
            if plugin not in self._unloaded and _targets(plugin, identifier, version)
        ]

    def _validate(
        self,
        snapshot: RegistrySnapshot,
        plugin: Plugin,
        identifier: str,
        base_dir: Optional[str],
        version: Optional[str],
    ) -> bool:
        meta = snapshot.plugins[plugin]

        for instrumentation in plugin.instrumentations:
            if not _under_root(identifier, instrumentation.name):
                continue
            if instrumentation.versions and not matches(version, instrumentation.versions):
                continue
            if instrumentation.file and not _exists(base_dir, instrumentation.file):
                self.unload(plugin)
                logger.debug(
                    'Plugin "%s" requires "%s" which was not found. The plugin was disabled.',
                    meta.name,
                    instrumentation.file,
                )
                return False

        return True

    def _dispatch(
        self,
        is_preload: bool,
        snapshot: RegistrySnapshot,
        identifier: str,
        exports: Any,
        version: Optional[str],
    ) -> Any:
        prepatch = None if is_preload else getattr(self._instrumenter, "prepatch", None)

        for plugin, meta in snapshot.plugins.items():
            if plugin in self._unloaded:
                continue

            targets = [
                i for i in plugin.instrumentations
                if i.identifier == identifier and matches(version, i.versions)
            ]
            if not targets:
                continue

            before = exports
            try:
                for instrumentation in targets:
                    if is_preload:
                        result = self._instrumenter.patch(instrumentation, exports, meta.config)
                    elif prepatch is not None:
                        result = prepatch(instrumentation, exports)
                    else:
                        result = None
                    if result is not None:
                        exports = result
            except Exception:
                logger.error("Error while trying to patch %s", meta.name, exc_info=True)
                exports = before
                self.unload(plugin)
                logger.debug("Error while trying to patch %s. The plugin has been disabled.", meta.name)

        return exports

    def unload(self, plugin: Plugin) -> None:
        """Disable *plugin* for later events and tell the engine, once."""
        if plugin in self._unloaded:
            return
        self._unloaded.add(plugin)
        try:
            self._instrumenter.unload(plugin)
        except Exception:
            logger.error("Error while unloading plugin %s", plugin.name, exc_info=True)


def _targets(plugin: Plugin, identifier: str, version: Optional[str]) -> bool:
    return any(
        i.identifier == identifier and matches(version, i.versions)
        for i in plugin.instrumentations
    )


def _under_root(identifier: str, name: str) -> bool:
    return identifier == name or identifier.startswith(f"{name}/")


def _exists(base_dir: Optional[str], file: str) -> bool:
    """True if *file* resolves inside *base_dir*, trying module suffixes."""
    if not base_dir:
        return False
    path = os.path.join(base_dir, file)
    if os.path.isfile(os.path.join(path, "__init__.py")):
        return True
    return any(os.path.isfile(path + suffix) for suffix in ("", *all_suffixes()))
