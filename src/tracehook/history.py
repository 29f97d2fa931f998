"""
Record of modules already loaded, for activating plugins late.

The hook records every module it intercepts together with its final
exports. Modules imported before any hook was installed are picked up
from ``sys.modules`` the first time the history is queried, so a plugin
enabled after its target library has been imported can still find it.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Any, Optional

from tracehook.hook import describe_module, root_name


@dataclass
class LoadedModule:
    """One loaded module, keyed in the history by its import name."""

    module_name: str
    identifier: str
    base_dir: Optional[str]
    relative_file: Optional[str]
    exports: Any

    @property
    def root(self) -> str:
        return root_name(self.module_name)


class ModuleLoadHistory:
    """Import name -> last known ``LoadedModule``."""

    def __init__(self) -> None:
        self._entries: dict[str, LoadedModule] = {}

    def record(
        self,
        module_name: str,
        identifier: str,
        base_dir: Optional[str],
        relative_file: Optional[str],
        exports: Any,
    ) -> LoadedModule:
        entry = LoadedModule(module_name, identifier, base_dir, relative_file, exports)
        self._entries[module_name] = entry
        return entry

    def replace(self, module_name: str, exports: Any) -> None:
        """Point an entry (and ``sys.modules``) at replacement exports."""
        entry = self._entries.get(module_name)
        if entry is not None:
            entry.exports = exports
        sys.modules[module_name] = exports

    def get(self, module_name: str) -> Optional[LoadedModule]:
        return self._entries.get(module_name)

    def entries(self, root: Optional[str] = None) -> list[LoadedModule]:
        """
        Return known modules, optionally only those under *root*.

        A recorded entry is dropped once ``sys.modules`` no longer holds its
        exports (the module was removed or imported again), so nothing
        reaches an object importers can no longer see. Modules found in
        ``sys.modules`` that were never recorded are then added.
        """
        self._evict(root)
        self._backfill(root)
        return [
            entry
            for entry in self._entries.values()
            if root is None or entry.root == root
        ]

    def clear(self) -> None:
        self._entries.clear()

    def _evict(self, root: Optional[str]) -> None:
        for name, entry in list(self._entries.items()):
            if root is not None and entry.root != root:
                continue
            if sys.modules.get(name) is not entry.exports:
                del self._entries[name]

    def _backfill(self, root: Optional[str]) -> None:
        for name, module in list(sys.modules.items()):
            if module is None or name in self._entries:
                continue
            if root is not None and root_name(name) != root:
                continue
            if getattr(module, "__spec__", None) is None and not getattr(module, "__file__", None):
                continue
            identifier, base_dir, relative = describe_module(name, module)
            self._entries[name] = LoadedModule(name, identifier, base_dir, relative, module)
