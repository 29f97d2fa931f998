"""
Import interception.

``ModuleHook`` is a meta path finder that sits in front of the regular
finders. For modules under one of its root names it lets the other finders
locate the spec, then wraps the spec's loader so that once the module body
has executed the hook's callback sees it::

    def on_load(exports, identifier, base_dir):
        ...                 # return a replacement, or None to keep exports

    handle = hook(["kafka"], on_load)
    import kafka.producer   # on_load(<module>, "kafka/producer/__init__.py", "/.../kafka")
    handle.unhook()

Identifiers use ``/`` separators on every platform: the package entry is
the bare root name, and any other module is ``root/<path relative to the
package directory>``.
"""

from __future__ import annotations

import importlib.abc
import logging
import os
import sys
import threading
from importlib.machinery import ModuleSpec
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional

if TYPE_CHECKING:
    from tracehook.history import ModuleLoadHistory

logger = logging.getLogger(__name__)

# callback(exports, identifier, base_dir) -> replacement exports or None
HookCallback = Callable[[Any, str, Optional[str]], Any]


def normalize_path(path: str) -> str:
    """Canonicalize path separators to ``/``."""
    path = path.replace(os.sep, "/")
    if os.altsep:
        path = path.replace(os.altsep, "/")
    return path


def root_name(module_name: str) -> str:
    return module_name.partition(".")[0]


def spec_base_dir(spec: Optional[ModuleSpec]) -> Optional[str]:
    """Directory a top-level module's files live in, or None for built-ins."""
    if spec is None:
        return None
    locations = spec.submodule_search_locations
    if locations:
        for location in locations:
            return normalize_path(os.path.abspath(location))
    if spec.has_location and spec.origin:
        return normalize_path(os.path.dirname(os.path.abspath(spec.origin)))
    return None


def describe_module(
    name: str,
    module: Any,
    root_base_dir: Optional[str] = None,
) -> tuple[str, Optional[str], Optional[str]]:
    """
    Return ``(identifier, base_dir, relative_file)`` for a loaded module.

    *root_base_dir* overrides the base directory lookup through the root
    package in ``sys.modules``.
    """
    root = root_name(name)
    spec = getattr(module, "__spec__", None)

    if name == root:
        base_dir = spec_base_dir(spec) if spec is not None else None
        if base_dir is None and getattr(module, "__file__", None):
            base_dir = normalize_path(os.path.dirname(os.path.abspath(module.__file__)))
    elif root_base_dir is not None:
        base_dir = root_base_dir
    else:
        base_dir = spec_base_dir(getattr(sys.modules.get(root), "__spec__", None))

    if spec is not None:
        origin = spec.origin if spec.has_location else None
    else:
        origin = getattr(module, "__file__", None)

    relative: Optional[str] = None
    if origin and base_dir:
        relative = normalize_path(os.path.relpath(os.path.abspath(origin), base_dir))
        if relative.startswith("../"):
            relative = None

    if name == root:
        identifier = root
    elif relative:
        identifier = f"{root}/{relative}"
    else:
        identifier = f"{root}/" + name.split(".", 1)[1].replace(".", "/")

    return identifier, base_dir, relative


class _HookedLoader(importlib.abc.Loader):
    """Delegating loader that reports executed modules back to its hook."""

    def __init__(self, loader: Any, hook: "ModuleHook") -> None:
        self._loader = loader
        self._hook = hook

    def create_module(self, spec: ModuleSpec) -> Any:
        return self._loader.create_module(spec)

    def exec_module(self, module: Any) -> None:
        self._loader.exec_module(module)
        self._hook._on_load(module)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._loader, name)


class ModuleHook(importlib.abc.MetaPathFinder):
    """
    Meta path finder invoking *callback* for modules under *names*.

    With ``internals=False`` only the top-level modules themselves are
    reported, not their submodules.
    """

    def __init__(
        self,
        names: Iterable[str],
        callback: HookCallback,
        *,
        internals: bool = True,
        history: Optional["ModuleLoadHistory"] = None,
    ) -> None:
        self.names = frozenset(names)
        self.internals = internals
        self._callback = callback
        self._history = history
        self._local = threading.local()
        self._base_dirs: dict[str, Optional[str]] = {}

    def install(self) -> "ModuleHook":
        if not any(finder is self for finder in sys.meta_path):
            sys.meta_path.insert(0, self)
        return self

    def unhook(self) -> None:
        sys.meta_path[:] = [finder for finder in sys.meta_path if finder is not self]

    @property
    def installed(self) -> bool:
        return any(finder is self for finder in sys.meta_path)

    # ------------------------------------------------------------------
    # MetaPathFinder
    # ------------------------------------------------------------------

    def find_spec(self, fullname: str, path: Any = None, target: Any = None) -> Optional[ModuleSpec]:
        root = root_name(fullname)
        if root not in self.names:
            return None
        if fullname != root and not self.internals:
            return None

        pending = self._pending()
        if fullname in pending:
            return None

        pending.add(fullname)
        try:
            spec = self._find_with_others(fullname, path, target)
        finally:
            pending.discard(fullname)

        if spec is None or spec.loader is None or not hasattr(spec.loader, "exec_module"):
            return spec

        spec.loader = _HookedLoader(spec.loader, self)
        return spec

    def _find_with_others(self, fullname: str, path: Any, target: Any) -> Optional[ModuleSpec]:
        for finder in list(sys.meta_path):
            if finder is self:
                continue
            find_spec = getattr(finder, "find_spec", None)
            if find_spec is None:
                continue
            spec = find_spec(fullname, path, target)
            if spec is not None:
                return spec
        return None

    def _pending(self) -> set[str]:
        pending = getattr(self._local, "pending", None)
        if pending is None:
            pending = self._local.pending = set()
        return pending

    # ------------------------------------------------------------------
    # Load notification
    # ------------------------------------------------------------------

    def _on_load(self, module: Any) -> None:
        spec = getattr(module, "__spec__", None)
        name = spec.name if spec is not None else module.__name__
        root = root_name(name)

        if name == root:
            self._base_dirs[root] = spec_base_dir(spec)

        identifier, base_dir, relative = describe_module(name, module, self._base_dirs.get(root))

        exports = module
        try:
            result = self._callback(module, identifier, base_dir)
        except Exception:
            logger.error("Module hook callback failed for %s", name, exc_info=True)
            result = None

        if result is not None and result is not module:
            sys.modules[name] = result
            exports = result

        if self._history is not None:
            self._history.record(name, identifier, base_dir, relative, exports)


def hook(
    names: Iterable[str],
    callback: HookCallback,
    *,
    internals: bool = True,
    history: Optional["ModuleLoadHistory"] = None,
) -> ModuleHook:
    """Install a ``ModuleHook`` at the front of ``sys.meta_path`` and return it."""
    return ModuleHook(names, callback, internals=internals, history=history).install()
