"""
Instrumentation descriptors and plugins.

An ``Instrumentation`` names one interceptable module: the entry point of a
top-level package (``file`` is None) or one of its internal files. A
``Plugin`` bundles one or more descriptors; its configuration lives in a
``PluginMeta`` next to it in the plugin map handed to the loader.

Example::

    producer = Instrumentation(
        "kafka",
        versions=(">=2.0.0",),
        patch=patch_producer,
        unpatch=unpatch_producer,
    )
    plugin = Plugin("kafka", producer)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, Union

# patch(exports, tracer, config) -> replacement or None
PatchFn = Callable[[Any, Any, Mapping[str, Any]], Any]
# unpatch(exports, tracer) -> None
UnpatchFn = Callable[[Any, Any], None]
# prepatch(exports) -> replacement or None
PrepatchFn = Callable[[Any], Any]


@dataclass(frozen=True, eq=False)
class Instrumentation:
    """
    Identifies one module unit to intercept.

    Attributes:
        name:      Top-level import name of the target package.
        file:      Optional path of an internal file, relative to the package
                   base directory (e.g. ``"consumer/group.py"``).
        versions:  Version range expressions, OR-combined. Empty means any.
        patch:     Engine callback applying the full instrumentation.
        unpatch:   Engine callback reverting ``patch``.
        prepatch:  Engine callback applied during normal-phase loading.
    """

    name: str
    file: Optional[str] = None
    versions: tuple[str, ...] = ()
    patch: Optional[PatchFn] = field(default=None, repr=False)
    unpatch: Optional[UnpatchFn] = field(default=None, repr=False)
    prepatch: Optional[PrepatchFn] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("name is required")
        if "." in self.name or "/" in self.name:
            raise ValueError(f"name must be a top-level import name, got {self.name!r}")

        if self.file is not None:
            file = self.file.replace("\\", "/")
            while file.startswith("./"):
                file = file[2:]
            object.__setattr__(self, "file", file.strip("/") or None)

        versions = self.versions
        if isinstance(versions, str):
            versions = (versions,)
        object.__setattr__(self, "versions", tuple(versions or ()))

    @property
    def identifier(self) -> str:
        """Normalized module identifier: ``name`` or ``name/file``."""
        if self.file:
            return f"{self.name}/{self.file}"
        return self.name


class Plugin:
    """
    A named bundle of instrumentations.

    Plugins hash by identity, so two plugins declaring identical
    descriptors remain distinct entries in a plugin map.
    """

    def __init__(
        self,
        name: str,
        instrumentations: Union[Instrumentation, Sequence[Instrumentation]],
    ) -> None:
        if not name:
            raise ValueError("name is required")
        if isinstance(instrumentations, Instrumentation):
            instrumentations = (instrumentations,)
        if not instrumentations:
            raise ValueError(f"Plugin {name!r} declares no instrumentations")
        self.name = name
        self.instrumentations: tuple[Instrumentation, ...] = tuple(instrumentations)

    def __iter__(self):
        return iter(self.instrumentations)

    def __repr__(self) -> str:
        targets = ", ".join(i.identifier for i in self.instrumentations)
        return f"Plugin({self.name!r}, [{targets}])"


@dataclass(frozen=True)
class PluginMeta:
    """Name and opaque configuration attached to a plugin."""

    name: str
    config: Mapping[str, Any] = field(default_factory=dict)


PluginMap = Mapping[Plugin, PluginMeta]


def plugin_map(plugins: Iterable[Plugin], configs: Optional[Mapping[str, Any]] = None) -> dict[Plugin, PluginMeta]:
    """Build an ordered plugin map, looking up each plugin's config by name."""
    configs = configs or {}
    return {plugin: PluginMeta(plugin.name, dict(configs.get(plugin.name) or {})) for plugin in plugins}
