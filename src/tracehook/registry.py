"""
Per-phase registry of active plugins.

Each phase (preload and normal) holds one immutable ``RegistrySnapshot``.
``reload``/``preload`` build a complete new snapshot from the plugin map
they are given and swap it in with a single assignment; there is no
incremental update.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterator, Mapping

from tracehook.instrumentation import Instrumentation, Plugin, PluginMap, PluginMeta


@dataclass(frozen=True)
class RegistrySnapshot:
    """
    Derived view of one phase's plugin map.

    Attributes:
        plugins:      Plugin -> PluginMeta, in declaration order.
        names:        Distinct root names to subscribe to, first-seen order.
        identifiers:  Normalized ``name[/file]`` identifiers for membership tests.
    """

    plugins: Mapping[Plugin, PluginMeta] = field(default_factory=lambda: MappingProxyType({}))
    names: tuple[str, ...] = ()
    identifiers: frozenset[str] = frozenset()

    @classmethod
    def build(cls, plugins: PluginMap) -> "RegistrySnapshot":
        ordered = dict(plugins)
        instrumentations = [i for plugin in ordered for i in plugin.instrumentations]
        names = tuple(dict.fromkeys(i.name for i in instrumentations))
        return cls(
            plugins=MappingProxyType(ordered),
            names=names,
            identifiers=frozenset(i.identifier for i in instrumentations),
        )

    def __contains__(self, identifier: object) -> bool:
        return identifier in self.identifiers

    @property
    def instrumentations(self) -> list[Instrumentation]:
        """All descriptors, flattened across plugins."""
        return [i for plugin in self.plugins for i in plugin.instrumentations]


EMPTY = RegistrySnapshot()


class Registry:
    """Holds the preload and normal snapshots."""

    def __init__(self) -> None:
        self._normal: RegistrySnapshot = EMPTY
        self._preload: RegistrySnapshot = EMPTY

    @property
    def normal(self) -> RegistrySnapshot:
        return self._normal

    @property
    def preloaded(self) -> RegistrySnapshot:
        return self._preload

    def reload(self, plugins: PluginMap) -> RegistrySnapshot:
        """Replace the normal-phase snapshot."""
        self._normal = RegistrySnapshot.build(plugins)
        return self._normal

    def preload(self, plugins: PluginMap) -> RegistrySnapshot:
        """Replace the preload-phase snapshot."""
        self._preload = RegistrySnapshot.build(plugins)
        return self._preload

    @property
    def names(self) -> tuple[str, ...]:
        """Union of both phases' root names, preload first."""
        return tuple(dict.fromkeys(self._preload.names + self._normal.names))

    def phases(self, identifier: str) -> Iterator[tuple[bool, RegistrySnapshot]]:
        """Yield ``(is_preload, snapshot)`` for each phase containing *identifier*."""
        preload, normal = self._preload, self._normal
        if identifier in preload:
            yield True, preload
        if identifier in normal:
            yield False, normal
