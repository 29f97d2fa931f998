"""
Package metadata lookup.

Given a module's root name and base directory, find the distribution that
installed it and report its version and entry file. The distribution is
looked up next to the package, so two copies of a library on different
path entries each report their own version.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from importlib import metadata as importlib_metadata
from typing import Optional

from packaging.utils import canonicalize_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackageInfo:
    """
    Attributes:
        name:     Root import name.
        version:  Installed distribution version, or None if unknown.
        main:     Entry file relative to the base directory.
    """

    name: str
    version: Optional[str]
    main: Optional[str]


class PackageMetadataResolver:
    """Resolves ``PackageInfo`` for ``(name, base_dir)`` pairs, with caching."""

    def __init__(self) -> None:
        self._cache: dict[tuple[str, Optional[str]], PackageInfo] = {}

    def resolve(self, name: str, base_dir: Optional[str]) -> PackageInfo:
        key = (name, base_dir)
        info = self._cache.get(key)
        if info is None:
            info = self._cache[key] = self._resolve(name, base_dir)
        return info

    def version(self, name: str, base_dir: Optional[str]) -> Optional[str]:
        return self.resolve(name, base_dir).version

    def clear(self) -> None:
        self._cache.clear()

    def _resolve(self, name: str, base_dir: Optional[str]) -> PackageInfo:
        if not base_dir:
            return PackageInfo(name, None, None)

        is_package = os.path.basename(base_dir.rstrip("/")) == name
        if is_package:
            main = "__init__.py"
            search_dir = os.path.dirname(base_dir.rstrip("/"))
        else:
            main = f"{name}.py"
            search_dir = base_dir

        try:
            for dist in importlib_metadata.distributions(path=[search_dir]):
                if _provides(dist, name):
                    return PackageInfo(name, dist.version, main)
        except Exception:
            logger.debug("Failed to read package metadata in %s", search_dir, exc_info=True)

        return PackageInfo(name, None, main)


def _provides(dist: importlib_metadata.Distribution, name: str) -> bool:
    """True if *dist* installs the top-level module *name*."""
    top_level = dist.read_text("top_level.txt")
    if top_level:
        return name in top_level.split()

    for path in dist.files or ():
        head = path.parts[0] if path.parts else ""
        if head == name or head == f"{name}.py":
            return True

    dist_name = dist.metadata.get("Name")
    return bool(dist_name) and canonicalize_name(dist_name) == canonicalize_name(name)
