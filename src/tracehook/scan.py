"""Find already-loaded modules matching an instrumentation."""

from __future__ import annotations

from tracehook.history import LoadedModule, ModuleLoadHistory
from tracehook.instrumentation import Instrumentation
from tracehook.metadata import PackageMetadataResolver
from tracehook.versions import matches


def find_loaded_modules(
    instrumentation: Instrumentation,
    history: ModuleLoadHistory,
    resolver: PackageMetadataResolver,
) -> list[LoadedModule]:
    """
    Return loaded modules that *instrumentation* targets.

    A descriptor without ``file`` targets the package entry as declared by
    its metadata (``main``); a descriptor with ``file`` targets exactly that
    internal file. Modules whose package version fails the descriptor's
    ranges are left out.
    """
    found: list[LoadedModule] = []

    for entry in history.entries(instrumentation.name):
        info = resolver.resolve(instrumentation.name, entry.base_dir)

        if instrumentation.file:
            if entry.identifier != instrumentation.identifier:
                continue
        elif entry.module_name != instrumentation.name:
            continue
        elif info.main is not None and entry.relative_file != info.main:
            continue

        if not matches(info.version, instrumentation.versions):
            continue

        found.append(entry)

    return found
