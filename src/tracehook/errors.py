"""Exception types raised by tracehook outside the import path."""

from __future__ import annotations


class TracehookError(Exception):
    """Base class for tracehook errors."""


class InvalidRange(TracehookError, ValueError):
    """Raised when a version range expression cannot be parsed."""

    def __init__(self, expr: str, reason: str = "") -> None:
        self.expr = expr
        message = f"Invalid version range: {expr!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class PluginLoadError(TracehookError):
    """Raised when a discovered plugin object is not a Plugin."""
