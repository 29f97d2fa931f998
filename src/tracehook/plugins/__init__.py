"""
Built-in instrumentation plugins.

Each submodule exposes a module-level ``plugin`` whose instrumentations
carry ``patch(exports, tracer, config)`` and ``unpatch(exports, tracer)``
callbacks. Third-party plugins register under the ``tracehook.plugins``
entry-point group instead.
"""

from tracehook.plugins.kafka import plugin as kafka_plugin

BUILTIN_PLUGINS = (kafka_plugin,)

__all__ = ["BUILTIN_PLUGINS", "kafka_plugin"]
