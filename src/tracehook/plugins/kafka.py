"""Instrumentation plugin for kafka-python."""

from __future__ import annotations

import functools
import logging
from typing import Any, Mapping

from opentelemetry import propagate
from opentelemetry.trace import SpanKind, Tracer

from tracehook.instrumentation import Instrumentation, Plugin

logger = logging.getLogger(__name__)

_PATCHED_FLAG = "_tracehook_patched"


def _header_items(headers: Any) -> dict[str, str]:
    carrier: dict[str, str] = {}
    for key, value in headers or ():
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        carrier[str(key)] = str(value)
    return carrier


def _wrap(cls: Any, attr: str, factory: Any) -> None:
    original = getattr(cls, attr)
    if getattr(original, _PATCHED_FLAG, False):
        return
    wrapper = functools.wraps(original)(factory(original))
    setattr(wrapper, _PATCHED_FLAG, True)
    setattr(cls, attr, wrapper)


def _unwrap(cls: Any, attr: str) -> None:
    current = getattr(cls, attr, None)
    if getattr(current, _PATCHED_FLAG, False):
        setattr(cls, attr, current.__wrapped__)


def patch(exports: Any, tracer: Tracer, config: Mapping[str, Any]) -> None:
    propagate_context = config.get("propagate", True)
    base_attributes = {"messaging.system": "kafka", "component": "kafka"}
    if config.get("service"):
        base_attributes["peer.service"] = config["service"]

    def send_factory(original: Any) -> Any:
        def send(self: Any, topic: str, *args: Any, **kwargs: Any) -> Any:
            attributes = dict(base_attributes)
            attributes["messaging.destination.name"] = topic
            attributes["messaging.operation"] = "publish"
            with tracer.start_as_current_span("kafka.produce", kind=SpanKind.PRODUCER, attributes=attributes):
                if propagate_context and len(args) < 3:
                    carrier: dict[str, str] = {}
                    propagate.inject(carrier)
                    if carrier:
                        headers = list(kwargs.get("headers") or [])
                        headers.extend((k, v.encode("utf-8")) for k, v in carrier.items())
                        kwargs["headers"] = headers
                return original(self, topic, *args, **kwargs)

        return send

    def next_factory(original: Any) -> Any:
        def __next__(self: Any) -> Any:
            record = original(self)
            attributes = dict(base_attributes)
            attributes["messaging.destination.name"] = getattr(record, "topic", "")
            attributes["messaging.operation"] = "receive"
            if getattr(record, "partition", None) is not None:
                attributes["messaging.kafka.destination.partition"] = record.partition
            if getattr(record, "offset", None) is not None:
                attributes["messaging.kafka.message.offset"] = record.offset
            parent = propagate.extract(_header_items(getattr(record, "headers", None)))
            with tracer.start_as_current_span(
                "kafka.consume", context=parent, kind=SpanKind.CONSUMER, attributes=attributes
            ):
                return record

        return __next__

    _wrap(exports.KafkaProducer, "send", send_factory)
    _wrap(exports.KafkaConsumer, "__next__", next_factory)
    logger.debug("kafka instrumentation installed")


def unpatch(exports: Any, tracer: Tracer) -> None:
    _unwrap(exports.KafkaProducer, "send")
    _unwrap(exports.KafkaConsumer, "__next__")
    logger.debug("kafka instrumentation removed")


plugin = Plugin(
    "kafka",
    Instrumentation("kafka", versions=(">=2.0.0",), patch=patch, unpatch=unpatch),
)
