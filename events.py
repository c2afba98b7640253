"""
Domain event sinks.

Catalog and order functions receive a sink and call `publish`; nothing in the
core reaches for a global channel. The app wires LoggingEventSink through the
`get_event_sink` dependency; tests override it with an in-memory sink.
"""

import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


class EventSink:
    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError


class LoggingEventSink(EventSink):
    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        logger.info("event %s %s", event, payload)


_default_sink = LoggingEventSink()


def get_event_sink() -> EventSink:
    return _default_sink
