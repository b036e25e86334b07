from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, Mapping

_log = logging.getLogger("relaylink.eventbus")

Handler = Callable[[str, Mapping[str, Any]], None]

RELAY_FOUND = "relay-found"
RELAY_NOT_FOUND = "relay-not-found"


class LocalEventBus:
    """Synchronous in-process topic bus used to surface signals to the UI layer."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        self._handlers[topic].append(handler)

        def _unsubscribe() -> None:
            try:
                self._handlers[topic].remove(handler)
            except ValueError:
                pass

        return _unsubscribe

    def publish(self, topic: str, payload: Mapping[str, Any] | None = None) -> None:
        data = dict(payload or {})
        for handler in list(self._handlers.get(topic, ())):
            try:
                handler(topic, data)
            except Exception:
                _log.warning("event handler failed topic=%s", topic, exc_info=True)


__all__ = ["LocalEventBus", "Handler", "RELAY_FOUND", "RELAY_NOT_FOUND"]
