from __future__ import annotations

import itertools
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

Callback = Callable[[str, Dict[str, Any]], None]
Unsubscribe = Callable[[], None]


class EventBus:
    """
    In-process publish/subscribe.

    ``subscribe(topic, callback, where)`` returns a callable that removes the
    subscription. ``where`` is an equality filter over payload fields, so
    ``where={"symbol": "SPY"}`` only delivers SPY events.
    """

    def __init__(self):
        self.logger = logging.getLogger("event_bus")
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._subscribers: Dict[str, Dict[int, Tuple[Callback, Dict[str, Any]]]] = {}

    def subscribe(self, topic: str, callback: Callback, where: Optional[Dict[str, Any]] = None) -> Unsubscribe:
        with self._lock:
            sub_id = next(self._ids)
            self._subscribers.setdefault(topic, {})[sub_id] = (callback, dict(where or {}))

        def unsubscribe() -> None:
            with self._lock:
                subs = self._subscribers.get(topic, {})
                subs.pop(sub_id, None)
                if not subs:
                    self._subscribers.pop(topic, None)

        return unsubscribe

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscribers.get(topic, {}))

    def publish(self, topic: str, payload: Dict[str, Any]) -> int:
        with self._lock:
            targets: List[Tuple[Callback, Dict[str, Any]]] = list(self._subscribers.get(topic, {}).values())

        delivered = 0
        for callback, where in targets:
            if any(payload.get(k) != v for k, v in where.items()):
                continue
            try:
                callback(topic, payload)
                delivered += 1
            except Exception:
                self.logger.exception("subscriber_error topic=%s", topic)
        return delivered
