"""
In-process event bus.

Publish/subscribe between engine components and their hosts: each active
subscriber gets a published event at most once, nothing is replayed to
late subscribers.
"""

from typing import Callable, Dict, List, Any
import logging

Handler = Callable[[str, Dict[str, Any]], None]


class EventBus:

    def __init__(self):
        self._subscribers: Dict[str, List[Handler]] = {}

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Register a handler. Returns a function that unsubscribes it."""
        self._subscribers.setdefault(topic, []).append(handler)

        def unsubscribe():
            self.unsubscribe(topic, handler)

        return unsubscribe

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        handlers = self._subscribers.get(topic, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, topic: str, payload: Dict[str, Any]) -> int:
        """Deliver to current subscribers. Returns how many handlers succeeded."""
        delivered = 0
        # Snapshot: handlers added during delivery wait for the next event
        for handler in list(self._subscribers.get(topic, [])):
            try:
                handler(topic, payload)
                delivered += 1
            except Exception as e:
                logging.warning(f"Subscriber for '{topic}' failed: {e}")
        return delivered

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, []))
