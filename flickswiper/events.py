"""Plain state-change notifications for presentation layers."""

import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

# Event names
QUEUE_CHANGED = "queue_changed"
LIBRARY_CHANGED = "library_changed"
ITEM_REMOVED = "item_removed"
LIST_CHANGED = "list_changed"
LIST_DELETED = "list_deleted"
FOLLOWED_LIST_UPDATED = "followed_list_updated"
RATING_PROMPT = "rating_prompt"


class EventEmitter:
    """Synchronous observer list keyed by event name."""

    def __init__(self):
        self._listeners: dict[str, list[Callable[..., Any]]] = defaultdict(list)

    def subscribe(self, event: str, callback: Callable[..., Any]) -> Callable[[], None]:
        """Register a callback. Returns a function that unsubscribes it."""
        self._listeners[event].append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

        return unsubscribe

    def emit(self, event: str, **payload: Any) -> None:
        for callback in list(self._listeners.get(event, ())):
            try:
                callback(**payload)
            except Exception as e:
                logger.error(f"Listener for {event} failed: {e}")

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))
