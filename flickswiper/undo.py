"""Undo Ledger: bounded stack of reversible classifications."""

import logging
import threading
from collections import deque

from flickswiper.library import ItemStore
from flickswiper.models import MediaItem, UndoEntry

logger = logging.getLogger(__name__)

DEFAULT_UNDO_CAPACITY = 10


class UndoLedger:
    """LIFO of the last `capacity` classifications.

    Each entry knows whether its classification created the record (undo
    deletes it) or moved it from a previous direction (undo restores it).
    """

    def __init__(self, item_store: ItemStore, capacity: int = DEFAULT_UNDO_CAPACITY):
        if capacity < 1:
            raise ValueError("Undo capacity must be at least 1")
        self.item_store = item_store
        self.capacity = capacity
        self._lock = threading.Lock()
        self._entries: deque[UndoEntry] = deque(maxlen=capacity)

    def record(self, entry: UndoEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def undo_last(self) -> MediaItem | None:
        """Invert the most recent classification and return its item.

        The entry is popped before the inversion runs, so a failed inversion
        discards it and the error propagates.
        """
        with self._lock:
            if not self._entries:
                return None
            entry = self._entries.pop()

        unique_id = entry.item.unique_id
        if entry.previous_direction is None:
            self.item_store.remove(unique_id)
            logger.debug(f"Undo removed {unique_id}")
        else:
            if not self.item_store.restore_direction(unique_id, entry.previous_direction):
                logger.warning(f"Undo target {unique_id} no longer exists")
            else:
                logger.debug(f"Undo restored {unique_id} to {entry.previous_direction.value}")
        return entry.item

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def can_undo(self) -> bool:
        with self._lock:
            return bool(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
