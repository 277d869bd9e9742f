"""Item Store: the durable library of classified items."""

import dataclasses
import logging
import threading
from datetime import datetime

from flickswiper.errors import ConsistencyViolation
from flickswiper.events import EventEmitter, LIBRARY_CHANGED, ITEM_REMOVED
from flickswiper.models import ClassifiedItem, ClassificationResult, Direction, MediaItem
from flickswiper.store.base import Store

logger = logging.getLogger(__name__)


class ItemStore:
    """Classification state machine over a Store.

    Holds an in-memory index of every classified UniqueID so the queue can
    filter candidates without a database round trip. The index only changes
    after the corresponding write has committed.
    """

    def __init__(self, store: Store, events: EventEmitter | None = None):
        self.store = store
        self.events = events or EventEmitter()
        self._index_lock = threading.Lock()
        self._index: set[str] = set()
        self.reload_index()

    # Index

    def reload_index(self) -> frozenset[str]:
        """Re-read the classified ID index from durable storage."""
        ids = self.store.classified_ids()
        with self._index_lock:
            self._index = set(ids)
        return frozenset(ids)

    def all_classified_unique_ids(self) -> frozenset[str]:
        with self._index_lock:
            return frozenset(self._index)

    def is_classified(self, unique_id: str) -> bool:
        with self._index_lock:
            return unique_id in self._index

    # Transitions

    def classify(
        self,
        candidate: MediaItem,
        direction: Direction,
        source_platform: str | None = None,
    ) -> ClassificationResult:
        """Apply a swipe to the library.

        Creates the record when absent. Otherwise only promotions (or
        same-rank re-encounters) are applied; a demotion leaves the record
        untouched and returns `changed=False`.
        """
        now = datetime.utcnow()
        with self.store.transaction():
            existing = self.store.get_classified(candidate.unique_id)

            if existing is None:
                record = ClassifiedItem.from_media(candidate, direction, now, source_platform)
                self.store.insert_classified(record)
                result = ClassificationResult(
                    item=record, previous_direction=None, created=True, changed=True
                )
            elif not existing.direction.allows(direction):
                logger.debug(
                    f"Ignoring demotion of {candidate.unique_id} "
                    f"from {existing.direction.value} to {direction.value}"
                )
                return ClassificationResult(
                    item=existing,
                    previous_direction=existing.direction,
                    created=False,
                    changed=False,
                )
            else:
                record = dataclasses.replace(
                    existing,
                    direction=direction,
                    classified_at=now,
                    source_platform=source_platform or existing.source_platform,
                )
                self.store.update_classified(record)
                result = ClassificationResult(
                    item=record,
                    previous_direction=existing.direction,
                    created=False,
                    changed=True,
                )

        with self._index_lock:
            self._index.add(record.unique_id)
        self.events.emit(LIBRARY_CHANGED, unique_id=record.unique_id)
        return result

    def restore_direction(self, unique_id: str, direction: Direction) -> bool:
        """Set a record's direction back without touching any other field.

        Used to invert a transition. Returns False if the record is gone.
        """
        with self.store.transaction():
            existing = self.store.get_classified(unique_id)
            if existing is None:
                return False
            self.store.update_classified(dataclasses.replace(existing, direction=direction))

        self.events.emit(LIBRARY_CHANGED, unique_id=unique_id)
        return True

    def remove(self, unique_id: str) -> bool:
        """Delete a record and every list entry that references it."""
        with self.store.transaction():
            list_ids = {e.list_id for e in self.store.get_list_entries(item_id=unique_id)}
            self.store.delete_list_entries(item_id=unique_id)
            deleted = self.store.delete_classified(unique_id)

        with self._index_lock:
            self._index.discard(unique_id)
        if deleted or list_ids:
            self.events.emit(ITEM_REMOVED, unique_id=unique_id, list_ids=sorted(list_ids))
            self.events.emit(LIBRARY_CHANGED, unique_id=unique_id)
        return deleted

    def reset(self, direction: Direction | None = None) -> int:
        """Delete every record of a direction (or all), cascading list entries."""
        with self.store.transaction():
            records = self.store.list_classified(direction=direction)
            affected_lists: set[str] = set()
            for record in records:
                for entry in self.store.get_list_entries(item_id=record.unique_id):
                    affected_lists.add(entry.list_id)
                self.store.delete_list_entries(item_id=record.unique_id)
                self.store.delete_classified(record.unique_id)

        removed = {r.unique_id for r in records}
        with self._index_lock:
            self._index -= removed

        label = direction.value if direction else "all"
        logger.info(f"Reset {len(records)} {label} records")
        if records:
            self.events.emit(ITEM_REMOVED, unique_id=None, list_ids=sorted(affected_lists))
            self.events.emit(LIBRARY_CHANGED, unique_id=None)
        return len(records)

    # Personal ratings

    def set_personal_rating(self, unique_id: str, rating: int) -> ClassifiedItem:
        if not 1 <= rating <= 5:
            raise ConsistencyViolation(f"Rating must be between 1 and 5, got {rating}")

        with self.store.transaction():
            existing = self.store.get_classified(unique_id)
            if existing is None:
                raise ConsistencyViolation(f"Cannot rate unclassified item {unique_id}")
            record = dataclasses.replace(existing, personal_rating=rating)
            self.store.update_classified(record)

        self.events.emit(LIBRARY_CHANGED, unique_id=unique_id)
        return record

    def clear_personal_rating(self, unique_id: str) -> ClassifiedItem:
        with self.store.transaction():
            existing = self.store.get_classified(unique_id)
            if existing is None:
                raise ConsistencyViolation(f"No library record for {unique_id}")
            record = dataclasses.replace(existing, personal_rating=None)
            self.store.update_classified(record)

        self.events.emit(LIBRARY_CHANGED, unique_id=unique_id)
        return record

    # Reads

    def get(self, unique_id: str) -> ClassifiedItem | None:
        return self.store.get_classified(unique_id)

    def items(self, direction: Direction | None = None, limit: int | None = None) -> list[ClassifiedItem]:
        return self.store.list_classified(direction=direction, limit=limit)

    def count(self, direction: Direction | None = None) -> int:
        return self.store.count_classified(direction)
