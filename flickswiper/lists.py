"""List Membership Store: user lists and their ordered entries."""

import dataclasses
import logging

from flickswiper.errors import ConsistencyViolation
from flickswiper.events import EventEmitter, LIST_CHANGED, LIST_DELETED
from flickswiper.models import ClassifiedItem, ListEntry, UserList
from flickswiper.store.base import Store

logger = logging.getLogger(__name__)


class ListMembershipStore:
    """User lists joined to library items through ListEntry records.

    Entries reference items only by UniqueID, so an entry can outlive its
    item briefly; reads skip such dangling entries. Every change to a list's
    visible content emits LIST_CHANGED so a publisher can push it.
    """

    def __init__(self, store: Store, events: EventEmitter | None = None):
        self.store = store
        self.events = events or EventEmitter()

    # Lists

    def create_list(self, name: str) -> UserList:
        name = name.strip()
        if not name:
            raise ConsistencyViolation("List name cannot be empty")
        with self.store.transaction():
            existing = self.store.list_user_lists()
            sort_order = max((l.sort_order for l in existing), default=-1) + 1
            user_list = UserList.create(name, sort_order)
            self.store.add_user_list(user_list)
        logger.info(f"Created list '{name}'")
        return user_list

    def rename_list(self, list_id: str, name: str) -> UserList:
        name = name.strip()
        if not name:
            raise ConsistencyViolation("List name cannot be empty")
        with self.store.transaction():
            user_list = self._require_list(list_id)
            if user_list.name == name:
                return user_list
            user_list = dataclasses.replace(user_list, name=name)
            self.store.update_user_list(user_list)
        self.events.emit(LIST_CHANGED, list_id=list_id)
        return user_list

    def delete_list(self, list_id: str) -> bool:
        """Delete a list and all of its entries."""
        with self.store.transaction():
            user_list = self.store.get_user_list(list_id)
            if user_list is None:
                return False
            removed = self.store.delete_list_entries(list_id=list_id)
            self.store.delete_user_list(list_id)
        logger.info(f"Deleted list '{user_list.name}' with {removed} entries")
        self.events.emit(
            LIST_DELETED,
            list_id=list_id,
            remote_doc_id=user_list.remote_doc_id if user_list.is_published else None,
        )
        return True

    def get_list(self, list_id: str) -> UserList | None:
        return self.store.get_user_list(list_id)

    def lists(self) -> list[UserList]:
        return self.store.list_user_lists()

    def _require_list(self, list_id: str) -> UserList:
        user_list = self.store.get_user_list(list_id)
        if user_list is None:
            raise ConsistencyViolation(f"No list with id {list_id}")
        return user_list

    # Membership

    def entries(self, list_id: str) -> list[ListEntry]:
        return self.store.get_list_entries(list_id=list_id)

    def list_items(self, list_id: str) -> list[ClassifiedItem]:
        """Library records in list order, skipping entries whose item is gone."""
        items = []
        for entry in self.store.get_list_entries(list_id=list_id):
            item = self.store.get_classified(entry.item_id)
            if item is None:
                logger.debug(f"Skipping dangling entry {entry.item_id} in list {list_id}")
                continue
            items.append(item)
        return items

    def count(self, list_id: str) -> int:
        return len(self.list_items(list_id))

    def add_membership(self, list_id: str, item_id: str) -> bool:
        """Append an item to a list. Returns False if it was already a member."""
        with self.store.transaction():
            self._require_list(list_id)
            if self.store.get_classified(item_id) is None:
                raise ConsistencyViolation(f"Cannot add unclassified item {item_id} to a list")

            entries = self.store.get_list_entries(list_id=list_id)
            if any(e.item_id == item_id for e in entries):
                return False
            sort_order = max((e.sort_order for e in entries), default=-1) + 1
            added = self.store.add_list_entry(ListEntry.create(list_id, item_id, sort_order))

        if added:
            self.events.emit(LIST_CHANGED, list_id=list_id)
        return added

    def add_many(self, list_id: str, item_ids: list[str]) -> int:
        """Add several items in one unit of work. Returns how many were new."""
        added = 0
        with self.store.transaction():
            self._require_list(list_id)
            entries = self.store.get_list_entries(list_id=list_id)
            members = {e.item_id for e in entries}
            sort_order = max((e.sort_order for e in entries), default=-1) + 1
            for item_id in item_ids:
                if item_id in members or self.store.get_classified(item_id) is None:
                    continue
                if self.store.add_list_entry(ListEntry.create(list_id, item_id, sort_order)):
                    members.add(item_id)
                    sort_order += 1
                    added += 1

        if added:
            self.events.emit(LIST_CHANGED, list_id=list_id)
        return added

    def remove_membership(self, list_id: str, item_id: str) -> bool:
        with self.store.transaction():
            removed = self.store.delete_list_entries(list_id=list_id, item_id=item_id)
        if removed:
            self.events.emit(LIST_CHANGED, list_id=list_id)
        return removed > 0

    def is_member(self, list_id: str, item_id: str) -> bool:
        return bool(self.store.get_list_entries(list_id=list_id, item_id=item_id))

    def lists_containing(self, item_id: str) -> list[UserList]:
        list_ids = {e.list_id for e in self.store.get_list_entries(item_id=item_id)}
        return [l for l in self.store.list_user_lists() if l.id in list_ids]
