"""JSON file-based storage backend."""

import copy
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from flickswiper.errors import PersistenceError
from flickswiper.models import (
    ClassifiedItem, Direction, MediaKind, UserList, ListEntry,
    FollowedList, FollowedListItem,
)
from flickswiper.store.base import Store

logger = logging.getLogger(__name__)


def _datetime_to_str(dt: datetime) -> str:
    """Convert datetime to ISO format string."""
    return dt.isoformat()


def _str_to_datetime(s: str) -> datetime:
    """Parse ISO format string to datetime."""
    return datetime.fromisoformat(s)


def _optional_datetime(s: str | None) -> datetime | None:
    return _str_to_datetime(s) if s else None


def _classified_to_dict(item: ClassifiedItem) -> dict[str, Any]:
    """Serialize a ClassifiedItem to a dictionary."""
    return {
        "unique_id": item.unique_id,
        "external_id": item.external_id,
        "media_kind": item.media_kind.value,
        "direction": item.direction.value,
        "classified_at": _datetime_to_str(item.classified_at),
        "title": item.title,
        "overview": item.overview,
        "poster_path": item.poster_path,
        "release_date": item.release_date,
        "rating": item.rating,
        "personal_rating": item.personal_rating,
        "genre_ids": list(item.genre_ids),
        "source_platform": item.source_platform,
    }


def _dict_to_classified(d: dict[str, Any]) -> ClassifiedItem:
    """Deserialize a dictionary to a ClassifiedItem.

    Records written before personal ratings existed load with no rating,
    no genres and no platform.
    """
    return ClassifiedItem(
        unique_id=d["unique_id"],
        external_id=d["external_id"],
        media_kind=MediaKind(d["media_kind"]),
        direction=Direction(d["direction"]),
        classified_at=_str_to_datetime(d["classified_at"]),
        title=d.get("title", ""),
        overview=d.get("overview", ""),
        poster_path=d.get("poster_path"),
        release_date=d.get("release_date"),
        rating=d.get("rating"),
        personal_rating=d.get("personal_rating"),
        genre_ids=d.get("genre_ids", []),
        source_platform=d.get("source_platform"),
    )


def _user_list_to_dict(user_list: UserList) -> dict[str, Any]:
    return {
        "id": user_list.id,
        "name": user_list.name,
        "created_at": _datetime_to_str(user_list.created_at),
        "sort_order": user_list.sort_order,
        "remote_doc_id": user_list.remote_doc_id,
        "is_published": user_list.is_published,
        "last_synced_at": _datetime_to_str(user_list.last_synced_at) if user_list.last_synced_at else None,
    }


def _dict_to_user_list(d: dict[str, Any]) -> UserList:
    return UserList(
        id=d["id"],
        name=d["name"],
        created_at=_str_to_datetime(d["created_at"]),
        sort_order=d.get("sort_order", 0),
        remote_doc_id=d.get("remote_doc_id"),
        is_published=d.get("is_published", False),
        last_synced_at=_optional_datetime(d.get("last_synced_at")),
    )


def _entry_to_dict(entry: ListEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "list_id": entry.list_id,
        "item_id": entry.item_id,
        "added_at": _datetime_to_str(entry.added_at),
        "sort_order": entry.sort_order,
    }


def _dict_to_entry(d: dict[str, Any]) -> ListEntry:
    return ListEntry(
        id=d["id"],
        list_id=d["list_id"],
        item_id=d["item_id"],
        added_at=_str_to_datetime(d["added_at"]),
        sort_order=d.get("sort_order", 0),
    )


def _followed_to_dict(followed: FollowedList, items: list[FollowedListItem]) -> dict[str, Any]:
    return {
        "remote_doc_id": followed.remote_doc_id,
        "local_id": followed.local_id,
        "name": followed.name,
        "owner_display_name": followed.owner_display_name,
        "owner_id": followed.owner_id,
        "item_count": followed.item_count,
        "followed_at": _datetime_to_str(followed.followed_at),
        "is_active": followed.is_active,
        "last_fetched_at": _datetime_to_str(followed.last_fetched_at) if followed.last_fetched_at else None,
        "items": [
            {
                "local_id": item.local_id,
                "external_id": item.external_id,
                "media_kind": item.media_kind.value,
                "title": item.title,
                "poster_path": item.poster_path,
                "sort_order": item.sort_order,
            }
            for item in items
        ],
    }


def _dict_to_followed(d: dict[str, Any]) -> tuple[FollowedList, list[FollowedListItem]]:
    followed = FollowedList(
        remote_doc_id=d["remote_doc_id"],
        local_id=d["local_id"],
        name=d["name"],
        owner_display_name=d["owner_display_name"],
        owner_id=d["owner_id"],
        item_count=d.get("item_count", 0),
        followed_at=_str_to_datetime(d["followed_at"]),
        is_active=d.get("is_active", True),
        last_fetched_at=_optional_datetime(d.get("last_fetched_at")),
    )
    items = [
        FollowedListItem(
            local_id=i["local_id"],
            followed_list_id=followed.remote_doc_id,
            external_id=i["external_id"],
            media_kind=MediaKind(i["media_kind"]),
            title=i["title"],
            poster_path=i.get("poster_path"),
            sort_order=i.get("sort_order", 0),
        )
        for i in d.get("items", [])
    ]
    return followed, items


class FileStore(Store):
    """JSON file-backed store. Simple, inspectable, good for testing.

    All data is held in memory; each committed unit of work rewrites a
    single JSON document and swaps it into place, so a save lands whole or
    not at all.
    """

    def __init__(self, data_dir: str):
        self.data_dir = Path(data_dir).expanduser()
        self.store_file = self.data_dir / "store.json"

        self._library: dict[str, ClassifiedItem] = {}
        self._lists: dict[str, UserList] = {}
        self._entries: dict[str, ListEntry] = {}
        self._followed: dict[str, FollowedList] = {}
        self._followed_items: dict[str, list[FollowedListItem]] = {}

        self._lock = threading.RLock()
        self._depth = 0
        self._load()

    def _load(self) -> None:
        """Load data from the store document."""
        if not self.store_file.exists():
            return
        try:
            data = json.loads(self.store_file.read_text())
            self._library = {d["unique_id"]: _dict_to_classified(d) for d in data.get("library", [])}
            self._lists = {d["id"]: _dict_to_user_list(d) for d in data.get("lists", [])}
            self._entries = {d["id"]: _dict_to_entry(d) for d in data.get("entries", [])}
            for d in data.get("followed", []):
                followed, items = _dict_to_followed(d)
                self._followed[followed.remote_doc_id] = followed
                self._followed_items[followed.remote_doc_id] = items
        except (OSError, ValueError, KeyError, AttributeError) as e:
            raise PersistenceError(f"Failed to load store from {self.store_file}: {e}") from e

    def _document(self) -> dict[str, Any]:
        return {
            "library": [_classified_to_dict(i) for i in self._library.values()],
            "lists": [_user_list_to_dict(l) for l in self._lists.values()],
            "entries": [_entry_to_dict(e) for e in self._entries.values()],
            "followed": [
                _followed_to_dict(f, self._followed_items.get(doc_id, []))
                for doc_id, f in self._followed.items()
            ],
        }

    def _write_json(self, path: Path, data: Any) -> None:
        # Write to a sibling temp file and rename so readers never see a partial file
        fd, tmp_path = tempfile.mkstemp(dir=self.data_dir, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _save(self) -> None:
        """Persist every record kind in one atomic replace."""
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            self._write_json(self.store_file, self._document())
        except OSError as e:
            raise PersistenceError(f"Failed to save store to {self.store_file}: {e}") from e

    def _snapshot(self) -> tuple:
        return copy.deepcopy(
            (self._library, self._lists, self._entries, self._followed, self._followed_items)
        )

    def _restore(self, snapshot: tuple) -> None:
        (
            self._library,
            self._lists,
            self._entries,
            self._followed,
            self._followed_items,
        ) = snapshot

    # Unit of work

    @contextmanager
    def transaction(self) -> Iterator["FileStore"]:
        with self._lock:
            snapshot = self._snapshot() if self._depth == 0 else None
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if snapshot is not None:
                    self._restore(snapshot)
                raise
            self._depth -= 1
            if snapshot is not None:
                try:
                    self._save()
                except PersistenceError:
                    self._restore(snapshot)
                    raise

    # Classified items

    def insert_classified(self, item: ClassifiedItem) -> None:
        with self.transaction():
            if item.unique_id in self._library:
                raise PersistenceError(f"Library record {item.unique_id} already exists")
            self._library[item.unique_id] = copy.deepcopy(item)

    def update_classified(self, item: ClassifiedItem) -> None:
        with self.transaction():
            if item.unique_id not in self._library:
                raise PersistenceError(f"No library record for {item.unique_id}")
            self._library[item.unique_id] = copy.deepcopy(item)

    def get_classified(self, unique_id: str) -> ClassifiedItem | None:
        with self._lock:
            item = self._library.get(unique_id)
            return copy.deepcopy(item) if item else None

    def list_classified(
        self,
        direction: Direction | None = None,
        limit: int | None = None,
    ) -> list[ClassifiedItem]:
        with self._lock:
            items = [
                i for i in self._library.values()
                if direction is None or i.direction is direction
            ]
            items.sort(key=lambda i: i.classified_at, reverse=True)
            if limit is not None:
                items = items[:limit]
            return copy.deepcopy(items)

    def classified_ids(self) -> set[str]:
        with self._lock:
            return set(self._library)

    def count_classified(self, direction: Direction | None = None) -> int:
        with self._lock:
            if direction is None:
                return len(self._library)
            return sum(1 for i in self._library.values() if i.direction is direction)

    def delete_classified(self, unique_id: str) -> bool:
        with self.transaction():
            return self._library.pop(unique_id, None) is not None

    # User lists

    def add_user_list(self, user_list: UserList) -> None:
        with self.transaction():
            if user_list.id in self._lists:
                raise PersistenceError(f"User list {user_list.id} already exists")
            self._lists[user_list.id] = copy.deepcopy(user_list)

    def update_user_list(self, user_list: UserList) -> None:
        with self.transaction():
            if user_list.id not in self._lists:
                raise PersistenceError(f"No user list {user_list.id}")
            self._lists[user_list.id] = copy.deepcopy(user_list)

    def get_user_list(self, list_id: str) -> UserList | None:
        with self._lock:
            user_list = self._lists.get(list_id)
            return copy.deepcopy(user_list) if user_list else None

    def list_user_lists(self) -> list[UserList]:
        with self._lock:
            lists = sorted(self._lists.values(), key=lambda l: (l.sort_order, l.created_at))
            return copy.deepcopy(lists)

    def delete_user_list(self, list_id: str) -> bool:
        with self.transaction():
            return self._lists.pop(list_id, None) is not None

    # List entries

    def _matching_entries(self, list_id: str | None, item_id: str | None) -> list[ListEntry]:
        return [
            e for e in self._entries.values()
            if (list_id is None or e.list_id == list_id)
            and (item_id is None or e.item_id == item_id)
        ]

    def add_list_entry(self, entry: ListEntry) -> bool:
        with self.transaction():
            if self._matching_entries(entry.list_id, entry.item_id):
                return False
            self._entries[entry.id] = copy.deepcopy(entry)
            return True

    def get_list_entries(
        self,
        list_id: str | None = None,
        item_id: str | None = None,
    ) -> list[ListEntry]:
        with self._lock:
            entries = self._matching_entries(list_id, item_id)
            entries.sort(key=lambda e: (e.sort_order, e.added_at))
            return copy.deepcopy(entries)

    def delete_list_entries(
        self,
        list_id: str | None = None,
        item_id: str | None = None,
    ) -> int:
        if list_id is None and item_id is None:
            raise ValueError("delete_list_entries requires list_id or item_id")
        with self.transaction():
            matches = self._matching_entries(list_id, item_id)
            for entry in matches:
                del self._entries[entry.id]
            return len(matches)

    # Followed lists

    def upsert_followed_list(self, followed: FollowedList) -> None:
        with self.transaction():
            existing = self._followed.get(followed.remote_doc_id)
            stored = copy.deepcopy(followed)
            if existing:
                # Identity and follow date are fixed at first insert
                stored.local_id = existing.local_id
                stored.followed_at = existing.followed_at
            self._followed[followed.remote_doc_id] = stored

    def get_followed_list(self, remote_doc_id: str) -> FollowedList | None:
        with self._lock:
            followed = self._followed.get(remote_doc_id)
            return copy.deepcopy(followed) if followed else None

    def list_followed_lists(self) -> list[FollowedList]:
        with self._lock:
            lists = sorted(self._followed.values(), key=lambda f: f.followed_at, reverse=True)
            return copy.deepcopy(lists)

    def delete_followed_list(self, remote_doc_id: str) -> bool:
        with self.transaction():
            self._followed_items.pop(remote_doc_id, None)
            return self._followed.pop(remote_doc_id, None) is not None

    def replace_followed_list_items(
        self, remote_doc_id: str, items: list[FollowedListItem]
    ) -> None:
        with self.transaction():
            self._followed_items[remote_doc_id] = copy.deepcopy(items)

    def get_followed_list_items(self, remote_doc_id: str) -> list[FollowedListItem]:
        with self._lock:
            items = sorted(self._followed_items.get(remote_doc_id, []), key=lambda i: i.sort_order)
            return copy.deepcopy(items)

    # Lifecycle

    def close(self) -> None:
        pass
