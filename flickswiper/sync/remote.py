"""Remote list store: published list documents and follow records."""

import asyncio
import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from flickswiper.errors import RemoteSyncError
from flickswiper.models import MediaKind

logger = logging.getLogger(__name__)


SnapshotCallback = Callable[["PublishedListSnapshot | None"], None]


@dataclass
class PublishedListItem:
    """One entry of a published list document's `items` array."""
    tmdb_id: int
    media_type: str
    title: str
    poster_path: str | None = None
    date_added: datetime = field(default_factory=datetime.utcnow)

    @property
    def media_kind(self) -> MediaKind:
        try:
            return MediaKind(self.media_type)
        except ValueError:
            return MediaKind.MOVIE

    def to_payload(self) -> dict[str, Any]:
        payload = {
            "tmdbID": self.tmdb_id,
            "mediaType": self.media_type,
            "title": self.title,
            "dateAdded": self.date_added.isoformat(),
        }
        if self.poster_path:
            payload["posterPath"] = self.poster_path
        return payload

    @classmethod
    def from_payload(cls, d: dict[str, Any]) -> "PublishedListItem":
        date_added = d.get("dateAdded")
        try:
            added = datetime.fromisoformat(date_added) if date_added else datetime.utcnow()
        except (TypeError, ValueError):
            added = datetime.utcnow()
        return cls(
            tmdb_id=d.get("tmdbID", 0),
            media_type=d.get("mediaType", "movie"),
            title=d.get("title", "Unknown"),
            poster_path=d.get("posterPath"),
            date_added=added,
        )


@dataclass
class PublishedListData:
    """What a publisher sends when creating a document."""
    owner_id: str
    owner_display_name: str
    name: str
    items: list[PublishedListItem]


@dataclass
class PublishedListSnapshot:
    """A published list document as seen by readers."""
    doc_id: str
    owner_id: str
    owner_display_name: str
    name: str
    description: str
    items: list[PublishedListItem]
    item_count: int
    is_active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_payload(cls, doc_id: str, data: dict[str, Any]) -> "PublishedListSnapshot":
        """Parse a document, filling defaults for anything missing."""
        items = [PublishedListItem.from_payload(d) for d in data.get("items") or []]
        return cls(
            doc_id=doc_id,
            owner_id=data.get("ownerUID", ""),
            owner_display_name=data.get("ownerDisplayName", "Unknown"),
            name=data.get("name", "Untitled"),
            description=data.get("description", ""),
            items=items,
            item_count=data.get("itemCount", len(items)),
            is_active=data.get("isActive", True),
            created_at=_parse_timestamp(data.get("createdAt")),
            updated_at=_parse_timestamp(data.get("updatedAt")),
        )


def _parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None


def build_document(data: PublishedListData, now: datetime) -> dict[str, Any]:
    """Full payload for a newly published list."""
    return {
        "ownerUID": data.owner_id,
        "ownerDisplayName": data.owner_display_name,
        "name": data.name,
        "description": "",
        "items": [i.to_payload() for i in data.items],
        "itemCount": len(data.items),
        "createdAt": now.isoformat(),
        "updatedAt": now.isoformat(),
        "isActive": True,
    }


class Subscription(ABC):
    """Handle for a live document subscription."""

    @abstractmethod
    def cancel(self) -> None:
        """Stop delivery. Idempotent."""
        pass


class RemoteListStore(ABC):
    """Remote document store for published lists and follows.

    Subscriptions push the current document state first, then every later
    change. A deleted document or a listener error is delivered as None.
    Callbacks may be invoked from any thread.
    """

    @abstractmethod
    async def create_document(self, data: PublishedListData) -> str:
        """Create a published list document. Returns its new document ID."""
        pass

    @abstractmethod
    async def update_document(self, doc_id: str, name: str, items: list[PublishedListItem]) -> None:
        """Replace a document's name and items."""
        pass

    @abstractmethod
    async def soft_deactivate(self, doc_id: str) -> None:
        """Mark a document inactive; followers keep their cached copy."""
        pass

    @abstractmethod
    async def get_document(self, doc_id: str) -> PublishedListSnapshot | None:
        """Fetch a document, or None if it does not exist."""
        pass

    @abstractmethod
    def subscribe(self, doc_id: str, on_event: SnapshotCallback) -> Subscription:
        """Listen to a document."""
        pass

    @abstractmethod
    async def add_follow(self, user_id: str, doc_id: str) -> str:
        """Record that a user follows a list. Returns the follow record ID."""
        pass

    @abstractmethod
    async def remove_follow(self, user_id: str, doc_id: str) -> None:
        pass

    @abstractmethod
    async def is_following(self, user_id: str, doc_id: str) -> bool:
        pass

    @abstractmethod
    async def followed_doc_ids(self, user_id: str) -> list[str]:
        pass


class _MemorySubscription(Subscription):
    def __init__(
        self,
        remote: "MemoryRemoteStore",
        doc_id: str,
        on_event: SnapshotCallback,
        loop: asyncio.AbstractEventLoop,
    ):
        self.remote = remote
        self.loop = loop
        self.doc_id = doc_id
        self.on_event = on_event
        self.active = True

    def deliver(self, snapshot: PublishedListSnapshot | None) -> None:
        if self.active:
            self.on_event(snapshot)

    def cancel(self) -> None:
        if self.active:
            self.active = False
            self.remote._unsubscribe(self)


class MemoryRemoteStore(RemoteListStore):
    """In-process remote store with push delivery through the event loop.

    Optionally persisted to a JSON file so separate CLI runs share state.
    Writes can be made to fail with `fail_writes` to exercise error paths.
    """

    def __init__(self, path: str | None = None):
        self.path = Path(path).expanduser() if path else None
        self.documents: dict[str, dict[str, Any]] = {}
        self.follows: dict[str, dict[str, Any]] = {}
        self.fail_writes = False
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[_MemorySubscription]] = {}
        self._load()

    # Persistence

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text())
        except (OSError, ValueError) as e:
            raise RemoteSyncError(f"Failed to load remote store {self.path}: {e}") from e
        self.documents = data.get("documents", {})
        self.follows = data.get("follows", {})

    def _save(self) -> None:
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps({"documents": self.documents, "follows": self.follows}, indent=2)
            )
        except OSError as e:
            raise RemoteSyncError(f"Failed to save remote store {self.path}: {e}") from e

    def _check_writable(self) -> None:
        if self.fail_writes:
            raise RemoteSyncError("Remote store is unavailable")

    # Documents

    async def create_document(self, data: PublishedListData) -> str:
        self._check_writable()
        doc_id = uuid.uuid4().hex[:20]
        with self._lock:
            self.documents[doc_id] = build_document(data, datetime.utcnow())
            self._save()
        logger.info(f"Published list '{data.name}' with doc ID: {doc_id}")
        self._notify(doc_id)
        return doc_id

    async def update_document(self, doc_id: str, name: str, items: list[PublishedListItem]) -> None:
        self._check_writable()
        with self._lock:
            doc = self.documents.get(doc_id)
            if doc is None:
                raise RemoteSyncError(f"No published list {doc_id}")
            doc["name"] = name
            doc["items"] = [i.to_payload() for i in items]
            doc["itemCount"] = len(items)
            doc["updatedAt"] = datetime.utcnow().isoformat()
            self._save()
        logger.info(f"Updated published list {doc_id}")
        self._notify(doc_id)

    async def soft_deactivate(self, doc_id: str) -> None:
        self._check_writable()
        with self._lock:
            doc = self.documents.get(doc_id)
            if doc is None:
                raise RemoteSyncError(f"No published list {doc_id}")
            doc["isActive"] = False
            doc["updatedAt"] = datetime.utcnow().isoformat()
            self._save()
        logger.info(f"Unpublished list {doc_id}")
        self._notify(doc_id)

    async def get_document(self, doc_id: str) -> PublishedListSnapshot | None:
        return self._snapshot(doc_id)

    def delete_document(self, doc_id: str) -> None:
        """Hard delete; subscribers receive None."""
        with self._lock:
            self.documents.pop(doc_id, None)
            self._save()
        self._notify(doc_id)

    def emit_error(self, doc_id: str) -> None:
        """Deliver a listener error (None) to every subscriber of a document."""
        self._deliver(doc_id, None)

    def _snapshot(self, doc_id: str) -> PublishedListSnapshot | None:
        with self._lock:
            doc = self.documents.get(doc_id)
            if doc is None:
                return None
            return PublishedListSnapshot.from_payload(doc_id, json.loads(json.dumps(doc)))

    # Subscriptions

    def subscribe(self, doc_id: str, on_event: SnapshotCallback) -> Subscription:
        loop = asyncio.get_running_loop()
        subscription = _MemorySubscription(self, doc_id, on_event, loop)
        with self._lock:
            self._subscribers.setdefault(doc_id, []).append(subscription)
        loop.call_soon(subscription.deliver, self._snapshot(doc_id))
        return subscription

    def _unsubscribe(self, subscription: _MemorySubscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.doc_id, [])
            if subscription in subscribers:
                subscribers.remove(subscription)

    def subscriber_count(self, doc_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(doc_id, []))

    def _notify(self, doc_id: str) -> None:
        self._deliver(doc_id, self._snapshot(doc_id))

    def _deliver(self, doc_id: str, snapshot: PublishedListSnapshot | None) -> None:
        with self._lock:
            subscribers = list(self._subscribers.get(doc_id, []))
        # Deliver after the writer's await point, like a push from the network
        for subscription in subscribers:
            if subscription.loop.is_closed():
                continue
            subscription.loop.call_soon_threadsafe(subscription.deliver, snapshot)

    # Follows

    def _find_follows(self, user_id: str, doc_id: str) -> list[str]:
        return [
            follow_id for follow_id, f in self.follows.items()
            if f["followerUID"] == user_id and f["listID"] == doc_id
        ]

    async def add_follow(self, user_id: str, doc_id: str) -> str:
        self._check_writable()
        with self._lock:
            existing = self._find_follows(user_id, doc_id)
            if existing:
                logger.info(f"Already following list {doc_id}")
                return existing[0]
            follow_id = uuid.uuid4().hex[:20]
            self.follows[follow_id] = {
                "followerUID": user_id,
                "listID": doc_id,
                "followedAt": datetime.utcnow().isoformat(),
            }
            self._save()
        logger.info(f"Followed list {doc_id}, follow doc: {follow_id}")
        return follow_id

    async def remove_follow(self, user_id: str, doc_id: str) -> None:
        self._check_writable()
        with self._lock:
            for follow_id in self._find_follows(user_id, doc_id):
                del self.follows[follow_id]
            self._save()
        logger.info(f"Unfollowed list {doc_id}")

    async def is_following(self, user_id: str, doc_id: str) -> bool:
        with self._lock:
            return bool(self._find_follows(user_id, doc_id))

    async def followed_doc_ids(self, user_id: str) -> list[str]:
        with self._lock:
            return [f["listID"] for f in self.follows.values() if f["followerUID"] == user_id]


class DocumentLocks:
    """One asyncio.Lock per remote document.

    Shared by the publisher and the follow sync so writes and
    reconciliation for the same document never interleave.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, doc_id: str) -> asyncio.Lock:
        lock = self._locks.get(doc_id)
        if lock is None:
            lock = self._locks[doc_id] = asyncio.Lock()
        return lock

    def discard(self, doc_id: str) -> None:
        """Forget a document's lock once nothing holds it."""
        lock = self._locks.get(doc_id)
        if lock is not None and not lock.locked():
            del self._locks[doc_id]

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._locks
