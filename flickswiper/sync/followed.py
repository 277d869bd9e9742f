"""Followed list sync: live mirrors of lists published by other users."""

import asyncio
import dataclasses
import logging
from datetime import datetime
from enum import Enum

from flickswiper.errors import ConsistencyViolation, FlickSwiperError, RemoteSyncError
from flickswiper.events import EventEmitter, FOLLOWED_LIST_UPDATED
from flickswiper.models import FollowedList, FollowedListItem
from flickswiper.store.base import Store
from flickswiper.sync.remote import DocumentLocks, PublishedListSnapshot, RemoteListStore, Subscription

logger = logging.getLogger(__name__)


class SyncState(Enum):
    """Subscription state of one followed list."""
    NONE = "none"
    LISTENING = "listening"
    DETACHED = "detached"


def _snapshot_items(doc_id: str, snapshot: PublishedListSnapshot) -> list[FollowedListItem]:
    return [
        FollowedListItem(
            followed_list_id=doc_id,
            external_id=item.tmdb_id,
            media_kind=item.media_kind,
            title=item.title,
            poster_path=item.poster_path,
            sort_order=index,
        )
        for index, item in enumerate(snapshot.items)
    ]


class FollowedListSync:
    """Keeps one remote subscription per followed list.

    Incoming snapshots for a document go through a per-document queue and
    are reconciled one at a time, in receipt order, under that document's
    lock.
    """

    def __init__(
        self,
        store: Store,
        remote: RemoteListStore,
        events: EventEmitter | None = None,
        locks: DocumentLocks | None = None,
    ):
        self.store = store
        self.remote = remote
        self.events = events or EventEmitter()
        self.locks = locks or DocumentLocks()
        self.is_active = False

        self._subscriptions: dict[str, Subscription] = {}
        self._queues: dict[str, asyncio.Queue] = {}
        self._workers: dict[str, asyncio.Task] = {}
        self._detached: set[str] = set()

    # Lifecycle

    def activate(self) -> int:
        """Attach to every followed list. Safe to call again."""
        if not self.is_active:
            logger.info("Activating followed list sync")
        self.is_active = True
        attached = 0
        for followed in self.store.list_followed_lists():
            if self.attach(followed.remote_doc_id):
                attached += 1
        if attached:
            logger.info(f"Attached {attached} listeners")
        return attached

    def deactivate(self) -> None:
        """Detach every listener."""
        if not self.is_active and not self._subscriptions:
            return
        for doc_id in list(self._subscriptions):
            self.detach(doc_id)
        self.is_active = False
        logger.info("Deactivated followed list sync")

    def state(self, doc_id: str) -> SyncState:
        if doc_id in self._subscriptions:
            return SyncState.LISTENING
        if doc_id in self._detached:
            return SyncState.DETACHED
        return SyncState.NONE

    @property
    def listening(self) -> frozenset[str]:
        return frozenset(self._subscriptions)

    def attach(self, doc_id: str) -> bool:
        """Subscribe to a document. Returns False if already listening."""
        if doc_id in self._subscriptions:
            return False

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        def on_event(snapshot: PublishedListSnapshot | None) -> None:
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is loop:
                queue.put_nowait(snapshot)
            else:
                # Remote callbacks may arrive on another thread
                loop.call_soon_threadsafe(queue.put_nowait, snapshot)

        self._queues[doc_id] = queue
        self._workers[doc_id] = loop.create_task(self._drain(doc_id, queue))
        self._subscriptions[doc_id] = self.remote.subscribe(doc_id, on_event)
        self._detached.discard(doc_id)
        logger.info(f"Listening to {doc_id}")
        return True

    def detach(self, doc_id: str) -> bool:
        """Stop listening to a document. Idempotent."""
        subscription = self._subscriptions.pop(doc_id, None)
        if subscription is None:
            return False
        subscription.cancel()
        worker = self._workers.pop(doc_id, None)
        if worker is not None:
            worker.cancel()
        self._queues.pop(doc_id, None)
        self._detached.add(doc_id)
        logger.info(f"Detached listener for {doc_id}")
        return True

    async def _drain(self, doc_id: str, queue: asyncio.Queue) -> None:
        while True:
            snapshot = await queue.get()
            try:
                async with self.locks.get(doc_id):
                    self.reconcile(doc_id, snapshot)
            finally:
                queue.task_done()

    async def wait_idle(self) -> None:
        """Wait until every queued snapshot has been reconciled."""
        # Let pending call_soon deliveries land in the queues first
        await asyncio.sleep(0)
        for queue in list(self._queues.values()):
            await queue.join()

    async def close(self) -> None:
        workers = list(self._workers.values())
        self.deactivate()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)

    # Reconciliation

    def reconcile(self, doc_id: str, snapshot: PublishedListSnapshot | None) -> bool:
        """Apply one snapshot to the local mirror.

        None marks the list inactive and keeps its cached items. Otherwise
        metadata is overwritten and items are fully replaced in snapshot
        order. Failures are logged and leave the previous state intact.
        """
        try:
            with self.store.transaction():
                local = self.store.get_followed_list(doc_id)
                if local is None:
                    logger.warning(f"Received update for {doc_id} but no local followed list found")
                    return False

                if snapshot is None:
                    self.store.upsert_followed_list(dataclasses.replace(local, is_active=False))
                else:
                    self._apply(local, snapshot)
        except FlickSwiperError as e:
            logger.error(f"Failed to save snapshot update for {doc_id}: {e}")
            return False

        if snapshot is None:
            logger.info(f"List {doc_id} marked inactive (snapshot missing)")
        else:
            logger.info(f"Updated local cache for {doc_id}: {len(snapshot.items)} items")
        self.events.emit(FOLLOWED_LIST_UPDATED, remote_doc_id=doc_id)
        return True

    def _apply(self, local: FollowedList, snapshot: PublishedListSnapshot) -> FollowedList:
        updated = dataclasses.replace(
            local,
            name=snapshot.name,
            owner_display_name=snapshot.owner_display_name,
            item_count=snapshot.item_count,
            is_active=snapshot.is_active,
            last_fetched_at=datetime.utcnow(),
        )
        self.store.upsert_followed_list(updated)
        self.store.replace_followed_list_items(local.remote_doc_id, _snapshot_items(local.remote_doc_id, snapshot))
        return updated

    # Follow management

    async def follow(self, doc_id: str, user_id: str) -> FollowedList:
        """Follow a published list and start mirroring it."""
        snapshot = await self.remote.get_document(doc_id)
        if snapshot is None or not snapshot.is_active:
            raise RemoteSyncError("This list is no longer available.")
        if snapshot.owner_id == user_id:
            raise ConsistencyViolation("You can't follow your own list.")

        async with self.locks.get(doc_id):
            await self.remote.add_follow(user_id, doc_id)
            with self.store.transaction():
                local = self.store.get_followed_list(doc_id) or FollowedList(
                    remote_doc_id=doc_id,
                    name=snapshot.name,
                    owner_display_name=snapshot.owner_display_name,
                    owner_id=snapshot.owner_id,
                )
                followed = self._apply(local, snapshot)

        logger.info(f"Following '{followed.name}' ({doc_id})")
        self.events.emit(FOLLOWED_LIST_UPDATED, remote_doc_id=doc_id)
        if self.is_active:
            self.attach(doc_id)
        return followed

    async def unfollow(self, doc_id: str, user_id: str) -> bool:
        """Stop following a list and drop its local mirror."""
        self.detach(doc_id)
        async with self.locks.get(doc_id):
            await self.remote.remove_follow(user_id, doc_id)
            deleted = self.store.delete_followed_list(doc_id)
        self.locks.discard(doc_id)
        self.events.emit(FOLLOWED_LIST_UPDATED, remote_doc_id=doc_id)
        return deleted

    async def restore_follows(self, user_id: str) -> int:
        """Recreate local mirrors for follows recorded remotely but missing locally."""
        restored = 0
        for doc_id in await self.remote.followed_doc_ids(user_id):
            if self.store.get_followed_list(doc_id) is not None:
                continue
            snapshot = await self.remote.get_document(doc_id)
            if snapshot is None:
                logger.warning(f"Followed list {doc_id} no longer exists")
                continue
            async with self.locks.get(doc_id):
                with self.store.transaction():
                    self._apply(
                        FollowedList(
                            remote_doc_id=doc_id,
                            name=snapshot.name,
                            owner_display_name=snapshot.owner_display_name,
                            owner_id=snapshot.owner_id,
                        ),
                        snapshot,
                    )
            restored += 1
            if self.is_active:
                self.attach(doc_id)
        if restored:
            logger.info(f"Restored {restored} followed lists")
        return restored

    # Reads

    def followed_lists(self) -> list[FollowedList]:
        return self.store.list_followed_lists()

    def items(self, doc_id: str) -> list[FollowedListItem]:
        return self.store.get_followed_list_items(doc_id)
