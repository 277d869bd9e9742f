"""List publisher: pushes local user lists to the remote store."""

import asyncio
import dataclasses
import logging
from datetime import datetime
from typing import Any, Awaitable

from flickswiper.deeplink import share_link
from flickswiper.display_name import DisplayNameValidator
from flickswiper.errors import ConsistencyViolation, FlickSwiperError
from flickswiper.events import EventEmitter, ITEM_REMOVED, LIBRARY_CHANGED, LIST_CHANGED, LIST_DELETED
from flickswiper.models import Direction, UserList
from flickswiper.store.base import Store
from flickswiper.sync.remote import DocumentLocks, PublishedListData, PublishedListItem, RemoteListStore

logger = logging.getLogger(__name__)


class ListPublisher:
    """Publishes, unpublishes and re-syncs user lists.

    Only seen and watchlisted items are published, in list order. All
    writes for a document hold that document's lock.
    """

    def __init__(
        self,
        store: Store,
        remote: RemoteListStore,
        locks: DocumentLocks | None = None,
        validator: DisplayNameValidator | None = None,
    ):
        self.store = store
        self.remote = remote
        self.locks = locks or DocumentLocks()
        self.validator = validator or DisplayNameValidator()
        self._background: set[asyncio.Task] = set()

    def serialize(self, list_id: str) -> list[PublishedListItem]:
        """Published representation of a list's current contents."""
        items = []
        for entry in self.store.get_list_entries(list_id=list_id):
            record = self.store.get_classified(entry.item_id)
            if record is None or record.direction is Direction.SKIPPED:
                continue
            items.append(
                PublishedListItem(
                    tmdb_id=record.external_id,
                    media_type=record.media_kind.value,
                    title=record.title,
                    poster_path=record.poster_path,
                    date_added=record.classified_at,
                )
            )
        return items

    def _require_list(self, list_id: str) -> UserList:
        user_list = self.store.get_user_list(list_id)
        if user_list is None:
            raise ConsistencyViolation(f"No list with id {list_id}")
        return user_list

    async def publish(self, list_id: str, owner_id: str, owner_display_name: str) -> str:
        """Publish a list and return its share link.

        A list that is already published is re-synced and keeps its link.
        """
        display_name = self.validator.validate(owner_display_name)
        user_list = self._require_list(list_id)

        if user_list.is_published and user_list.remote_doc_id:
            await self.sync_if_published(list_id)
            return share_link(user_list.remote_doc_id)

        data = PublishedListData(
            owner_id=owner_id,
            owner_display_name=display_name,
            name=user_list.name,
            items=self.serialize(list_id),
        )
        doc_id = await self.remote.create_document(data)

        async with self.locks.get(doc_id):
            try:
                with self.store.transaction():
                    current = self._require_list(list_id)
                    self.store.update_user_list(
                        dataclasses.replace(
                            current,
                            remote_doc_id=doc_id,
                            is_published=True,
                            last_synced_at=datetime.utcnow(),
                        )
                    )
            except FlickSwiperError:
                # Don't leave an orphaned live document behind
                await self.remote.soft_deactivate(doc_id)
                raise

        url = share_link(doc_id)
        logger.info(f"Published '{user_list.name}' -> {url}")
        return url

    async def unpublish(self, list_id: str) -> bool:
        """Soft-deactivate the remote document and clear local publish state.

        Re-publishing afterwards creates a new document ID.
        """
        user_list = self._require_list(list_id)
        doc_id = user_list.remote_doc_id
        if not doc_id:
            logger.warning(f"Attempted to unpublish list '{user_list.name}' which isn't published")
            return False

        async with self.locks.get(doc_id):
            await self.remote.soft_deactivate(doc_id)
            with self.store.transaction():
                current = self._require_list(list_id)
                self.store.update_user_list(
                    dataclasses.replace(current, remote_doc_id=None, is_published=False, last_synced_at=None)
                )
        self.locks.discard(doc_id)

        logger.info(f"Unpublished '{user_list.name}' (was doc {doc_id})")
        return True

    async def sync_if_published(self, list_id: str) -> bool:
        """Push the list's name and items if it is published."""
        user_list = self.store.get_user_list(list_id)
        if user_list is None or not user_list.is_published or not user_list.remote_doc_id:
            return False
        doc_id = user_list.remote_doc_id

        async with self.locks.get(doc_id):
            # Re-read under the lock; an unpublish may have won the race
            user_list = self.store.get_user_list(list_id)
            if user_list is None or user_list.remote_doc_id != doc_id or not user_list.is_published:
                return False

            await self.remote.update_document(doc_id, user_list.name, self.serialize(list_id))
            with self.store.transaction():
                current = self._require_list(list_id)
                self.store.update_user_list(dataclasses.replace(current, last_synced_at=datetime.utcnow()))

        logger.info(f"Synced '{user_list.name}' to remote")
        return True

    async def deactivate_document(self, doc_id: str) -> None:
        """Soft-deactivate a document whose local list is already gone."""
        async with self.locks.get(doc_id):
            await self.remote.soft_deactivate(doc_id)
        logger.info(f"Deactivated published document {doc_id} for deleted list")

    # Automatic sync

    def watch(self, events: EventEmitter) -> None:
        """Push published lists automatically when their content changes."""
        events.subscribe(LIST_CHANGED, self._on_list_changed)
        events.subscribe(ITEM_REMOVED, self._on_item_removed)
        events.subscribe(LIBRARY_CHANGED, self._on_library_changed)
        events.subscribe(LIST_DELETED, self._on_list_deleted)

    def _on_list_changed(self, list_id: str, **_: Any) -> None:
        self._schedule(self.sync_if_published(list_id), f"sync list {list_id}")

    def _on_item_removed(self, list_ids: list[str], **_: Any) -> None:
        for list_id in list_ids:
            self._schedule(self.sync_if_published(list_id), f"sync list {list_id}")

    def _on_library_changed(self, unique_id: str | None, **_: Any) -> None:
        if unique_id is None:
            return
        # A direction change can add or drop an item from published output
        for entry in self.store.get_list_entries(item_id=unique_id):
            self._schedule(self.sync_if_published(entry.list_id), f"sync list {entry.list_id}")

    def _on_list_deleted(self, remote_doc_id: str | None = None, **_: Any) -> None:
        if remote_doc_id:
            self._schedule(self.deactivate_document(remote_doc_id), f"deactivate {remote_doc_id}")

    def _schedule(self, coro: Awaitable[Any], label: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop; skipped {label}")
            coro.close()
            return
        task = loop.create_task(self._run_logged(coro, label))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _run_logged(self, coro: Awaitable[Any], label: str) -> None:
        try:
            await coro
        except FlickSwiperError as e:
            logger.error(f"Background {label} failed: {e}")

    async def wait_idle(self) -> None:
        """Wait for all scheduled background pushes to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
