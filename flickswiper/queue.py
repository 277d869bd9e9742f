"""Content Queue Engine: paginated, de-duplicating discovery queue."""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from flickswiper.errors import ConnectivityError, FlickSwiperError
from flickswiper.events import EventEmitter, QUEUE_CHANGED
from flickswiper.filters import FilterSet, SortOption
from flickswiper.models import MediaItem
from flickswiper.sources.base import ContentProvider

logger = logging.getLogger(__name__)


Prefetcher = Callable[[MediaItem], Awaitable[None]]


@dataclass
class DiscoverySettings:
    """Tunables for the content queue, passed explicitly rather than read globally."""
    include_classified: bool = False
    max_auto_pages: int = 5
    low_water_mark: int = 5
    # Usable items a single refill call aims to append before it stops paging
    min_yield: int = 5
    # Consecutive all-duplicate pages that mean the provider is looping
    max_duplicate_pages: int = 2
    debounce_seconds: float = 0.3
    prefetch_window: int = 5


class ContentQueue:
    """FIFO of MediaItem candidates fed by a ContentProvider.

    Candidates already in the library are dropped (unless
    `include_classified`), as are items outside the active year range and
    items already queued. Filter changes are debounced into a single reset.
    """

    def __init__(
        self,
        provider: ContentProvider,
        classified_ids: Callable[[], frozenset[str]],
        filters: FilterSet | None = None,
        settings: DiscoverySettings | None = None,
        prefetcher: Prefetcher | None = None,
        events: EventEmitter | None = None,
    ):
        self.provider = provider
        self._classified_ids = classified_ids
        self.filters = filters or FilterSet()
        self.settings = settings or DiscoverySettings()
        self.prefetcher = prefetcher
        self.events = events or EventEmitter()

        self._items: list[MediaItem] = []
        self.page = 1
        self.has_reached_end = False
        self.is_loading = False
        self.last_error: FlickSwiperError | None = None
        self.is_offline = False

        # Bumped on every reset so an in-flight refill can tell its page is stale
        self._generation = 0
        self._classified_snapshot = classified_ids()
        self._debounce_task: asyncio.Task | None = None
        self._prefetch_tasks: dict[str, asyncio.Task] = {}
        self._prefetched: set[str] = set()

    # Queue access

    @property
    def items(self) -> list[MediaItem]:
        return list(self._items)

    @property
    def current(self) -> MediaItem | None:
        return self._items[0] if self._items else None

    def visible(self, count: int = 3) -> list[MediaItem]:
        return self._items[:count]

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, unique_id: object) -> bool:
        return any(i.unique_id == unique_id for i in self._items)

    # Refill

    async def refill(self) -> int:
        """Fetch pages until enough usable items were appended.

        Returns the number of items appended. An overlapping call returns 0
        immediately. Provider errors stop the loop, are recorded on
        `last_error`/`is_offline` and re-raised.
        """
        if self.is_loading or self.has_reached_end:
            return 0

        self.is_loading = True
        self.last_error = None
        self.is_offline = False
        appended = 0
        try:
            generation = self._generation
            attempts = 0
            duplicate_pages = 0

            while attempts < self.settings.max_auto_pages:
                filters = self.filters
                page = self.page
                try:
                    raw = await self.provider.fetch_content(
                        filters.method,
                        filters.content_type,
                        filters.genre,
                        page,
                        filters.sort,
                        filters.year_min,
                        filters.year_max,
                    )
                except FlickSwiperError as e:
                    self.last_error = e
                    self.is_offline = isinstance(e, ConnectivityError)
                    logger.warning(f"Refill stopped on page {page}: {e}")
                    raise

                if generation != self._generation:
                    # The queue was reset while this page was in flight; the fetch still counts
                    generation = self._generation
                    attempts += 1
                    duplicate_pages = 0
                    appended = 0
                    continue

                if not raw:
                    self.has_reached_end = True
                    break

                usable = self._usable(raw, filters)
                fresh = self._dedupe(usable)
                self._items.extend(fresh)
                self.page += 1
                appended += len(fresh)

                if appended >= self.settings.min_yield:
                    break

                if usable and not fresh:
                    duplicate_pages += 1
                    if duplicate_pages >= self.settings.max_duplicate_pages:
                        logger.info(f"Provider repeated itself for {duplicate_pages} pages; end of content")
                        self.has_reached_end = True
                        break
                elif fresh:
                    duplicate_pages = 0

                attempts += 1
        finally:
            self.is_loading = False

        logger.debug(f"Refill appended {appended} items, queue size {len(self._items)}, next page {self.page}")
        if appended:
            self.events.emit(QUEUE_CHANGED, size=len(self._items))
        self.prefetch_upcoming()
        return appended

    def _usable(self, raw: list[MediaItem], filters: FilterSet) -> list[MediaItem]:
        if self.settings.include_classified:
            excluded = frozenset()
        else:
            excluded = self._classified_ids()
            self._classified_snapshot = excluded
        return [i for i in raw if i.unique_id not in excluded and filters.accepts_year(i)]

    def _dedupe(self, items: list[MediaItem]) -> list[MediaItem]:
        queued = {i.unique_id for i in self._items}
        fresh = []
        for item in items:
            if item.unique_id in queued:
                continue
            queued.add(item.unique_id)
            fresh.append(item)
        return fresh

    def needs_refill(self) -> bool:
        return (
            len(self._items) < self.settings.low_water_mark
            and not self.is_loading
            and not self.has_reached_end
        )

    # Mutation

    def remove(self, unique_id: str) -> MediaItem | None:
        for index, item in enumerate(self._items):
            if item.unique_id == unique_id:
                del self._items[index]
                self._prefetched.discard(unique_id)
                self.events.emit(QUEUE_CHANGED, size=len(self._items))
                return item
        return None

    async def remove_and_refill(self, unique_id: str) -> MediaItem | None:
        """Remove an item and top the queue back up past the low-water mark."""
        removed = self.remove(unique_id)
        if self.needs_refill():
            await self.refill()
        else:
            self.prefetch_upcoming()
        return removed

    def push_front(self, item: MediaItem) -> None:
        """Put an item back on top of the queue (used after undo)."""
        self._items = [i for i in self._items if i.unique_id != item.unique_id]
        self._items.insert(0, item)
        self.events.emit(QUEUE_CHANGED, size=len(self._items))

    def clear(self) -> None:
        self._generation += 1
        self._items.clear()
        self._prefetched.clear()
        self.page = 1
        self.has_reached_end = False
        self.events.emit(QUEUE_CHANGED, size=0)

    async def reset_and_refill(self) -> int:
        """Clear the queue, rewind to page 1 and refill immediately."""
        current = asyncio.current_task()
        task = self._debounce_task
        if task is not None and task is not current and not task.done():
            task.cancel()
        self.clear()
        return await self.refill()

    # Filters and settings

    def update_filters(self, **changes) -> tuple[bool, bool]:
        """Replace the active filters and schedule a debounced reload.

        Returns (changed, resets_undo). Switching to a method that is not a
        streaming service resets the sort to popular.
        """
        new = dataclasses.replace(self.filters, **changes)
        if new.method != self.filters.method and not new.method.is_streaming_service:
            new = dataclasses.replace(new, sort=SortOption.POPULAR)
        if new == self.filters:
            return False, False

        resets_undo = self.filters.resets_undo(new)
        self.filters = new
        self.schedule_reload()
        return True, resets_undo

    def sync_settings(self, settings: DiscoverySettings) -> bool:
        """Apply new settings and detect library deletions made elsewhere.

        Schedules a reload when the include-classified toggle changed or
        when items were removed from the library since the last check.
        Returns whether a reload was scheduled.
        """
        needs_reload = settings.include_classified != self.settings.include_classified
        self.settings = settings

        current = self._classified_ids()
        queued = {i.unique_id for i in self._items}
        if self._classified_snapshot - current - queued:
            needs_reload = True
        self._classified_snapshot = current

        if needs_reload:
            self.schedule_reload()
        return needs_reload

    # Debounce

    def schedule_reload(self) -> asyncio.Task:
        """Restart the debounce timer; when it fires the queue resets and refills."""
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = asyncio.get_running_loop().create_task(self._debounced_reload())
        return self._debounce_task

    async def _debounced_reload(self) -> None:
        await asyncio.sleep(self.settings.debounce_seconds)
        try:
            await self.reset_and_refill()
        except FlickSwiperError as e:
            # Already recorded on last_error for the presentation layer
            logger.warning(f"Debounced reload failed: {e}")

    async def wait_for_reload(self) -> None:
        """Wait for a pending debounced reload, if any, to finish."""
        task = self._debounce_task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if task is asyncio.current_task():
                raise

    @property
    def reload_pending(self) -> bool:
        return self._debounce_task is not None and not self._debounce_task.done()

    # Prefetch

    def prefetch_upcoming(self) -> None:
        """Keep one prefetch task per item in the visible window."""
        if self.prefetcher is None:
            return

        window = self._items[: self.settings.prefetch_window]
        active = {i.unique_id for i in window}
        self._prefetched &= {i.unique_id for i in self._items}

        for unique_id, task in list(self._prefetch_tasks.items()):
            if unique_id not in active:
                task.cancel()
                del self._prefetch_tasks[unique_id]

        loop = asyncio.get_running_loop()
        for item in window:
            unique_id = item.unique_id
            if unique_id in self._prefetched or unique_id in self._prefetch_tasks:
                continue
            self._prefetch_tasks[unique_id] = loop.create_task(self._prefetch(item))

    async def _prefetch(self, item: MediaItem) -> None:
        unique_id = item.unique_id
        try:
            await self.prefetcher(item)
            self._prefetched.add(unique_id)
        except Exception as e:
            logger.debug(f"Prefetch failed for {unique_id}: {e}")
        finally:
            if self._prefetch_tasks.get(unique_id) is asyncio.current_task():
                del self._prefetch_tasks[unique_id]

    @property
    def prefetching(self) -> frozenset[str]:
        return frozenset(self._prefetch_tasks)

    @property
    def prefetched(self) -> frozenset[str]:
        return frozenset(self._prefetched)

    async def close(self) -> None:
        """Cancel the debounce timer and all prefetch tasks."""
        tasks = list(self._prefetch_tasks.values())
        if self._debounce_task is not None and self._debounce_task is not asyncio.current_task():
            tasks.append(self._debounce_task)
        for task in tasks:
            task.cancel()
        self._prefetch_tasks.clear()
        self._debounce_task = None
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
