"""Discovery session: swipe actions wired across library, undo and queue."""

import asyncio
import logging

from flickswiper.errors import FlickSwiperError
from flickswiper.events import EventEmitter, RATING_PROMPT
from flickswiper.filters import ContentTypeFilter, DiscoveryMethod, FilterSet, Genre, SortOption
from flickswiper.library import ItemStore
from flickswiper.models import ClassificationResult, ClassifiedItem, Direction, MediaItem, UndoEntry
from flickswiper.queue import ContentQueue, DiscoverySettings
from flickswiper.undo import UndoLedger

logger = logging.getLogger(__name__)

DEFAULT_RATING_PROMPT_DELAY = 0.8


class DiscoverySession:
    """One user's swipe loop.

    Swipes classify the item, record an undo entry when the library
    actually changed, and advance the queue. A seen swipe offers a rating
    prompt after a short delay unless another action cancels it first.
    """

    def __init__(
        self,
        item_store: ItemStore,
        ledger: UndoLedger,
        queue: ContentQueue,
        events: EventEmitter | None = None,
        rating_prompt_delay: float = DEFAULT_RATING_PROMPT_DELAY,
    ):
        self.item_store = item_store
        self.ledger = ledger
        self.queue = queue
        self.events = events or EventEmitter()
        self.rating_prompt_delay = rating_prompt_delay

        self.pending_rating: ClassifiedItem | None = None
        self._rating_task: asyncio.Task | None = None

    @property
    def filters(self) -> FilterSet:
        return self.queue.filters

    async def start(self) -> int:
        """Load the library index and fill the queue."""
        self.item_store.reload_index()
        return await self.queue.refill()

    # Swipes

    def _source_platform(self) -> str | None:
        method = self.queue.filters.method
        return method.value if method.is_streaming_service else None

    async def _swipe(self, item: MediaItem, direction: Direction) -> ClassificationResult:
        self.cancel_rating_prompt()
        result = self.item_store.classify(item, direction, self._source_platform())
        if result.changed:
            self.ledger.record(
                UndoEntry(item=item, new_direction=direction, previous_direction=result.previous_direction)
            )

        try:
            await self.queue.remove_and_refill(item.unique_id)
        except FlickSwiperError as e:
            # The swipe itself is saved; queue errors live on queue.last_error
            logger.warning(f"Refill after swipe failed: {e}")
        return result

    async def swipe_right(self, item: MediaItem) -> ClassificationResult:
        """Mark as seen."""
        result = await self._swipe(item, Direction.SEEN)
        if result.changed:
            self._schedule_rating_prompt(result.item)
        return result

    async def swipe_left(self, item: MediaItem) -> ClassificationResult:
        """Skip. Never demotes an item already seen or watchlisted."""
        return await self._swipe(item, Direction.SKIPPED)

    async def swipe_up(self, item: MediaItem) -> ClassificationResult:
        """Add to watchlist. Ignored for items already seen."""
        return await self._swipe(item, Direction.WATCHLIST)

    def undo(self) -> MediaItem | None:
        """Reverse the last swipe and put its card back on top."""
        self.cancel_rating_prompt()
        item = self.ledger.undo_last()
        if item is not None:
            self.queue.push_front(item)
            logger.debug(f"Undid swipe on {item.unique_id}")
        return item

    @property
    def can_undo(self) -> bool:
        return self.ledger.can_undo

    # Filters

    def _update_filters(self, **changes) -> bool:
        changed, resets_undo = self.queue.update_filters(**changes)
        if resets_undo:
            self.ledger.clear()
        return changed

    def set_method(self, method: DiscoveryMethod) -> bool:
        return self._update_filters(method=method)

    def set_content_type(self, content_type: ContentTypeFilter) -> bool:
        return self._update_filters(content_type=content_type)

    def set_genre(self, genre: Genre | None) -> bool:
        return self._update_filters(genre=genre)

    def clear_genre(self) -> bool:
        return self._update_filters(genre=None)

    def set_sort(self, sort: SortOption) -> bool:
        return self._update_filters(sort=sort)

    def set_year_range(self, year_min: int | None, year_max: int | None) -> bool:
        if year_min is not None and year_max is not None and year_min > year_max:
            year_min, year_max = year_max, year_min
        return self._update_filters(year_min=year_min, year_max=year_max)

    def clear_year_range(self) -> bool:
        return self._update_filters(year_min=None, year_max=None)

    def sync_settings(self, settings: DiscoverySettings) -> bool:
        return self.queue.sync_settings(settings)

    # Rating prompt

    def _schedule_rating_prompt(self, record: ClassifiedItem) -> None:
        self._rating_task = asyncio.get_running_loop().create_task(self._show_rating_prompt(record))

    async def _show_rating_prompt(self, record: ClassifiedItem) -> None:
        await asyncio.sleep(self.rating_prompt_delay)
        self.pending_rating = record
        self.events.emit(RATING_PROMPT, unique_id=record.unique_id)

    def cancel_rating_prompt(self) -> None:
        if self._rating_task is not None and not self._rating_task.done():
            self._rating_task.cancel()
        self._rating_task = None
        self.pending_rating = None

    def rate_pending(self, rating: int) -> ClassifiedItem | None:
        """Apply a rating from the prompt. Returns None if no prompt is showing."""
        pending = self.pending_rating
        if pending is None:
            return None
        record = self.item_store.set_personal_rating(pending.unique_id, rating)
        self.pending_rating = None
        return record

    async def wait_for_rating_prompt(self) -> ClassifiedItem | None:
        task = self._rating_task
        if task is not None:
            await asyncio.wait([task])
        return self.pending_rating

    async def close(self) -> None:
        self.cancel_rating_prompt()
        await self.queue.close()
