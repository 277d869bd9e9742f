"""Tests for the content queue engine."""

import asyncio
import dataclasses

import pytest

from flickswiper.errors import ConnectivityError, ProviderError
from flickswiper.filters import ContentTypeFilter, DiscoveryMethod, FilterSet, Genre, SortOption
from flickswiper.queue import ContentQueue, DiscoverySettings

from conftest import FakeProvider, make_media, page_of


def _queue(provider, classified=None, **settings) -> ContentQueue:
    classified = classified if classified is not None else set()
    return ContentQueue(
        provider,
        lambda: frozenset(classified),
        settings=DiscoverySettings(debounce_seconds=0.01, **settings),
    )


def _ids(queue):
    return [i.external_id for i in queue.items]


class TestRefill:

    def test_excludes_classified_and_unions_pages(self):
        provider = FakeProvider({1: page_of(1, 6), 2: page_of(5, 6)})
        queue = _queue(provider, classified={"movie_2"}, min_yield=8)

        appended = asyncio.run(queue.refill())

        # Page 2 overlaps page 1 on 5 and 6; both are kept once
        assert _ids(queue) == [1, 3, 4, 5, 6, 7, 8, 9, 10]
        assert appended == 9
        assert [c["page"] for c in provider.calls] == [1, 2]
        assert queue.page == 3

    def test_include_classified(self):
        provider = FakeProvider({1: page_of(1, 5)})
        queue = _queue(provider, classified={"movie_1", "movie_2"}, include_classified=True)

        asyncio.run(queue.refill())
        assert _ids(queue) == [1, 2, 3, 4, 5]

    def test_empty_page_ends_content(self):
        provider = FakeProvider({1: page_of(1, 2)})
        queue = _queue(provider)

        async def run():
            await queue.refill()
            assert queue.has_reached_end
            assert await queue.refill() == 0

        asyncio.run(run())
        assert _ids(queue) == [1, 2]
        assert [c["page"] for c in provider.calls] == [1, 2]

    def test_auto_advance_is_bounded(self):
        """Pages that only contain classified items stop after max_auto_pages."""
        classified = {f"movie_{i}" for i in range(1, 100)}
        provider = FakeProvider({p: page_of(p * 10, 3) for p in range(1, 10)})
        queue = _queue(provider, classified=classified, max_auto_pages=3)

        assert asyncio.run(queue.refill()) == 0
        assert len(provider.calls) == 3
        assert not queue.has_reached_end

    def test_repeating_provider_ends_content(self):
        same = page_of(1, 3)
        provider = FakeProvider({p: same for p in range(1, 10)})
        queue = _queue(provider, max_auto_pages=10)

        asyncio.run(queue.refill())
        assert _ids(queue) == [1, 2, 3]
        assert queue.has_reached_end
        assert len(provider.calls) == 3

    def test_year_range(self):
        items = [
            make_media(1, release_date="1999-12-31"),
            make_media(2, release_date="2000-01-01"),
            make_media(3, release_date="2010-06-01"),
            make_media(4, release_date=None),
            make_media(5, release_date="2011-01-01"),
        ]
        provider = FakeProvider({1: items})
        queue = _queue(provider)
        queue.filters = FilterSet(year_min=2000, year_max=2010)

        asyncio.run(queue.refill())
        assert _ids(queue) == [2, 3]
        assert provider.calls[0]["year_min"] == 2000
        assert provider.calls[0]["year_max"] == 2010

    @pytest.mark.parametrize("error,offline", [
        (ConnectivityError("offline"), True),
        (ProviderError("HTTP 500", status_code=500), False),
    ])
    def test_errors_are_recorded_and_raised(self, error, offline):
        provider = FakeProvider({1: page_of(1, 3)})
        provider.errors[2] = error
        queue = _queue(provider)

        with pytest.raises(type(error)):
            asyncio.run(queue.refill())

        assert queue.last_error is error
        assert queue.is_offline is offline
        assert not queue.is_loading
        # Items from the page before the failure are kept
        assert _ids(queue) == [1, 2, 3]

    def test_overlapping_refill_returns_immediately(self):
        provider = FakeProvider({1: page_of(1, 5)})
        queue = _queue(provider)

        async def run():
            provider.gate = asyncio.Event()
            first = asyncio.create_task(queue.refill())
            await asyncio.sleep(0)
            assert queue.is_loading
            assert await queue.refill() == 0
            provider.gate.set()
            return await first

        assert asyncio.run(run()) == 5
        assert len(provider.calls) == 1

    def test_reset_during_fetch_discards_stale_page(self):
        provider = FakeProvider({1: page_of(1, 5)})
        queue = _queue(provider)

        async def run():
            provider.gate = asyncio.Event()
            task = asyncio.create_task(queue.refill())
            await asyncio.sleep(0)
            queue.filters = dataclasses.replace(queue.filters, genre=Genre.COMEDY)
            queue.clear()
            provider.gate.set()
            await task

        asyncio.run(run())
        assert [(c["page"], c["genre"]) for c in provider.calls] == [(1, None), (1, Genre.COMEDY)]
        assert _ids(queue) == [1, 2, 3, 4, 5]
        assert queue.page == 2


    def test_reset_during_fetch_counts_toward_page_cap(self):
        """A reset landing mid-fetch does not grant the refill a fresh page budget."""
        classified = {f"movie_{i}" for i in range(1, 1000)}
        queue = None

        class ClearingProvider(FakeProvider):
            async def fetch_content(self, *args, **kwargs):
                items = await super().fetch_content(*args, **kwargs)
                if len(self.calls) == 4:
                    queue.clear()
                return items

        provider = ClearingProvider({p: page_of(p * 10, 3) for p in range(1, 20)})
        queue = _queue(provider, classified=classified)

        assert asyncio.run(queue.refill()) == 0
        assert len(provider.calls) == queue.settings.max_auto_pages
        assert [c["page"] for c in provider.calls] == [1, 2, 3, 4, 1]


class TestMutation:

    def test_remove_and_refill_tops_up(self):
        provider = FakeProvider({1: page_of(1, 5), 2: page_of(6, 5)})
        queue = _queue(provider, low_water_mark=5)

        async def run():
            await queue.refill()
            removed = await queue.remove_and_refill("movie_1")
            assert removed.external_id == 1

        asyncio.run(run())
        assert _ids(queue) == [2, 3, 4, 5, 6, 7, 8, 9, 10]

    def test_push_front_moves_existing(self):
        provider = FakeProvider({1: page_of(1, 3)})
        queue = _queue(provider)
        asyncio.run(queue.refill())

        queue.push_front(make_media(3))
        queue.push_front(make_media(42))
        assert _ids(queue) == [42, 3, 1, 2]
        assert queue.current.external_id == 42
        assert "movie_42" in queue


class TestFilters:

    def test_debounce_coalesces_changes(self):
        provider = FakeProvider({1: page_of(1, 5)})
        queue = _queue(provider)

        async def run():
            await queue.refill()
            queue.update_filters(genre=Genre.COMEDY)
            queue.update_filters(genre=Genre.DRAMA)
            queue.update_filters(content_type=ContentTypeFilter.MOVIES)
            assert queue.reload_pending
            await queue.wait_for_reload()

        asyncio.run(run())
        assert len(provider.calls) == 2
        last = provider.calls[-1]
        assert last["page"] == 1
        assert last["genre"] == Genre.DRAMA
        assert last["content_type"] == ContentTypeFilter.MOVIES

    def test_update_filters_result(self):
        queue = _queue(FakeProvider())

        async def run():
            assert queue.update_filters(genre=None) == (False, False)
            assert not queue.reload_pending
            assert queue.update_filters(year_min=1990) == (True, False)
            assert queue.update_filters(genre=Genre.HORROR) == (True, True)
            await queue.close()

        asyncio.run(run())

    def test_leaving_streaming_resets_sort(self):
        queue = _queue(FakeProvider())

        async def run():
            queue.update_filters(method=DiscoveryMethod.NETFLIX, sort=SortOption.NEWEST)
            assert queue.filters.sort == SortOption.NEWEST
            queue.update_filters(method=DiscoveryMethod.TRENDING)
            assert queue.filters.sort == SortOption.POPULAR
            await queue.close()

        asyncio.run(run())

    def test_sync_settings_detects_deletions(self):
        classified = {"movie_1", "movie_2"}
        provider = FakeProvider({1: page_of(1, 5)})
        queue = _queue(provider, classified=classified)

        async def run():
            await queue.refill()
            assert _ids(queue) == [3, 4, 5]
            assert not queue.sync_settings(queue.settings)

            classified.discard("movie_1")
            assert queue.sync_settings(queue.settings)
            await queue.wait_for_reload()

        asyncio.run(run())
        assert _ids(queue) == [1, 3, 4, 5]

    def test_sync_settings_toggle_include_classified(self):
        provider = FakeProvider({1: page_of(1, 5)})
        queue = _queue(provider, classified={"movie_1"})

        async def run():
            await queue.refill()
            changed = dataclasses.replace(queue.settings, include_classified=True)
            assert queue.sync_settings(changed)
            await queue.wait_for_reload()

        asyncio.run(run())
        assert _ids(queue) == [1, 2, 3, 4, 5]


class TestPrefetch:

    def test_prefetches_window(self):
        fetched = []

        async def prefetcher(item):
            fetched.append(item.external_id)

        provider = FakeProvider({1: page_of(1, 8)})
        queue = ContentQueue(
            provider,
            frozenset,
            settings=DiscoverySettings(prefetch_window=3),
            prefetcher=prefetcher,
        )

        async def run():
            await queue.refill()
            await asyncio.sleep(0)
            assert sorted(fetched) == [1, 2, 3]

            await queue.remove_and_refill("movie_1")
            await asyncio.sleep(0)
            assert sorted(fetched) == [1, 2, 3, 4]
            assert queue.prefetching == frozenset()

        asyncio.run(run())

    def test_items_leaving_window_are_cancelled(self):
        started = []
        release = None

        async def prefetcher(item):
            started.append(item.external_id)
            await release.wait()

        provider = FakeProvider({1: page_of(1, 4)})
        queue = ContentQueue(
            provider,
            frozenset,
            settings=DiscoverySettings(prefetch_window=2, low_water_mark=0),
            prefetcher=prefetcher,
        )

        async def run():
            nonlocal release
            release = asyncio.Event()
            await queue.refill()
            await asyncio.sleep(0)
            assert queue.prefetching == {"movie_1", "movie_2"}

            queue.remove("movie_1")
            queue.remove("movie_2")
            queue.prefetch_upcoming()
            assert queue.prefetching == {"movie_3", "movie_4"}
            await queue.close()

        asyncio.run(run())

    def test_prefetched_ids_follow_the_queue(self):
        async def prefetcher(item):
            pass

        provider = FakeProvider({1: page_of(1, 8)})
        queue = ContentQueue(
            provider,
            frozenset,
            settings=DiscoverySettings(prefetch_window=3, low_water_mark=0),
            prefetcher=prefetcher,
        )

        async def run():
            await queue.refill()
            await asyncio.sleep(0)
            assert queue.prefetched == {"movie_1", "movie_2", "movie_3"}

            queue.remove("movie_1")
            assert queue.prefetched == {"movie_2", "movie_3"}

            queue.clear()
            assert queue.prefetched == frozenset()
            await queue.close()

        asyncio.run(run())
