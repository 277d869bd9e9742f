"""Tests for the item store and its promotion-only policy."""

import pytest

from flickswiper.errors import ConsistencyViolation
from flickswiper.events import EventEmitter, ITEM_REMOVED, LIBRARY_CHANGED
from flickswiper.library import ItemStore
from flickswiper.lists import ListMembershipStore
from flickswiper.models import Direction, MediaKind

from conftest import make_media


@pytest.fixture
def library(store):
    return ItemStore(store)


class TestClassify:

    def test_create_record(self, library):
        result = library.classify(make_media(27205, title="Inception"), Direction.SKIPPED)

        assert result.created
        assert result.changed
        assert result.previous_direction is None
        assert result.item.direction == Direction.SKIPPED
        assert library.get("movie_27205").title == "Inception"
        assert library.is_classified("movie_27205")

    @pytest.mark.parametrize("start,proposed", [
        (Direction.SKIPPED, Direction.WATCHLIST),
        (Direction.SKIPPED, Direction.SEEN),
        (Direction.WATCHLIST, Direction.SEEN),
        (Direction.SEEN, Direction.SEEN),
        (Direction.SKIPPED, Direction.SKIPPED),
    ])
    def test_promotions_apply(self, library, start, proposed):
        item = make_media(1)
        library.classify(item, start)

        result = library.classify(item, proposed)
        assert result.changed
        assert not result.created
        assert result.previous_direction == start
        assert library.get(item.unique_id).direction == proposed

    @pytest.mark.parametrize("start,proposed", [
        (Direction.SEEN, Direction.SKIPPED),
        (Direction.SEEN, Direction.WATCHLIST),
        (Direction.WATCHLIST, Direction.SKIPPED),
    ])
    def test_demotions_are_ignored(self, library, start, proposed):
        item = make_media(1)
        library.classify(item, start)
        before = library.get(item.unique_id)

        result = library.classify(item, proposed)
        assert not result.changed
        assert result.item.direction == start

        after = library.get(item.unique_id)
        assert after.direction == start
        assert after.classified_at == before.classified_at

    def test_promotion_keeps_rating_and_platform(self, library):
        item = make_media(1)
        library.classify(item, Direction.WATCHLIST, source_platform="Netflix")
        library.set_personal_rating(item.unique_id, 4)

        library.classify(item, Direction.SEEN)
        record = library.get(item.unique_id)
        assert record.personal_rating == 4
        assert record.source_platform == "Netflix"

    def test_reencounter_preserves_rating(self, library):
        """Seeing a rated item again only refreshes its classification time."""
        item = make_media(27205, title="Inception", overview="A thief.", poster_path="/a.jpg", rating=8.4)
        library.classify(item, Direction.SEEN)
        library.set_personal_rating(item.unique_id, 4)
        before = library.get(item.unique_id)

        changed = make_media(27205, title="Inception (2010)", overview="Dreams.", poster_path="/b.jpg", rating=9.0)
        result = library.classify(changed, Direction.SEEN)

        after = library.get(item.unique_id)
        assert result.previous_direction == Direction.SEEN
        assert after.direction == Direction.SEEN
        assert after.personal_rating == 4
        assert after.classified_at >= before.classified_at
        assert (after.title, after.overview, after.poster_path, after.rating) == (
            "Inception", "A thief.", "/a.jpg", 8.4,
        )
        assert after.genre_ids == before.genre_ids
        assert after.release_date == before.release_date

    def test_movie_and_show_with_same_id_are_distinct(self, library):
        library.classify(make_media(100, MediaKind.MOVIE), Direction.SEEN)
        library.classify(make_media(100, MediaKind.SHOW), Direction.SKIPPED)

        assert library.all_classified_unique_ids() == {"movie_100", "tvShow_100"}
        assert library.get("tvShow_100").direction == Direction.SKIPPED

    def test_emits_library_changed(self, store):
        events = EventEmitter()
        seen = []
        events.subscribe(LIBRARY_CHANGED, lambda unique_id: seen.append(unique_id))

        library = ItemStore(store, events)
        library.classify(make_media(1), Direction.SEEN)
        library.classify(make_media(1), Direction.SKIPPED)  # demotion, no event

        assert seen == ["movie_1"]


class TestIndex:

    def test_index_loaded_from_store(self, store):
        ItemStore(store).classify(make_media(5), Direction.SEEN)

        fresh = ItemStore(store)
        assert fresh.all_classified_unique_ids() == {"movie_5"}

    def test_index_unchanged_when_write_fails(self, library, store, monkeypatch):
        def fail(item):
            raise ConsistencyViolation("disk full")

        monkeypatch.setattr(store, "insert_classified", fail)
        with pytest.raises(ConsistencyViolation):
            library.classify(make_media(1), Direction.SEEN)
        assert not library.is_classified("movie_1")


class TestRemoval:

    def test_remove_cascades_list_entries(self, store):
        events = EventEmitter()
        removed = []
        events.subscribe(ITEM_REMOVED, lambda unique_id, list_ids: removed.append((unique_id, list_ids)))

        library = ItemStore(store, events)
        lists = ListMembershipStore(store, events)
        library.classify(make_media(1), Direction.SEEN)
        user_list = lists.create_list("Favorites")
        lists.add_membership(user_list.id, "movie_1")

        assert library.remove("movie_1")
        assert library.get("movie_1") is None
        assert not library.is_classified("movie_1")
        assert lists.entries(user_list.id) == []
        assert removed == [("movie_1", [user_list.id])]

    def test_remove_missing(self, library):
        assert not library.remove("movie_404")

    def test_reset_by_direction(self, store):
        library = ItemStore(store)
        lists = ListMembershipStore(store)
        library.classify(make_media(1), Direction.SEEN)
        library.classify(make_media(2), Direction.SKIPPED)
        library.classify(make_media(3), Direction.SKIPPED)
        user_list = lists.create_list("Mixed")
        lists.add_many(user_list.id, ["movie_1", "movie_2"])

        assert library.reset(Direction.SKIPPED) == 2
        assert library.all_classified_unique_ids() == {"movie_1"}
        assert [e.item_id for e in lists.entries(user_list.id)] == ["movie_1"]

        assert library.reset() == 1
        assert library.count() == 0


class TestRatings:

    def test_set_and_clear(self, library):
        library.classify(make_media(1), Direction.SEEN)

        assert library.set_personal_rating("movie_1", 5).personal_rating == 5
        assert library.clear_personal_rating("movie_1").personal_rating is None
        assert library.get("movie_1").personal_rating is None

    @pytest.mark.parametrize("rating", [0, 6, -1])
    def test_out_of_range(self, library, rating):
        library.classify(make_media(1), Direction.SEEN)
        with pytest.raises(ConsistencyViolation):
            library.set_personal_rating("movie_1", rating)

    def test_unclassified_item(self, library):
        with pytest.raises(ConsistencyViolation):
            library.set_personal_rating("movie_1", 3)
