"""Tests for list publishing and followed list sync."""

import asyncio
import tempfile

import pytest

from flickswiper.deeplink import parse_deep_link
from flickswiper.errors import ConsistencyViolation, InvalidDisplayName, PersistenceError, RemoteSyncError
from flickswiper.events import EventEmitter
from flickswiper.library import ItemStore
from flickswiper.lists import ListMembershipStore
from flickswiper.models import Direction, MediaKind
from flickswiper.store import FileStore
from flickswiper.sync import (
    FollowedListSync, ListPublisher, MemoryRemoteStore, PublishedListData, PublishedListItem,
    PublishedListSnapshot, SyncState,
)

from conftest import make_media


class Owner:
    """One user's library, lists and publisher."""

    def __init__(self, store, remote):
        self.events = EventEmitter()
        self.library = ItemStore(store, self.events)
        self.lists = ListMembershipStore(store, self.events)
        self.publisher = ListPublisher(store, remote)
        self.publisher.watch(self.events)


@pytest.fixture
def remote():
    return MemoryRemoteStore()


@pytest.fixture
def owner(sqlite_store, remote):
    owner = Owner(sqlite_store, remote)
    owner.library.classify(make_media(27205, title="Inception"), Direction.SEEN)
    owner.library.classify(make_media(1399, MediaKind.SHOW, title="Game of Thrones"), Direction.WATCHLIST)
    owner.library.classify(make_media(500, title="Skipped One"), Direction.SKIPPED)
    return owner


@pytest.fixture
def follower_store():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = FileStore(tmpdir)
        yield store
        store.close()


def _doc_titles(remote, doc_id):
    return [i["title"] for i in remote.documents[doc_id]["items"]]


def _doc_id(link):
    return parse_deep_link(link)


class TestPublisher:

    def test_publish_serializes_visible_items(self, owner, remote):
        user_list = owner.lists.create_list("Weekend")
        owner.lists.add_many(user_list.id, ["movie_500", "tvShow_1399", "movie_27205"])

        link = asyncio.run(owner.publisher.publish(user_list.id, "owner-1", "  Sam  "))
        doc_id = _doc_id(link)

        doc = remote.documents[doc_id]
        # Skipped items are never published
        assert _doc_titles(remote, doc_id) == ["Game of Thrones", "Inception"]
        assert doc["itemCount"] == 2
        assert doc["ownerDisplayName"] == "Sam"
        assert doc["ownerUID"] == "owner-1"
        assert doc["isActive"] is True
        assert doc["items"][0]["mediaType"] == "tvShow"
        assert doc["items"][0]["tmdbID"] == 1399

        published = owner.lists.get_list(user_list.id)
        assert published.is_published
        assert published.remote_doc_id == doc_id
        assert published.last_synced_at is not None

    def test_publish_twice_keeps_link(self, owner, remote):
        user_list = owner.lists.create_list("Weekend")

        async def run():
            first = await owner.publisher.publish(user_list.id, "owner-1", "Sam")
            second = await owner.publisher.publish(user_list.id, "owner-1", "Sam")
            return first, second

        first, second = asyncio.run(run())
        assert first == second
        assert len(remote.documents) == 1

    def test_invalid_display_name(self, owner, remote):
        user_list = owner.lists.create_list("Weekend")
        with pytest.raises(InvalidDisplayName):
            asyncio.run(owner.publisher.publish(user_list.id, "owner-1", "x"))
        assert remote.documents == {}

    def test_remote_failure_leaves_list_unpublished(self, owner, remote):
        user_list = owner.lists.create_list("Weekend")
        remote.fail_writes = True

        with pytest.raises(RemoteSyncError):
            asyncio.run(owner.publisher.publish(user_list.id, "owner-1", "Sam"))
        assert not owner.lists.get_list(user_list.id).is_published

    def test_local_failure_deactivates_new_document(self, owner, remote, sqlite_store, monkeypatch):
        user_list = owner.lists.create_list("Weekend")

        def fail(user_list):
            raise PersistenceError("disk full")

        monkeypatch.setattr(sqlite_store, "update_user_list", fail)
        with pytest.raises(PersistenceError):
            asyncio.run(owner.publisher.publish(user_list.id, "owner-1", "Sam"))

        (doc,) = remote.documents.values()
        assert doc["isActive"] is False

    def test_unpublish_then_republish_gets_new_id(self, owner, remote):
        user_list = owner.lists.create_list("Weekend")

        async def run():
            first = await owner.publisher.publish(user_list.id, "owner-1", "Sam")
            assert await owner.publisher.unpublish(user_list.id)
            assert not await owner.publisher.unpublish(user_list.id)
            second = await owner.publisher.publish(user_list.id, "owner-1", "Sam")
            return _doc_id(first), _doc_id(second)

        first, second = asyncio.run(run())
        assert first != second
        assert remote.documents[first]["isActive"] is False
        assert remote.documents[second]["isActive"] is True
        assert owner.lists.get_list(user_list.id).remote_doc_id == second
        assert first not in owner.publisher.locks

    def test_changes_push_automatically(self, owner, remote):
        user_list = owner.lists.create_list("Weekend")

        async def run():
            doc_id = _doc_id(await owner.publisher.publish(user_list.id, "owner-1", "Sam"))

            owner.lists.add_membership(user_list.id, "movie_27205")
            await owner.publisher.wait_idle()
            assert _doc_titles(remote, doc_id) == ["Inception"]

            # A skipped member appears once promoted
            owner.lists.add_membership(user_list.id, "movie_500")
            owner.library.classify(make_media(500, title="Skipped One"), Direction.SEEN)
            await owner.publisher.wait_idle()
            assert _doc_titles(remote, doc_id) == ["Inception", "Skipped One"]

            owner.lists.rename_list(user_list.id, "Weekend Picks")
            owner.library.remove("movie_27205")
            await owner.publisher.wait_idle()
            return doc_id

        doc_id = asyncio.run(run())
        assert remote.documents[doc_id]["name"] == "Weekend Picks"
        assert _doc_titles(remote, doc_id) == ["Skipped One"]

    def test_deleting_published_list_deactivates_document(self, owner, remote):
        user_list = owner.lists.create_list("Weekend")

        async def run():
            doc_id = _doc_id(await owner.publisher.publish(user_list.id, "owner-1", "Sam"))
            owner.lists.delete_list(user_list.id)
            await owner.publisher.wait_idle()
            return doc_id

        doc_id = asyncio.run(run())
        assert remote.documents[doc_id]["isActive"] is False


def _publish_doc(remote, titles, owner_id="owner-1", name="Their List"):
    items = [PublishedListItem(tmdb_id=i + 1, media_type="movie", title=t) for i, t in enumerate(titles)]
    return asyncio.run(remote.create_document(PublishedListData(owner_id, "Sam", name, items)))


class TestFollowedListSync:

    def test_follow_creates_mirror(self, follower_store, remote):
        doc_id = _publish_doc(remote, ["A", "B", "C"])
        sync = FollowedListSync(follower_store, remote)

        followed = asyncio.run(sync.follow(doc_id, "me"))
        assert followed.name == "Their List"
        assert followed.item_count == 3
        assert followed.last_fetched_at is not None
        assert [i.title for i in sync.items(doc_id)] == ["A", "B", "C"]
        assert [i.sort_order for i in sync.items(doc_id)] == [0, 1, 2]
        assert asyncio.run(remote.is_following("me", doc_id))

    def test_follow_guards(self, follower_store, remote):
        sync = FollowedListSync(follower_store, remote)
        mine = _publish_doc(remote, ["A"], owner_id="me")
        gone = _publish_doc(remote, ["A"])
        asyncio.run(remote.soft_deactivate(gone))

        with pytest.raises(ConsistencyViolation):
            asyncio.run(sync.follow(mine, "me"))
        with pytest.raises(RemoteSyncError):
            asyncio.run(sync.follow(gone, "me"))
        with pytest.raises(RemoteSyncError):
            asyncio.run(sync.follow("missing", "me"))
        assert sync.followed_lists() == []

    def test_live_updates_replace_items(self, follower_store, remote):
        doc_id = _publish_doc(remote, ["A", "B", "C"])
        sync = FollowedListSync(follower_store, remote)

        async def run():
            sync.activate()
            await sync.follow(doc_id, "me")
            assert sync.state(doc_id) == SyncState.LISTENING

            await remote.update_document(doc_id, "Renamed", [
                PublishedListItem(tmdb_id=3, media_type="movie", title="C"),
                PublishedListItem(tmdb_id=9, media_type="tvShow", title="Z"),
            ])
            await sync.wait_idle()
            await sync.close()

        asyncio.run(run())
        followed = follower_store.get_followed_list(doc_id)
        assert followed.name == "Renamed"
        assert followed.item_count == 2
        items = sync.items(doc_id)
        assert [(i.title, i.media_kind) for i in items] == [("C", MediaKind.MOVIE), ("Z", MediaKind.SHOW)]

    def test_deactivated_and_deleted_documents(self, follower_store, remote):
        doc_id = _publish_doc(remote, ["A", "B"])
        sync = FollowedListSync(follower_store, remote)

        async def run():
            sync.activate()
            await sync.follow(doc_id, "me")

            await remote.soft_deactivate(doc_id)
            await sync.wait_idle()
            assert not follower_store.get_followed_list(doc_id).is_active

            remote.delete_document(doc_id)
            await sync.wait_idle()
            await sync.close()

        asyncio.run(run())
        followed = follower_store.get_followed_list(doc_id)
        assert not followed.is_active
        # Cached items survive so the list can still be shown as unavailable
        assert [i.title for i in sync.items(doc_id)] == ["A", "B"]

    def test_listener_error_marks_inactive(self, follower_store, remote):
        doc_id = _publish_doc(remote, ["A"])
        sync = FollowedListSync(follower_store, remote)
        asyncio.run(sync.follow(doc_id, "me"))

        assert sync.reconcile(doc_id, None)
        assert not follower_store.get_followed_list(doc_id).is_active
        assert [i.title for i in sync.items(doc_id)] == ["A"]

    def test_failed_reconcile_keeps_previous_state(self, follower_store, remote, monkeypatch):
        doc_id = _publish_doc(remote, ["A", "B"])
        sync = FollowedListSync(follower_store, remote)
        asyncio.run(sync.follow(doc_id, "me"))

        def fail(remote_doc_id, items):
            raise PersistenceError("disk full")

        monkeypatch.setattr(follower_store, "replace_followed_list_items", fail)
        snapshot = PublishedListSnapshot.from_payload(doc_id, {"name": "New", "items": [{"tmdbID": 7, "title": "Q"}]})

        assert not sync.reconcile(doc_id, snapshot)
        assert follower_store.get_followed_list(doc_id).name == "Their List"
        monkeypatch.undo()
        assert [i.title for i in sync.items(doc_id)] == ["A", "B"]

    def test_unfollow_detaches_and_deletes(self, follower_store, remote):
        doc_id = _publish_doc(remote, ["A"])
        sync = FollowedListSync(follower_store, remote)

        async def run():
            sync.activate()
            await sync.follow(doc_id, "me")
            assert remote.subscriber_count(doc_id) == 1
            assert await sync.unfollow(doc_id, "me")
            assert remote.subscriber_count(doc_id) == 0
            assert sync.state(doc_id) == SyncState.DETACHED
            assert not await remote.is_following("me", doc_id)
            assert doc_id not in sync.locks
            await sync.close()

        asyncio.run(run())
        assert sync.followed_lists() == []
        assert sync.items(doc_id) == []

    def test_activate_attaches_existing_follows(self, follower_store, remote):
        first = _publish_doc(remote, ["A"])
        second = _publish_doc(remote, ["B"])
        sync = FollowedListSync(follower_store, remote)
        asyncio.run(sync.follow(first, "me"))
        asyncio.run(sync.follow(second, "me"))

        async def run():
            assert sync.activate() == 2
            assert sync.activate() == 0
            assert sync.listening == {first, second}
            sync.deactivate()
            assert sync.listening == frozenset()
            await sync.close()

        asyncio.run(run())

    def test_restore_follows(self, follower_store, remote):
        doc_id = _publish_doc(remote, ["A", "B"])
        asyncio.run(remote.add_follow("me", doc_id))
        sync = FollowedListSync(follower_store, remote)

        assert asyncio.run(sync.restore_follows("me")) == 1
        assert [i.title for i in sync.items(doc_id)] == ["A", "B"]
        assert asyncio.run(sync.restore_follows("me")) == 0


class TestRemoteStore:

    def test_snapshot_defaults(self):
        snapshot = PublishedListSnapshot.from_payload("doc", {"items": [{"tmdbID": 1}, {"tmdbID": 2}]})
        assert snapshot.name == "Untitled"
        assert snapshot.owner_display_name == "Unknown"
        assert snapshot.item_count == 2
        assert snapshot.is_active
        assert snapshot.items[0].media_kind == MediaKind.MOVIE

    def test_follow_records_are_not_duplicated(self, remote):
        async def run():
            first = await remote.add_follow("me", "doc")
            second = await remote.add_follow("me", "doc")
            return first, second, await remote.followed_doc_ids("me")

        first, second, ids = asyncio.run(run())
        assert first == second
        assert ids == ["doc"]

    def test_persisted_between_instances(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = f"{tmpdir}/remote.json"
            doc_id = _publish_doc(MemoryRemoteStore(path), ["A"])

            reopened = MemoryRemoteStore(path)
            snapshot = asyncio.run(reopened.get_document(doc_id))
            assert [i.title for i in snapshot.items] == ["A"]
