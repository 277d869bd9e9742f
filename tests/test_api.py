"""Tests for the HTTP API."""

import asyncio
import tempfile
import time

import pytest
from fastapi.testclient import TestClient

from api.main import app, state
from flickswiper.app import FlickSwiper
from flickswiper.models import MediaKind
from flickswiper.queue import DiscoverySettings
from flickswiper.store import SQLiteStore
from flickswiper.sync import MemoryRemoteStore, PublishedListData, PublishedListItem

from conftest import FakeProvider, page_of


@pytest.fixture
def remote():
    return MemoryRemoteStore()


@pytest.fixture
def provider():
    return FakeProvider({1: page_of(1, 8) + page_of(100, 2, MediaKind.SHOW)})


@pytest.fixture
def client(remote, provider):
    with tempfile.TemporaryDirectory() as tmpdir:
        state.core = FlickSwiper(
            store=SQLiteStore(f"{tmpdir}/api.db"),
            remote=remote,
            provider=provider,
            settings=DiscoverySettings(debounce_seconds=0.01),
            rating_prompt_delay=0.01,
            user_id="me",
            display_name="Sam",
        )
        with TestClient(app) as client:
            yield client
        state.core = None


def _swipe(client, unique_id, direction):
    return client.post("/api/swipes", json={"unique_id": unique_id, "direction": direction})


class TestQueue:

    def test_get_queue(self, client):
        response = client.get("/api/queue", params={"count": 3})
        assert response.status_code == 200
        data = response.json()
        assert [i["unique_id"] for i in data["items"]] == ["movie_1", "movie_2", "movie_3"]
        assert data["length"] == 10
        assert data["can_undo"] is False
        assert data["filters"]["method"] == "Popular"

    def test_swipe_and_undo(self, client):
        response = _swipe(client, "movie_1", "watchlist")
        assert response.status_code == 200
        data = response.json()
        assert data["created"] is True
        assert data["item"]["direction"] == "watchlist"

        queue = client.get("/api/queue").json()
        assert queue["items"][0]["unique_id"] == "movie_2"
        assert queue["can_undo"] is True

        response = client.post("/api/undo")
        assert response.status_code == 200
        assert response.json()["unique_id"] == "movie_1"
        assert client.get("/api/library/movie_1").status_code == 404

        assert client.post("/api/undo").status_code == 409

    def test_swipe_errors(self, client):
        assert _swipe(client, "movie_1", "sideways").status_code == 400
        assert _swipe(client, "movie_999", "seen").status_code == 404

    def test_update_filters(self, client, provider):
        response = client.put("/api/queue/filters", json={"method": "Netflix", "sort": "Newest"})
        assert response.status_code == 200
        filters = response.json()["filters"]
        assert filters["method"] == "Netflix"
        assert filters["sort"] == "Newest"
        assert response.json()["reload_pending"] is True

        assert client.put("/api/queue/filters", json={"genre": "not-a-genre"}).status_code == 400
        assert client.put("/api/queue/filters", json={"content_type": "Books"}).status_code == 400

    def test_rating_prompt(self, client):
        _swipe(client, "movie_1", "seen")
        assert client.post("/api/rating-prompt", json={"rating": None}).status_code == 400

        # The prompt appears after a short delay
        for _ in range(50):
            if client.get("/api/rating-prompt").json() is not None:
                break
            time.sleep(0.01)
        else:
            pytest.fail("rating prompt never appeared")

        response = client.post("/api/rating-prompt", json={"rating": 4})
        assert response.status_code == 200
        assert response.json()["personal_rating"] == 4
        assert client.post("/api/rating-prompt", json={"rating": 4}).status_code == 409

    def test_dismiss_rating_prompt(self, client):
        # Dismissed before the delay runs out: the prompt never shows
        _swipe(client, "movie_1", "seen")
        assert client.delete("/api/rating-prompt").status_code == 200
        time.sleep(0.05)
        assert client.get("/api/rating-prompt").json() is None

        # Dismissed while showing
        _swipe(client, "movie_2", "seen")
        for _ in range(50):
            if client.get("/api/rating-prompt").json() is not None:
                break
            time.sleep(0.01)
        else:
            pytest.fail("rating prompt never appeared")

        assert client.delete("/api/rating-prompt").status_code == 200
        assert client.get("/api/rating-prompt").json() is None
        assert client.post("/api/rating-prompt", json={"rating": 4}).status_code == 409
        assert client.get("/api/library/movie_2").json()["personal_rating"] is None


class TestLibrary:

    def test_library_and_stats(self, client):
        _swipe(client, "movie_1", "seen")
        _swipe(client, "movie_2", "skipped")
        _swipe(client, "tvShow_100", "watchlist")

        library = client.get("/api/library").json()
        assert {i["unique_id"] for i in library} == {"movie_1", "movie_2", "tvShow_100"}
        seen = client.get("/api/library", params={"direction": "seen"}).json()
        assert [i["unique_id"] for i in seen] == ["movie_1"]

        stats = client.get("/api/library/stats").json()
        assert stats == {"seen": 1, "watchlist": 1, "skipped": 1, "lists": 0, "followed_lists": 0}

    def test_rating(self, client):
        _swipe(client, "movie_1", "seen")

        response = client.put("/api/library/movie_1/rating", json={"rating": 5})
        assert response.json()["personal_rating"] == 5
        response = client.put("/api/library/movie_1/rating", json={"rating": None})
        assert response.json()["personal_rating"] is None

        assert client.put("/api/library/movie_1/rating", json={"rating": 9}).status_code == 409
        assert client.put("/api/library/movie_9/rating", json={"rating": 3}).status_code == 404

    def test_remove_and_reset(self, client):
        _swipe(client, "movie_1", "seen")
        _swipe(client, "movie_2", "skipped")
        _swipe(client, "movie_3", "skipped")

        assert client.delete("/api/library/movie_1").status_code == 200
        assert client.delete("/api/library/movie_1").status_code == 404

        response = client.post("/api/library/reset", params={"direction": "skipped"})
        assert response.json()["removed"] == 2
        assert client.get("/api/library").json() == []

    def test_collections(self, client):
        _swipe(client, "movie_1", "seen")
        _swipe(client, "tvShow_100", "seen")

        collections = client.get("/api/collections").json()
        ids = [c["id"] for c in collections]
        assert ids[:2] == ["movies", "tvshows"]
        assert "recent" in ids

        items = client.get("/api/collections/tvshows").json()
        assert [i["unique_id"] for i in items] == ["tvShow_100"]
        assert client.get("/api/collections/bogus").status_code == 404


class TestLists:

    def test_list_lifecycle(self, client):
        _swipe(client, "movie_1", "seen")
        _swipe(client, "movie_2", "watchlist")

        created = client.post("/api/lists", json={"name": "Date Night"}).json()
        list_id = created["id"]
        assert created["item_count"] == 0
        assert created["is_published"] is False

        response = client.post(f"/api/lists/{list_id}/items", json={"unique_ids": ["movie_2", "movie_1", "movie_9"]})
        assert response.json()["added"] == 2
        items = client.get(f"/api/lists/{list_id}/items").json()
        assert [i["unique_id"] for i in items] == ["movie_2", "movie_1"]

        renamed = client.patch(f"/api/lists/{list_id}", json={"name": "Friday"}).json()
        assert renamed["name"] == "Friday"

        assert client.delete(f"/api/lists/{list_id}/items/movie_2").status_code == 200
        assert client.delete(f"/api/lists/{list_id}/items/movie_2").status_code == 404

        assert client.delete(f"/api/lists/{list_id}").status_code == 200
        assert client.get(f"/api/lists/{list_id}").status_code == 404
        assert client.get("/api/lists").json() == []

    def test_empty_list_name(self, client):
        assert client.post("/api/lists", json={"name": "  "}).status_code == 409

    def test_publish_and_unpublish(self, client, remote):
        _swipe(client, "movie_1", "seen")
        list_id = client.post("/api/lists", json={"name": "Shared"}).json()["id"]
        client.post(f"/api/lists/{list_id}/items", json={"unique_ids": ["movie_1"]})

        response = client.post(f"/api/lists/{list_id}/publish", json={})
        assert response.status_code == 200
        link = response.json()["share_link"]
        doc_id = link.rsplit("/", 1)[-1]
        assert remote.documents[doc_id]["ownerDisplayName"] == "Sam"

        listed = client.get(f"/api/lists/{list_id}").json()
        assert listed["is_published"] is True
        assert listed["share_link"] == link

        assert client.delete(f"/api/lists/{list_id}/publish").status_code == 200
        assert remote.documents[doc_id]["isActive"] is False
        assert client.delete(f"/api/lists/{list_id}/publish").status_code == 409

    def test_publish_rejects_bad_display_name(self, client):
        list_id = client.post("/api/lists", json={"name": "Shared"}).json()["id"]
        response = client.post(f"/api/lists/{list_id}/publish", json={"display_name": "admin"})
        assert response.status_code == 422
        assert client.get(f"/api/lists/{list_id}").json()["is_published"] is False

    def test_missing_list(self, client):
        assert client.get("/api/lists/nope/items").status_code == 404
        assert client.post("/api/lists/nope/publish", json={}).status_code == 404


class TestFollowing:

    def _publish(self, remote, owner_id="them"):
        items = [PublishedListItem(tmdb_id=7, media_type="tvShow", title="Severance")]
        return asyncio.run(remote.create_document(PublishedListData(owner_id, "Alex", "Their Shows", items)))

    def test_follow_by_link(self, client, remote):
        doc_id = self._publish(remote)

        response = client.post("/api/following", json={"link": f"https://mit112.github.io/FlickSwiper/list/{doc_id}"})
        assert response.status_code == 200
        assert response.json()["name"] == "Their Shows"

        following = client.get("/api/following").json()
        assert [f["remote_doc_id"] for f in following] == [doc_id]
        items = client.get(f"/api/following/{doc_id}/items").json()
        assert [(i["unique_id"], i["title"]) for i in items] == [("tvShow_7", "Severance")]

        assert client.delete(f"/api/following/{doc_id}").status_code == 200
        assert client.delete(f"/api/following/{doc_id}").status_code == 404
        assert client.get("/api/following").json() == []

    def test_follow_errors(self, client, remote):
        own = self._publish(remote, owner_id="me")

        assert client.post("/api/following", json={"link": "https://example.com/x"}).status_code == 400
        assert client.post("/api/following", json={"link": own}).status_code == 409
        assert client.post("/api/following", json={"link": "missing-doc"}).status_code == 502
