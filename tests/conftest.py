"""Shared fixtures and fakes."""

import asyncio
import tempfile

import pytest

from flickswiper.filters import ContentTypeFilter, DiscoveryMethod, Genre, SortOption
from flickswiper.models import MediaItem, MediaKind
from flickswiper.sources.base import ContentProvider
from flickswiper.store import FileStore, SQLiteStore


def make_media(
    external_id: int,
    kind: MediaKind = MediaKind.MOVIE,
    title: str | None = None,
    release_date: str | None = "2010-07-16",
    **kwargs,
) -> MediaItem:
    return MediaItem(
        external_id=external_id,
        media_kind=kind,
        title=title or f"Title {external_id}",
        release_date=release_date,
        **kwargs,
    )


class FakeProvider(ContentProvider):
    """Scripted provider: serves fixed pages and records every request.

    `pages` maps page number to items; missing pages are empty (end of
    content). `errors` maps page number to an exception to raise. When
    `gate` is set, each fetch waits on it before returning.
    """

    def __init__(self, pages: dict[int, list[MediaItem]] | None = None):
        self.pages = pages or {}
        self.errors: dict[int, Exception] = {}
        self.calls: list[dict] = []
        self.gate: asyncio.Event | None = None
        self.closed = False

    @property
    def provider_id(self) -> str:
        return "fake"

    async def fetch_content(
        self,
        method: DiscoveryMethod,
        content_type: ContentTypeFilter = ContentTypeFilter.ALL,
        genre: Genre | None = None,
        page: int = 1,
        sort: SortOption = SortOption.POPULAR,
        year_min: int | None = None,
        year_max: int | None = None,
    ) -> list[MediaItem]:
        self.calls.append({
            "method": method,
            "content_type": content_type,
            "genre": genre,
            "page": page,
            "sort": sort,
            "year_min": year_min,
            "year_max": year_max,
        })
        if self.gate is not None:
            await self.gate.wait()
        if page in self.errors:
            raise self.errors[page]
        return list(self.pages.get(page, []))

    async def search_multi(self, query: str, page: int = 1) -> list[MediaItem]:
        return [
            item for items in self.pages.values() for item in items
            if query.lower() in item.title.lower()
        ]

    async def close(self) -> None:
        self.closed = True


def page_of(start: int, count: int, kind: MediaKind = MediaKind.MOVIE) -> list[MediaItem]:
    return [make_media(i, kind) for i in range(start, start + count)]


@pytest.fixture
def sqlite_store():
    """Create a temporary SQLite store."""
    with tempfile.TemporaryDirectory() as tmpdir:
        store = SQLiteStore(f"{tmpdir}/test.db")
        yield store
        store.close()


@pytest.fixture
def file_store():
    """Create a temporary file store."""
    with tempfile.TemporaryDirectory() as tmpdir:
        store = FileStore(tmpdir)
        yield store
        store.close()


@pytest.fixture(params=["sqlite", "file"])
def store(request, sqlite_store, file_store):
    """Parameterized fixture that runs tests against both stores."""
    if request.param == "sqlite":
        return sqlite_store
    return file_store
