"""Smart collections: groupings computed from the seen library."""

from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta

from flickswiper.filters import Genre
from flickswiper.models import ClassifiedItem, MediaKind

RECENT_DAYS = 30
FAVORITE_MIN_RATING = 4
MIN_GENRE_COUNT = 2
MAX_GENRE_COLLECTIONS = 10


@dataclass(frozen=True)
class SmartCollection:
    """A computed, never persisted, view over seen items."""
    id: str
    title: str
    count: int
    cover_poster_path: str | None = None


def _collection(id: str, title: str, items: list[ClassifiedItem]) -> SmartCollection:
    return SmartCollection(id=id, title=title, count=len(items), cover_poster_path=items[0].poster_path)


def filter_collection(
    collection_id: str,
    items: list[ClassifiedItem],
    now: datetime | None = None,
) -> list[ClassifiedItem]:
    """The items belonging to a collection, by its id."""
    now = now or datetime.utcnow()
    if collection_id == "favorites":
        return [i for i in items if (i.personal_rating or 0) >= FAVORITE_MIN_RATING]
    if collection_id == "movies":
        return [i for i in items if i.media_kind is MediaKind.MOVIE]
    if collection_id == "tvshows":
        return [i for i in items if i.media_kind is MediaKind.SHOW]
    if collection_id == "recent":
        cutoff = now - timedelta(days=RECENT_DAYS)
        return [i for i in items if i.classified_at >= cutoff]
    if collection_id.startswith("genre_"):
        genre_id = int(collection_id.removeprefix("genre_"))
        return [i for i in items if genre_id in i.genre_ids]
    if collection_id.startswith("platform_"):
        platform = collection_id.removeprefix("platform_")
        return [i for i in items if i.source_platform == platform]
    if collection_id == "all":
        return list(items)
    raise ValueError(f"Unknown smart collection: {collection_id}")


def build_collections(
    seen_items: list[ClassifiedItem],
    now: datetime | None = None,
) -> list[SmartCollection]:
    """Build collections in display order.

    `seen_items` should be newest first so covers come from recent swipes.
    """
    now = now or datetime.utcnow()
    result = []

    favorites = filter_collection("favorites", seen_items)
    if favorites:
        result.append(_collection("favorites", "My Favorites", favorites))

    # Movies vs TV only when the library has both
    movies = filter_collection("movies", seen_items)
    shows = filter_collection("tvshows", seen_items)
    if movies and shows:
        result.append(_collection("movies", "Movies", movies))
        result.append(_collection("tvshows", "TV Shows", shows))

    result.extend(_genre_collections(seen_items))
    result.extend(_platform_collections(seen_items))

    recent = filter_collection("recent", seen_items, now)
    if recent:
        result.append(_collection("recent", "Recently Added", recent))

    return result


def _genre_collections(items: list[ClassifiedItem]) -> list[SmartCollection]:
    counts: Counter[int] = Counter()
    covers: dict[int, str | None] = {}
    for item in items:
        for genre_id in item.genre_ids:
            counts[genre_id] += 1
            covers.setdefault(genre_id, item.poster_path)

    collections = []
    for genre_id, count in counts.most_common():
        if count < MIN_GENRE_COUNT or len(collections) >= MAX_GENRE_COLLECTIONS:
            break
        name = Genre.name_for_id(genre_id)
        if name is None:
            continue
        collections.append(
            SmartCollection(id=f"genre_{genre_id}", title=name, count=count, cover_poster_path=covers[genre_id])
        )
    return collections


def _platform_collections(items: list[ClassifiedItem]) -> list[SmartCollection]:
    counts: Counter[str] = Counter()
    covers: dict[str, str | None] = {}
    for item in items:
        if not item.source_platform:
            continue
        counts[item.source_platform] += 1
        covers.setdefault(item.source_platform, item.poster_path)

    return [
        SmartCollection(id=f"platform_{p}", title=p, count=c, cover_poster_path=covers[p])
        for p, c in counts.most_common()
    ]
