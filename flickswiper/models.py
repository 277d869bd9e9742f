"""Core data models for FlickSwiper."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import uuid


TMDB_IMAGE_BASE = "https://image.tmdb.org/t/p"


class MediaKind(Enum):
    """Kind of media item. Values match the persisted UniqueID prefix."""
    MOVIE = "movie"
    SHOW = "tvShow"

    @property
    def display_name(self) -> str:
        return "Movie" if self is MediaKind.MOVIE else "TV Show"


class Direction(Enum):
    """Classification state of an item.

    Directions are totally ordered: seen (2) > watchlist (1) > skipped (0).
    """
    SKIPPED = "skipped"
    WATCHLIST = "watchlist"
    SEEN = "seen"

    @property
    def rank(self) -> int:
        return _DIRECTION_RANKS[self]

    def allows(self, proposed: "Direction") -> bool:
        """Whether a transition from this direction to `proposed` is a promotion.

        Same-rank re-encounters are allowed; demotions are not.
        """
        return proposed.rank >= self.rank


_DIRECTION_RANKS = {
    Direction.SKIPPED: 0,
    Direction.WATCHLIST: 1,
    Direction.SEEN: 2,
}


def make_unique_id(media_kind: MediaKind, external_id: int) -> str:
    """Composite identity key shared by queue, library and lists."""
    return f"{media_kind.value}_{external_id}"


def parse_release_year(release_date: str | None) -> int | None:
    """Year from a `YYYY-MM-DD` date string, or None if it can't be parsed."""
    if not release_date or len(release_date) < 4:
        return None
    try:
        return int(release_date[:4])
    except ValueError:
        return None


def poster_url(poster_path: str | None, size: str = "w500") -> str | None:
    if not poster_path:
        return None
    return f"{TMDB_IMAGE_BASE}/{size}{poster_path}"


@dataclass(frozen=True)
class MediaItem:
    """A provider-sourced candidate. Never persisted directly."""
    external_id: int
    media_kind: MediaKind
    title: str
    overview: str = ""
    poster_path: str | None = None
    release_date: str | None = None
    rating: float | None = None
    genre_ids: tuple[int, ...] = ()

    @property
    def unique_id(self) -> str:
        return make_unique_id(self.media_kind, self.external_id)

    @property
    def release_year(self) -> int | None:
        return parse_release_year(self.release_date)

    @property
    def poster_url(self) -> str | None:
        return poster_url(self.poster_path)

    @property
    def thumbnail_url(self) -> str | None:
        return poster_url(self.poster_path, "w185")


@dataclass
class ClassifiedItem:
    """Durable library record, one per UniqueID."""
    unique_id: str
    external_id: int
    media_kind: MediaKind
    direction: Direction
    classified_at: datetime
    title: str = ""
    overview: str = ""
    poster_path: str | None = None
    release_date: str | None = None
    rating: float | None = None

    # Added in schema V2
    personal_rating: int | None = None
    genre_ids: list[int] = field(default_factory=list)
    source_platform: str | None = None

    @classmethod
    def from_media(
        cls,
        item: MediaItem,
        direction: Direction,
        classified_at: datetime,
        source_platform: str | None = None,
    ) -> "ClassifiedItem":
        """Create a new library record from a queue candidate."""
        return cls(
            unique_id=item.unique_id,
            external_id=item.external_id,
            media_kind=item.media_kind,
            direction=direction,
            classified_at=classified_at,
            title=item.title,
            overview=item.overview,
            poster_path=item.poster_path,
            release_date=item.release_date,
            rating=item.rating,
            genre_ids=list(item.genre_ids),
            source_platform=source_platform,
        )

    def to_media(self) -> MediaItem:
        """Rebuild the candidate this record was created from."""
        return MediaItem(
            external_id=self.external_id,
            media_kind=self.media_kind,
            title=self.title,
            overview=self.overview,
            poster_path=self.poster_path,
            release_date=self.release_date,
            rating=self.rating,
            genre_ids=tuple(self.genre_ids),
        )

    @property
    def is_seen(self) -> bool:
        return self.direction is Direction.SEEN

    @property
    def is_watchlist(self) -> bool:
        return self.direction is Direction.WATCHLIST

    @property
    def release_year(self) -> int | None:
        return parse_release_year(self.release_date)


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of a classify call.

    `previous_direction` is None when the record was created. `changed` is
    False when the requested direction was a demotion and nothing was written.
    """
    item: ClassifiedItem
    previous_direction: Direction | None
    created: bool
    changed: bool


@dataclass(frozen=True)
class UndoEntry:
    """Enough information to exactly reverse one classification."""
    item: MediaItem
    new_direction: Direction
    previous_direction: Direction | None


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class UserList:
    """A user-created list of library items (e.g. "Date Night")."""
    id: str
    name: str
    created_at: datetime
    sort_order: int = 0

    # Added in schema V3
    remote_doc_id: str | None = None
    is_published: bool = False
    last_synced_at: datetime | None = None

    @classmethod
    def create(cls, name: str, sort_order: int = 0) -> "UserList":
        return cls(id=_new_id(), name=name, created_at=datetime.utcnow(), sort_order=sort_order)


@dataclass
class ListEntry:
    """Join record between a UserList and a classified item's UniqueID."""
    id: str
    list_id: str
    item_id: str
    added_at: datetime
    sort_order: int = 0

    @classmethod
    def create(cls, list_id: str, item_id: str, sort_order: int = 0) -> "ListEntry":
        return cls(
            id=_new_id(),
            list_id=list_id,
            item_id=item_id,
            added_at=datetime.utcnow(),
            sort_order=sort_order,
        )


@dataclass
class FollowedList:
    """Local mirror of a remote list published by another user."""
    remote_doc_id: str
    name: str
    owner_display_name: str
    owner_id: str
    item_count: int = 0
    followed_at: datetime = field(default_factory=datetime.utcnow)
    is_active: bool = True
    last_fetched_at: datetime | None = None
    local_id: str = field(default_factory=_new_id)


@dataclass
class FollowedListItem:
    """One display-only item inside a followed list."""
    followed_list_id: str
    external_id: int
    media_kind: MediaKind
    title: str
    poster_path: str | None = None
    sort_order: int = 0
    local_id: str = field(default_factory=_new_id)

    @property
    def unique_id(self) -> str:
        return make_unique_id(self.media_kind, self.external_id)
