"""Discovery filter options: methods, content types, genres and sorting."""

from dataclasses import dataclass
from enum import Enum

from flickswiper.models import MediaItem


class DiscoveryMethod(Enum):
    """Where the discovery queue pulls candidates from."""
    # General discovery
    TOP_RATED = "Top Rated"
    POPULAR = "Popular"
    TRENDING = "Trending"
    NOW_PLAYING = "Now Playing"
    UPCOMING = "Upcoming"

    # Premium streaming services
    NETFLIX = "Netflix"
    AMAZON_PRIME = "Prime Video"
    DISNEY_PLUS = "Disney+"
    MAX = "Max"
    APPLE_TV_PLUS = "Apple TV+"
    HULU = "Hulu"
    PARAMOUNT_PLUS = "Paramount+"
    PEACOCK = "Peacock"

    # Free streaming
    TUBI = "Tubi (Free)"
    PLUTO_TV = "Pluto TV (Free)"

    # Specialty
    CRUNCHYROLL = "Crunchyroll"

    @property
    def watch_provider_id(self) -> int | None:
        """TMDB watch provider ID (US region) for streaming methods."""
        return _WATCH_PROVIDER_IDS.get(self)

    @property
    def is_streaming_service(self) -> bool:
        return self.watch_provider_id is not None

    @property
    def is_free_service(self) -> bool:
        return self in (DiscoveryMethod.TUBI, DiscoveryMethod.PLUTO_TV)

    @property
    def category(self) -> str:
        if self.is_free_service:
            return "Free Streaming"
        if self is DiscoveryMethod.CRUNCHYROLL:
            return "Specialty"
        if self.is_streaming_service:
            return "Streaming Services"
        return "Discover"

    @classmethod
    def parse(cls, value: str) -> "DiscoveryMethod":
        """Look up a method by display value or enum name (case-insensitive)."""
        for method in cls:
            if value == method.value or value.upper() == method.name:
                return method
        raise ValueError(f"Unknown discovery method: {value}")


_WATCH_PROVIDER_IDS = {
    DiscoveryMethod.NETFLIX: 8,
    DiscoveryMethod.AMAZON_PRIME: 9,
    DiscoveryMethod.DISNEY_PLUS: 337,
    DiscoveryMethod.MAX: 1899,
    DiscoveryMethod.APPLE_TV_PLUS: 350,
    DiscoveryMethod.HULU: 15,
    DiscoveryMethod.PARAMOUNT_PLUS: 2303,
    DiscoveryMethod.PEACOCK: 386,
    DiscoveryMethod.TUBI: 73,
    DiscoveryMethod.PLUTO_TV: 300,
    DiscoveryMethod.CRUNCHYROLL: 283,
}


class ContentTypeFilter(Enum):
    """Show movies, TV shows, or both."""
    ALL = "All"
    MOVIES = "Movies"
    TV_SHOWS = "TV Shows"

    @property
    def includes_movies(self) -> bool:
        return self is not ContentTypeFilter.TV_SHOWS

    @property
    def includes_shows(self) -> bool:
        return self is not ContentTypeFilter.MOVIES


class Genre(Enum):
    """TMDB genre IDs."""
    ACTION = 28
    ADVENTURE = 12
    ANIMATION = 16
    COMEDY = 35
    CRIME = 80
    DOCUMENTARY = 99
    DRAMA = 18
    FAMILY = 10751
    FANTASY = 14
    HISTORY = 36
    HORROR = 27
    MUSIC = 10402
    MYSTERY = 9648
    ROMANCE = 10749
    SCI_FI = 878
    THRILLER = 53
    WAR = 10752
    WESTERN = 37

    # TV-specific
    ACTION_ADVENTURE_TV = 10759
    SCI_FI_FANTASY_TV = 10765
    REALITY = 10764
    KIDS = 10762

    @property
    def display_name(self) -> str:
        return _GENRE_NAMES.get(self, self.name.replace("_", " ").title())

    def for_tv(self) -> "Genre":
        """TV discover uses combined genres for some movie genres."""
        if self in (Genre.ACTION, Genre.ADVENTURE):
            return Genre.ACTION_ADVENTURE_TV
        if self in (Genre.SCI_FI, Genre.FANTASY):
            return Genre.SCI_FI_FANTASY_TV
        return self

    @classmethod
    def name_for_id(cls, genre_id: int) -> str | None:
        try:
            return cls(genre_id).display_name
        except ValueError:
            return None


_GENRE_NAMES = {
    Genre.SCI_FI: "Sci-Fi",
    Genre.ACTION_ADVENTURE_TV: "Action & Adventure",
    Genre.SCI_FI_FANTASY_TV: "Sci-Fi & Fantasy",
}


class SortOption(Enum):
    """Sort options for streaming service discovery."""
    POPULAR = "Popular"
    TOP_RATED = "Top Rated"
    NEWEST = "Newest"
    OLDEST = "Oldest"
    TITLE_AZ = "A-Z"
    TITLE_ZA = "Z-A"

    @property
    def movie_sort_param(self) -> str:
        return {
            SortOption.POPULAR: "popularity.desc",
            SortOption.TOP_RATED: "vote_average.desc",
            SortOption.NEWEST: "primary_release_date.desc",
            SortOption.OLDEST: "primary_release_date.asc",
            SortOption.TITLE_AZ: "title.asc",
            SortOption.TITLE_ZA: "title.desc",
        }[self]

    @property
    def tv_sort_param(self) -> str:
        return {
            SortOption.POPULAR: "popularity.desc",
            SortOption.TOP_RATED: "vote_average.desc",
            SortOption.NEWEST: "first_air_date.desc",
            SortOption.OLDEST: "first_air_date.asc",
            SortOption.TITLE_AZ: "name.asc",
            SortOption.TITLE_ZA: "name.desc",
        }[self]


@dataclass(frozen=True)
class FilterSet:
    """The active discovery filters. Replaced wholesale on every change."""
    method: DiscoveryMethod = DiscoveryMethod.POPULAR
    content_type: ContentTypeFilter = ContentTypeFilter.ALL
    genre: Genre | None = None
    sort: SortOption = SortOption.POPULAR
    year_min: int | None = None
    year_max: int | None = None

    @property
    def has_year_range(self) -> bool:
        return self.year_min is not None or self.year_max is not None

    def accepts_year(self, item: MediaItem) -> bool:
        """Year range check. Items without a parseable year fail an active range."""
        if not self.has_year_range:
            return True
        year = item.release_year
        if year is None:
            return False
        if self.year_min is not None and year < self.year_min:
            return False
        if self.year_max is not None and year > self.year_max:
            return False
        return True

    def resets_undo(self, other: "FilterSet") -> bool:
        """Whether switching to `other` changes the browsing context."""
        return (
            self.method != other.method
            or self.content_type != other.content_type
            or self.genre != other.genre
        )
