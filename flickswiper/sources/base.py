"""Content provider protocol.

A content provider turns the active discovery filters into pages of
MediaItem candidates. Implementations must be idempotent per
(filters, page) and return an empty list once content is exhausted.
"""

from abc import ABC, abstractmethod

from flickswiper.filters import ContentTypeFilter, DiscoveryMethod, Genre, SortOption
from flickswiper.models import MediaItem


class ContentProvider(ABC):
    """Source of discovery candidates."""

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Unique identifier for this provider."""
        pass

    @abstractmethod
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
        """Fetch one page of candidates for the given filters.

        Raises:
            ConnectivityError: The device has no network path.
            ProviderError: Any other provider failure.
        """
        pass

    @abstractmethod
    async def search_multi(self, query: str, page: int = 1) -> list[MediaItem]:
        """Search movies and TV shows by title."""
        pass

    async def close(self) -> None:
        """Release network resources."""
        pass
