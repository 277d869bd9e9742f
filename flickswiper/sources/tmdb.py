"""TMDB content provider for movie and TV discovery."""

import asyncio
import logging
import random
from datetime import date
from typing import Any

import httpx

from flickswiper.errors import ConnectivityError, ProviderError
from flickswiper.filters import ContentTypeFilter, DiscoveryMethod, Genre, SortOption
from flickswiper.models import MediaItem, MediaKind
from flickswiper.sources.base import ContentProvider

logger = logging.getLogger(__name__)


TMDB_API_BASE = "https://api.themoviedb.org/3"

# Upper bound on how long a 429 may make us wait before the single retry
MAX_RETRY_AFTER_SECONDS = 10.0
DEFAULT_RETRY_AFTER_SECONDS = 2.0

# Sort used by genre discovery for each general method
_GENRE_SORTS = {
    DiscoveryMethod.TOP_RATED: "vote_average.desc",
    DiscoveryMethod.TRENDING: "popularity.desc",
    DiscoveryMethod.POPULAR: "popularity.desc",
    DiscoveryMethod.NOW_PLAYING: "primary_release_date.desc",
    DiscoveryMethod.UPCOMING: "primary_release_date.asc",
}

# (movie endpoint, tv endpoint) for the list-style methods
_LIST_ENDPOINTS = {
    DiscoveryMethod.TOP_RATED: ("/movie/top_rated", "/tv/top_rated"),
    DiscoveryMethod.POPULAR: ("/movie/popular", "/tv/popular"),
    DiscoveryMethod.NOW_PLAYING: ("/movie/now_playing", "/tv/on_the_air"),
}


def parse_movie(data: dict[str, Any]) -> MediaItem:
    """Build a MediaItem from a TMDB movie result."""
    return MediaItem(
        external_id=data["id"],
        media_kind=MediaKind.MOVIE,
        title=data.get("title") or data.get("original_title") or "Untitled",
        overview=data.get("overview") or "",
        poster_path=data.get("poster_path"),
        release_date=data.get("release_date") or None,
        rating=data.get("vote_average"),
        genre_ids=tuple(data.get("genre_ids") or ()),
    )


def parse_show(data: dict[str, Any]) -> MediaItem:
    """Build a MediaItem from a TMDB TV result."""
    return MediaItem(
        external_id=data["id"],
        media_kind=MediaKind.SHOW,
        title=data.get("name") or data.get("original_name") or "Untitled",
        overview=data.get("overview") or "",
        poster_path=data.get("poster_path"),
        release_date=data.get("first_air_date") or None,
        rating=data.get("vote_average"),
        genre_ids=tuple(data.get("genre_ids") or ()),
    )


def parse_mixed(results: list[dict[str, Any]]) -> list[MediaItem]:
    """Parse trending/search results, keeping only movies and TV shows."""
    items = []
    for data in results:
        media_type = data.get("media_type")
        if media_type == "movie":
            items.append(parse_movie(data))
        elif media_type == "tv":
            items.append(parse_show(data))
    return items


def _year_params(kind: MediaKind, year_min: int | None, year_max: int | None) -> dict[str, str]:
    field = "primary_release_date" if kind is MediaKind.MOVIE else "first_air_date"
    params = {}
    if year_min is not None:
        params[f"{field}.gte"] = f"{year_min}-01-01"
    if year_max is not None:
        params[f"{field}.lte"] = f"{year_max}-12-31"
    return params


class TMDBProvider(ContentProvider):
    """Discovery candidates from The Movie Database (v4 bearer token auth).

    Year ranges are pushed down to discover endpoints; list endpoints
    (popular, top rated, ...) ignore them and rely on the queue's own
    year filter.
    """

    def __init__(
        self,
        token: str,
        watch_region: str = "US",
        client: httpx.AsyncClient | None = None,
        shuffle: bool = True,
        rng: random.Random | None = None,
        timeout: float = 30.0,
    ):
        if not token:
            raise ProviderError("TMDB API token required. Set TMDB_API_TOKEN or tmdb_token in config.")
        self.token = token
        self.watch_region = watch_region
        self.shuffle = shuffle
        self._rng = rng or random.Random()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=TMDB_API_BASE, timeout=timeout)

    @property
    def provider_id(self) -> str:
        return "tmdb"

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # Public API

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
        if genre is not None:
            return await self._fetch_by_genre(genre, method, content_type, page, year_min, year_max)

        if method.watch_provider_id is not None:
            return await self._fetch_by_watch_provider(
                method.watch_provider_id, content_type, page, sort, year_min, year_max
            )

        match method:
            case DiscoveryMethod.TRENDING:
                return await self._fetch_trending(content_type, page)
            case DiscoveryMethod.UPCOMING:
                return await self._fetch_upcoming(content_type, page)
            case _ if method in _LIST_ENDPOINTS:
                movie_endpoint, tv_endpoint = _LIST_ENDPOINTS[method]
                items = []
                if content_type.includes_movies:
                    items += await self._fetch_movies(movie_endpoint, page)
                if content_type.includes_shows:
                    items += await self._fetch_shows(tv_endpoint, page)
                return self._shuffled(items)
            case _:
                return []

    async def search_multi(self, query: str, page: int = 1) -> list[MediaItem]:
        if not query.strip():
            return []
        data = await self._request(
            "/search/multi",
            {"query": query, "page": str(page), "include_adult": "false", "language": "en-US"},
        )
        return parse_mixed(data.get("results", []))

    # Discovery strategies

    async def _fetch_by_genre(
        self,
        genre: Genre,
        method: DiscoveryMethod,
        content_type: ContentTypeFilter,
        page: int,
        year_min: int | None,
        year_max: int | None,
    ) -> list[MediaItem]:
        sort_by = _GENRE_SORTS.get(method, "popularity.desc")
        base = {"sort_by": sort_by, "vote_count.gte": "50"}

        if method.watch_provider_id is not None:
            base["with_watch_providers"] = str(method.watch_provider_id)
            base["watch_region"] = self.watch_region

        movie_params = {**base, "with_genres": str(genre.value)}
        tv_params = {**base, "with_genres": str(genre.for_tv().value)}

        if method is DiscoveryMethod.UPCOMING:
            today = date.today().isoformat()
            movie_params["primary_release_date.gte"] = today
            tv_params["first_air_date.gte"] = today

        movie_params.update(_year_params(MediaKind.MOVIE, year_min, year_max))
        tv_params.update(_year_params(MediaKind.SHOW, year_min, year_max))

        items = []
        if content_type.includes_movies:
            items += await self._fetch_movies("/discover/movie", page, movie_params)
        if content_type.includes_shows:
            items += await self._fetch_shows("/discover/tv", page, tv_params)
        return self._shuffled(items)

    async def _fetch_by_watch_provider(
        self,
        provider_id: int,
        content_type: ContentTypeFilter,
        page: int,
        sort: SortOption,
        year_min: int | None,
        year_max: int | None,
    ) -> list[MediaItem]:
        base = {"with_watch_providers": str(provider_id), "watch_region": self.watch_region}
        if sort is SortOption.TOP_RATED:
            base["vote_count.gte"] = "50"

        items = []
        if content_type.includes_movies:
            params = {
                **base,
                "sort_by": sort.movie_sort_param,
                **_year_params(MediaKind.MOVIE, year_min, year_max),
            }
            items += await self._fetch_movies("/discover/movie", page, params)
        if content_type.includes_shows:
            params = {
                **base,
                "sort_by": sort.tv_sort_param,
                **_year_params(MediaKind.SHOW, year_min, year_max),
            }
            items += await self._fetch_shows("/discover/tv", page, params)

        # Only popularity order is shuffled; explicit sorts keep provider order
        if sort is SortOption.POPULAR:
            return self._shuffled(items)
        return items

    async def _fetch_trending(self, content_type: ContentTypeFilter, page: int) -> list[MediaItem]:
        if content_type is ContentTypeFilter.ALL:
            data = await self._request("/trending/all/day", {"page": str(page)})
            return parse_mixed(data.get("results", []))
        if content_type is ContentTypeFilter.MOVIES:
            return await self._fetch_movies("/trending/movie/day", page)
        return await self._fetch_shows("/trending/tv/day", page)

    async def _fetch_upcoming(self, content_type: ContentTypeFilter, page: int) -> list[MediaItem]:
        today = date.today().isoformat()
        items = []
        if content_type.includes_movies:
            items += await self._fetch_movies(
                "/discover/movie",
                page,
                {
                    "primary_release_date.gte": today,
                    "sort_by": "primary_release_date.asc",
                    "with_release_type": "2|3",
                    "vote_count.gte": "0",
                },
            )
        if content_type.includes_shows:
            items += await self._fetch_shows(
                "/discover/tv",
                page,
                {"first_air_date.gte": today, "sort_by": "first_air_date.asc"},
            )
        return self._shuffled(items)

    def _shuffled(self, items: list[MediaItem]) -> list[MediaItem]:
        if self.shuffle:
            self._rng.shuffle(items)
        return items

    # HTTP

    async def _fetch_movies(
        self, endpoint: str, page: int, params: dict[str, str] | None = None
    ) -> list[MediaItem]:
        data = await self._request(endpoint, {**(params or {}), "page": str(page)})
        return [parse_movie(d) for d in data.get("results", [])]

    async def _fetch_shows(
        self, endpoint: str, page: int, params: dict[str, str] | None = None
    ) -> list[MediaItem]:
        data = await self._request(endpoint, {**(params or {}), "page": str(page)})
        return [parse_show(d) for d in data.get("results", [])]

    async def _request(self, endpoint: str, params: dict[str, str]) -> dict[str, Any]:
        """GET an endpoint, retrying once on 429, and decode the JSON body."""
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }
        response = await self._send(endpoint, params, headers)

        if response.status_code == 429:
            delay = _retry_after_seconds(response)
            logger.warning(f"TMDB rate limited on {endpoint}, retrying in {delay:.1f}s")
            await asyncio.sleep(delay)
            response = await self._send(endpoint, params, headers)
            if response.status_code == 429:
                raise ProviderError("Too many requests. Please wait a moment and try again.", 429)

        if not response.is_success:
            raise ProviderError(
                f"TMDB request {endpoint} failed with status {response.status_code}",
                response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"Could not decode TMDB response for {endpoint}: {e}") from e

    async def _send(self, endpoint: str, params: dict[str, str], headers: dict[str, str]) -> httpx.Response:
        try:
            return await self._client.get(endpoint, params=params, headers=headers)
        except httpx.NetworkError as e:
            raise ConnectivityError(f"No connection to TMDB: {e}") from e
        except httpx.TimeoutException as e:
            raise ProviderError(f"TMDB request {endpoint} timed out") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"TMDB request {endpoint} failed: {e}") from e


def _retry_after_seconds(response: httpx.Response) -> float:
    try:
        delay = float(response.headers.get("Retry-After", DEFAULT_RETRY_AFTER_SECONDS))
    except ValueError:
        delay = DEFAULT_RETRY_AFTER_SECONDS
    return max(0.0, min(delay, MAX_RETRY_AFTER_SECONDS))


class TMDBImagePrefetcher:
    """Warms poster images for items about to be shown.

    Callable used by the content queue's prefetch window. Downloads the
    card-size poster and discards the body; failures are ignored since the
    card will fetch the image itself.
    """

    def __init__(self, client: httpx.AsyncClient | None = None, size: str = "w500"):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=15.0)
        self.size = size
        self.fetched: set[str] = set()

    async def __call__(self, item: MediaItem) -> None:
        url = item.poster_url if self.size == "w500" else item.thumbnail_url
        if not url or url in self.fetched:
            return
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.debug(f"Poster prefetch failed for {item.unique_id}: {e}")
            return
        self.fetched.add(url)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
