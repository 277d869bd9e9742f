"""Content providers."""

from flickswiper.sources.base import ContentProvider
from flickswiper.sources.tmdb import TMDBProvider, TMDBImagePrefetcher

__all__ = ["ContentProvider", "TMDBProvider", "TMDBImagePrefetcher"]
