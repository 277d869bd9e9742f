"""Error taxonomy for FlickSwiper."""


class FlickSwiperError(Exception):
    """Base class for all errors raised by the core."""


class ConnectivityError(FlickSwiperError):
    """No network path to the content provider (device is offline)."""


class ProviderError(FlickSwiperError):
    """Content provider failure that is not a connectivity problem."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(FlickSwiperError):
    """A local durable write or read failed."""


class ConsistencyViolation(FlickSwiperError):
    """An operation the data model forbids, e.g. rating an unclassified item."""


class RemoteSyncError(FlickSwiperError):
    """A remote list document read or write failed."""


class InvalidDisplayName(FlickSwiperError):
    """A display name failed validation."""
