"""Abstract base class for storage backends."""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager

from flickswiper.models import (
    ClassifiedItem, Direction, UserList, ListEntry,
    FollowedList, FollowedListItem,
)


class Store(ABC):
    """Abstract persistence layer for the library, user lists and followed lists.

    Every mutating method commits on its own unless it runs inside
    `transaction()`, in which case all writes in the unit of work commit or
    roll back together. Backends raise `PersistenceError` on failure.
    """

    # Unit of work
    @abstractmethod
    def transaction(self) -> AbstractContextManager["Store"]:
        """Group writes atomically. Re-entrant; the outermost block commits."""
        pass

    # Classified items
    @abstractmethod
    def insert_classified(self, item: ClassifiedItem) -> None:
        """Insert a new library record. Fails if the UniqueID already exists."""
        pass

    @abstractmethod
    def update_classified(self, item: ClassifiedItem) -> None:
        """Overwrite an existing library record."""
        pass

    @abstractmethod
    def get_classified(self, unique_id: str) -> ClassifiedItem | None:
        """Get a library record by UniqueID."""
        pass

    @abstractmethod
    def list_classified(
        self,
        direction: Direction | None = None,
        limit: int | None = None,
    ) -> list[ClassifiedItem]:
        """List library records, newest classification first."""
        pass

    @abstractmethod
    def classified_ids(self) -> set[str]:
        """All UniqueIDs in the library."""
        pass

    @abstractmethod
    def count_classified(self, direction: Direction | None = None) -> int:
        """Count library records, optionally by direction."""
        pass

    @abstractmethod
    def delete_classified(self, unique_id: str) -> bool:
        """Delete a library record. Returns False if it did not exist."""
        pass

    # User lists
    @abstractmethod
    def add_user_list(self, user_list: UserList) -> None:
        """Insert a new user list."""
        pass

    @abstractmethod
    def update_user_list(self, user_list: UserList) -> None:
        """Overwrite an existing user list."""
        pass

    @abstractmethod
    def get_user_list(self, list_id: str) -> UserList | None:
        """Get a user list by ID."""
        pass

    @abstractmethod
    def list_user_lists(self) -> list[UserList]:
        """All user lists ordered by sort_order."""
        pass

    @abstractmethod
    def delete_user_list(self, list_id: str) -> bool:
        """Delete a user list (entries are not touched)."""
        pass

    # List entries
    @abstractmethod
    def add_list_entry(self, entry: ListEntry) -> bool:
        """Insert a membership. Returns False if (list_id, item_id) already exists."""
        pass

    @abstractmethod
    def get_list_entries(
        self,
        list_id: str | None = None,
        item_id: str | None = None,
    ) -> list[ListEntry]:
        """Entries matching the filters, ordered by sort_order."""
        pass

    @abstractmethod
    def delete_list_entries(
        self,
        list_id: str | None = None,
        item_id: str | None = None,
    ) -> int:
        """Delete entries matching the filters. At least one filter is required."""
        pass

    # Followed lists
    @abstractmethod
    def upsert_followed_list(self, followed: FollowedList) -> None:
        """Insert or update a followed list by remote_doc_id."""
        pass

    @abstractmethod
    def get_followed_list(self, remote_doc_id: str) -> FollowedList | None:
        """Get a followed list by remote document ID."""
        pass

    @abstractmethod
    def list_followed_lists(self) -> list[FollowedList]:
        """All followed lists, most recently followed first."""
        pass

    @abstractmethod
    def delete_followed_list(self, remote_doc_id: str) -> bool:
        """Delete a followed list and its items."""
        pass

    @abstractmethod
    def replace_followed_list_items(
        self, remote_doc_id: str, items: list[FollowedListItem]
    ) -> None:
        """Replace every item row of a followed list with `items`."""
        pass

    @abstractmethod
    def get_followed_list_items(self, remote_doc_id: str) -> list[FollowedListItem]:
        """Items of a followed list ordered by sort_order."""
        pass

    # Lifecycle
    @abstractmethod
    def close(self) -> None:
        """Close the store and release resources."""
        pass

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
