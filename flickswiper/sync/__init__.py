"""Remote list synchronization: publishing and following."""

from flickswiper.sync.remote import (
    DocumentLocks, MemoryRemoteStore, PublishedListData, PublishedListItem,
    PublishedListSnapshot, RemoteListStore, Subscription,
)
from flickswiper.sync.followed import FollowedListSync, SyncState
from flickswiper.sync.publisher import ListPublisher

__all__ = [
    "DocumentLocks", "MemoryRemoteStore", "PublishedListData", "PublishedListItem",
    "PublishedListSnapshot", "RemoteListStore", "Subscription",
    "FollowedListSync", "SyncState", "ListPublisher",
]
