"""Store module - persistence layer for FlickSwiper."""

from flickswiper.store.base import Store
from flickswiper.store.sqlite import SQLiteStore
from flickswiper.store.file import FileStore
from flickswiper.store.factory import StoreType, create_store
from flickswiper.store.migrate import MigrationCounts, migrate_store

__all__ = [
    "Store", "SQLiteStore", "FileStore", "StoreType", "create_store",
    "MigrationCounts", "migrate_store",
]
