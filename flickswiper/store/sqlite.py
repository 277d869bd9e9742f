"""SQLite storage backend."""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator

from flickswiper.errors import PersistenceError
from flickswiper.models import (
    ClassifiedItem, Direction, MediaKind, UserList, ListEntry,
    FollowedList, FollowedListItem,
)
from flickswiper.store.base import Store

logger = logging.getLogger(__name__)


CURRENT_SCHEMA_VERSION = 3

# V1: the library table as it shipped at launch.
SCHEMA_V1 = """
CREATE TABLE IF NOT EXISTS classified_items (
    unique_id TEXT PRIMARY KEY,
    external_id INTEGER NOT NULL,
    media_kind TEXT NOT NULL,
    direction TEXT NOT NULL,
    classified_at TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    overview TEXT NOT NULL DEFAULT '',
    poster_path TEXT,
    release_date TEXT,
    rating REAL
);

CREATE INDEX IF NOT EXISTS idx_classified_direction ON classified_items(direction);
CREATE INDEX IF NOT EXISTS idx_classified_at ON classified_items(classified_at DESC);
"""


def _create_v1(conn: sqlite3.Connection) -> None:
    # executescript() would commit the open transaction, so run statements one by one
    for statement in SCHEMA_V1.split(";"):
        if statement.strip():
            conn.execute(statement)


def _migrate_v1_to_v2(conn: sqlite3.Connection) -> None:
    """V2: personal rating, genres and source platform; user lists."""
    conn.execute("ALTER TABLE classified_items ADD COLUMN personal_rating INTEGER DEFAULT NULL")
    conn.execute("ALTER TABLE classified_items ADD COLUMN genre_ids TEXT NOT NULL DEFAULT '[]'")
    conn.execute("ALTER TABLE classified_items ADD COLUMN source_platform TEXT DEFAULT NULL")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS user_lists (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            created_at TEXT NOT NULL,
            sort_order INTEGER NOT NULL DEFAULT 0
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS list_entries (
            id TEXT PRIMARY KEY,
            list_id TEXT NOT NULL,
            item_id TEXT NOT NULL,
            added_at TEXT NOT NULL,
            sort_order INTEGER NOT NULL DEFAULT 0,
            UNIQUE(list_id, item_id)
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_entries_list ON list_entries(list_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_entries_item ON list_entries(item_id)")


def _migrate_v2_to_v3(conn: sqlite3.Connection) -> None:
    """V3: publish state on user lists; followed list mirrors."""
    conn.execute("ALTER TABLE user_lists ADD COLUMN remote_doc_id TEXT DEFAULT NULL")
    conn.execute("ALTER TABLE user_lists ADD COLUMN is_published INTEGER NOT NULL DEFAULT 0")
    conn.execute("ALTER TABLE user_lists ADD COLUMN last_synced_at TEXT DEFAULT NULL")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS followed_lists (
            remote_doc_id TEXT PRIMARY KEY,
            local_id TEXT NOT NULL,
            name TEXT NOT NULL,
            owner_display_name TEXT NOT NULL,
            owner_id TEXT NOT NULL,
            item_count INTEGER NOT NULL DEFAULT 0,
            followed_at TEXT NOT NULL,
            is_active INTEGER NOT NULL DEFAULT 1,
            last_fetched_at TEXT
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS followed_list_items (
            local_id TEXT PRIMARY KEY,
            followed_list_id TEXT NOT NULL,
            external_id INTEGER NOT NULL,
            media_kind TEXT NOT NULL,
            title TEXT NOT NULL,
            poster_path TEXT,
            sort_order INTEGER NOT NULL DEFAULT 0
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_followed_items_list ON followed_list_items(followed_list_id)"
    )


# Each entry upgrades the schema from version N-1 to N. A step commits
# together with its version bump.
MIGRATIONS: dict[int, Callable[[sqlite3.Connection], None]] = {
    1: _create_v1,
    2: _migrate_v1_to_v2,
    3: _migrate_v2_to_v3,
}


def _datetime_to_str(dt: datetime) -> str:
    """Convert datetime to ISO format string."""
    return dt.isoformat()


def _str_to_datetime(s: str) -> datetime:
    """Parse ISO format string to datetime."""
    return datetime.fromisoformat(s)


def _row_to_classified(row: sqlite3.Row) -> ClassifiedItem:
    """Convert a database row to a ClassifiedItem."""
    return ClassifiedItem(
        unique_id=row["unique_id"],
        external_id=row["external_id"],
        media_kind=MediaKind(row["media_kind"]),
        direction=Direction(row["direction"]),
        classified_at=_str_to_datetime(row["classified_at"]),
        title=row["title"],
        overview=row["overview"],
        poster_path=row["poster_path"],
        release_date=row["release_date"],
        rating=row["rating"],
        personal_rating=row["personal_rating"],
        genre_ids=json.loads(row["genre_ids"]) if row["genre_ids"] else [],
        source_platform=row["source_platform"],
    )


def _row_to_user_list(row: sqlite3.Row) -> UserList:
    """Convert a database row to a UserList."""
    return UserList(
        id=row["id"],
        name=row["name"],
        created_at=_str_to_datetime(row["created_at"]),
        sort_order=row["sort_order"],
        remote_doc_id=row["remote_doc_id"],
        is_published=bool(row["is_published"]),
        last_synced_at=_str_to_datetime(row["last_synced_at"]) if row["last_synced_at"] else None,
    )


def _row_to_entry(row: sqlite3.Row) -> ListEntry:
    """Convert a database row to a ListEntry."""
    return ListEntry(
        id=row["id"],
        list_id=row["list_id"],
        item_id=row["item_id"],
        added_at=_str_to_datetime(row["added_at"]),
        sort_order=row["sort_order"],
    )


def _row_to_followed_list(row: sqlite3.Row) -> FollowedList:
    """Convert a database row to a FollowedList."""
    return FollowedList(
        remote_doc_id=row["remote_doc_id"],
        local_id=row["local_id"],
        name=row["name"],
        owner_display_name=row["owner_display_name"],
        owner_id=row["owner_id"],
        item_count=row["item_count"],
        followed_at=_str_to_datetime(row["followed_at"]),
        is_active=bool(row["is_active"]),
        last_fetched_at=_str_to_datetime(row["last_fetched_at"]) if row["last_fetched_at"] else None,
    )


def _row_to_followed_item(row: sqlite3.Row) -> FollowedListItem:
    """Convert a database row to a FollowedListItem."""
    return FollowedListItem(
        local_id=row["local_id"],
        followed_list_id=row["followed_list_id"],
        external_id=row["external_id"],
        media_kind=MediaKind(row["media_kind"]),
        title=row["title"],
        poster_path=row["poster_path"],
        sort_order=row["sort_order"],
    )


def _entry_filters(list_id: str | None, item_id: str | None) -> tuple[str, list[str]]:
    conditions = []
    params = []
    if list_id is not None:
        conditions.append("list_id = ?")
        params.append(list_id)
    if item_id is not None:
        conditions.append("item_id = ?")
        params.append(item_id)
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    return where, params


class SQLiteStore(Store):
    """SQLite-backed store. Good for production single-user."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path).expanduser()
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # check_same_thread=False allows use from multiple threads (FastAPI);
            # every access goes through self._lock.
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        except (OSError, sqlite3.Error) as e:
            raise PersistenceError(f"Failed to open database {self.db_path}: {e}") from e
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        try:
            self._init_schema()
        except PersistenceError:
            self._conn.close()
            raise

    # Schema

    def _init_schema(self) -> None:
        """Create or upgrade tables to CURRENT_SCHEMA_VERSION."""
        with self._lock:
            self._conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            self._conn.commit()
            version = self.schema_version()

            while version < CURRENT_SCHEMA_VERSION:
                target = version + 1
                try:
                    self._conn.execute("BEGIN")
                    MIGRATIONS[target](self._conn)
                    self._set_schema_version(target)
                    self._conn.commit()
                except sqlite3.Error as e:
                    self._conn.rollback()
                    raise PersistenceError(f"Migration to schema V{target} failed: {e}") from e
                logger.info(f"Migrated {self.db_path} to schema V{target}")
                version = target

    def schema_version(self) -> int:
        """Current schema version (0 for an empty database)."""
        row = self._conn.execute("SELECT MAX(version) AS version FROM schema_version").fetchone()
        if row["version"] is not None:
            return row["version"]

        # Databases from before version tracking only have the V1 table
        legacy = self._conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'classified_items'"
        ).fetchone()
        return 1 if legacy else 0

    def _set_schema_version(self, version: int) -> None:
        self._conn.execute("DELETE FROM schema_version")
        self._conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))

    # Unit of work

    @contextmanager
    def transaction(self) -> Iterator["SQLiteStore"]:
        with self._lock:
            self._depth += 1
            try:
                yield self
            except sqlite3.Error as e:
                self._depth -= 1
                if self._depth == 0:
                    self._conn.rollback()
                raise PersistenceError(f"Database write failed: {e}") from e
            except BaseException:
                self._depth -= 1
                if self._depth == 0:
                    self._conn.rollback()
                raise
            else:
                self._depth -= 1
                if self._depth == 0:
                    try:
                        self._conn.commit()
                    except sqlite3.Error as e:
                        self._conn.rollback()
                        raise PersistenceError(f"Database commit failed: {e}") from e

    def _query(self, sql: str, params: tuple | list = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise PersistenceError(f"Database read failed: {e}") from e

    # Classified items

    def insert_classified(self, item: ClassifiedItem) -> None:
        with self.transaction():
            self._conn.execute(
                """
                INSERT INTO classified_items (
                    unique_id, external_id, media_kind, direction, classified_at,
                    title, overview, poster_path, release_date, rating,
                    personal_rating, genre_ids, source_platform
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item.unique_id,
                    item.external_id,
                    item.media_kind.value,
                    item.direction.value,
                    _datetime_to_str(item.classified_at),
                    item.title,
                    item.overview,
                    item.poster_path,
                    item.release_date,
                    item.rating,
                    item.personal_rating,
                    json.dumps(item.genre_ids),
                    item.source_platform,
                ),
            )

    def update_classified(self, item: ClassifiedItem) -> None:
        with self.transaction():
            cursor = self._conn.execute(
                """
                UPDATE classified_items SET
                    direction = ?, classified_at = ?, title = ?, overview = ?,
                    poster_path = ?, release_date = ?, rating = ?,
                    personal_rating = ?, genre_ids = ?, source_platform = ?
                WHERE unique_id = ?
                """,
                (
                    item.direction.value,
                    _datetime_to_str(item.classified_at),
                    item.title,
                    item.overview,
                    item.poster_path,
                    item.release_date,
                    item.rating,
                    item.personal_rating,
                    json.dumps(item.genre_ids),
                    item.source_platform,
                    item.unique_id,
                ),
            )
            if cursor.rowcount == 0:
                raise PersistenceError(f"No library record for {item.unique_id}")

    def get_classified(self, unique_id: str) -> ClassifiedItem | None:
        rows = self._query("SELECT * FROM classified_items WHERE unique_id = ?", (unique_id,))
        return _row_to_classified(rows[0]) if rows else None

    def list_classified(
        self,
        direction: Direction | None = None,
        limit: int | None = None,
    ) -> list[ClassifiedItem]:
        sql = "SELECT * FROM classified_items"
        params: list = []
        if direction is not None:
            sql += " WHERE direction = ?"
            params.append(direction.value)
        sql += " ORDER BY classified_at DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [_row_to_classified(row) for row in self._query(sql, params)]

    def classified_ids(self) -> set[str]:
        return {row["unique_id"] for row in self._query("SELECT unique_id FROM classified_items")}

    def count_classified(self, direction: Direction | None = None) -> int:
        if direction is None:
            rows = self._query("SELECT COUNT(*) FROM classified_items")
        else:
            rows = self._query(
                "SELECT COUNT(*) FROM classified_items WHERE direction = ?", (direction.value,)
            )
        return rows[0][0]

    def delete_classified(self, unique_id: str) -> bool:
        with self.transaction():
            cursor = self._conn.execute(
                "DELETE FROM classified_items WHERE unique_id = ?", (unique_id,)
            )
            return cursor.rowcount > 0

    # User lists

    def add_user_list(self, user_list: UserList) -> None:
        with self.transaction():
            self._conn.execute(
                """
                INSERT INTO user_lists (
                    id, name, created_at, sort_order, remote_doc_id, is_published, last_synced_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_list.id,
                    user_list.name,
                    _datetime_to_str(user_list.created_at),
                    user_list.sort_order,
                    user_list.remote_doc_id,
                    int(user_list.is_published),
                    _datetime_to_str(user_list.last_synced_at) if user_list.last_synced_at else None,
                ),
            )

    def update_user_list(self, user_list: UserList) -> None:
        with self.transaction():
            cursor = self._conn.execute(
                """
                UPDATE user_lists SET
                    name = ?, sort_order = ?, remote_doc_id = ?, is_published = ?, last_synced_at = ?
                WHERE id = ?
                """,
                (
                    user_list.name,
                    user_list.sort_order,
                    user_list.remote_doc_id,
                    int(user_list.is_published),
                    _datetime_to_str(user_list.last_synced_at) if user_list.last_synced_at else None,
                    user_list.id,
                ),
            )
            if cursor.rowcount == 0:
                raise PersistenceError(f"No user list {user_list.id}")

    def get_user_list(self, list_id: str) -> UserList | None:
        rows = self._query("SELECT * FROM user_lists WHERE id = ?", (list_id,))
        return _row_to_user_list(rows[0]) if rows else None

    def list_user_lists(self) -> list[UserList]:
        rows = self._query("SELECT * FROM user_lists ORDER BY sort_order, created_at")
        return [_row_to_user_list(row) for row in rows]

    def delete_user_list(self, list_id: str) -> bool:
        with self.transaction():
            cursor = self._conn.execute("DELETE FROM user_lists WHERE id = ?", (list_id,))
            return cursor.rowcount > 0

    # List entries

    def add_list_entry(self, entry: ListEntry) -> bool:
        with self.transaction():
            cursor = self._conn.execute(
                """
                INSERT OR IGNORE INTO list_entries (id, list_id, item_id, added_at, sort_order)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    entry.id,
                    entry.list_id,
                    entry.item_id,
                    _datetime_to_str(entry.added_at),
                    entry.sort_order,
                ),
            )
            return cursor.rowcount > 0

    def get_list_entries(
        self,
        list_id: str | None = None,
        item_id: str | None = None,
    ) -> list[ListEntry]:
        where, params = _entry_filters(list_id, item_id)
        rows = self._query(f"SELECT * FROM list_entries {where} ORDER BY sort_order, added_at", params)
        return [_row_to_entry(row) for row in rows]

    def delete_list_entries(
        self,
        list_id: str | None = None,
        item_id: str | None = None,
    ) -> int:
        if list_id is None and item_id is None:
            raise ValueError("delete_list_entries requires list_id or item_id")
        where, params = _entry_filters(list_id, item_id)
        with self.transaction():
            cursor = self._conn.execute(f"DELETE FROM list_entries {where}", params)
            return cursor.rowcount

    # Followed lists

    def upsert_followed_list(self, followed: FollowedList) -> None:
        with self.transaction():
            self._conn.execute(
                """
                INSERT INTO followed_lists (
                    remote_doc_id, local_id, name, owner_display_name, owner_id,
                    item_count, followed_at, is_active, last_fetched_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(remote_doc_id) DO UPDATE SET
                    name = excluded.name,
                    owner_display_name = excluded.owner_display_name,
                    owner_id = excluded.owner_id,
                    item_count = excluded.item_count,
                    is_active = excluded.is_active,
                    last_fetched_at = excluded.last_fetched_at
                """,
                (
                    followed.remote_doc_id,
                    followed.local_id,
                    followed.name,
                    followed.owner_display_name,
                    followed.owner_id,
                    followed.item_count,
                    _datetime_to_str(followed.followed_at),
                    int(followed.is_active),
                    _datetime_to_str(followed.last_fetched_at) if followed.last_fetched_at else None,
                ),
            )

    def get_followed_list(self, remote_doc_id: str) -> FollowedList | None:
        rows = self._query("SELECT * FROM followed_lists WHERE remote_doc_id = ?", (remote_doc_id,))
        return _row_to_followed_list(rows[0]) if rows else None

    def list_followed_lists(self) -> list[FollowedList]:
        rows = self._query("SELECT * FROM followed_lists ORDER BY followed_at DESC")
        return [_row_to_followed_list(row) for row in rows]

    def delete_followed_list(self, remote_doc_id: str) -> bool:
        with self.transaction():
            self._conn.execute(
                "DELETE FROM followed_list_items WHERE followed_list_id = ?", (remote_doc_id,)
            )
            cursor = self._conn.execute(
                "DELETE FROM followed_lists WHERE remote_doc_id = ?", (remote_doc_id,)
            )
            return cursor.rowcount > 0

    def replace_followed_list_items(
        self, remote_doc_id: str, items: list[FollowedListItem]
    ) -> None:
        with self.transaction():
            self._conn.execute(
                "DELETE FROM followed_list_items WHERE followed_list_id = ?", (remote_doc_id,)
            )
            self._conn.executemany(
                """
                INSERT INTO followed_list_items (
                    local_id, followed_list_id, external_id, media_kind, title, poster_path, sort_order
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        item.local_id,
                        remote_doc_id,
                        item.external_id,
                        item.media_kind.value,
                        item.title,
                        item.poster_path,
                        item.sort_order,
                    )
                    for item in items
                ],
            )

    def get_followed_list_items(self, remote_doc_id: str) -> list[FollowedListItem]:
        rows = self._query(
            "SELECT * FROM followed_list_items WHERE followed_list_id = ? ORDER BY sort_order",
            (remote_doc_id,),
        )
        return [_row_to_followed_item(row) for row in rows]

    # Lifecycle

    def close(self) -> None:
        with self._lock:
            self._conn.close()
