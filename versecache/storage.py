"""Named cache stores holding Request -> Response pairs.

Two backends share one interface:

- MemoryCacheStorage: dict-backed, used for tests and short-lived runs.
- SqliteCacheStorage: persisted to SQLite so caches survive restarts.

Writes for the same key follow last-write-wins semantics. Every value is
derived from the network response for that same key, so no further
ordering is imposed.
"""

import json
import sqlite3
import threading
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from .models import Request, Response


class StorageError(Exception):
    """Raised when a cache storage operation fails."""

    pass


def _check_storable(request: Request) -> None:
    if request.method != "GET":
        raise StorageError(f"Only GET requests can be cached, got {request.method} {request.url}")


class Cache:
    """A single named cache store."""

    name: str

    def match(self, request: Request) -> Response | None:
        raise NotImplementedError

    def put(self, request: Request, response: Response) -> None:
        raise NotImplementedError

    def put_all(self, entries: Iterable[tuple[Request, Response]]) -> None:
        """Store several entries at once: either all are written or none."""
        raise NotImplementedError

    def delete(self, request: Request) -> bool:
        raise NotImplementedError

    def keys(self) -> list[str]:
        raise NotImplementedError

    def __len__(self) -> int:
        return len(self.keys())


class CacheStorage:
    """The set of named caches owned by one origin."""

    def open(self, name: str) -> Cache:
        """Open the named cache, creating it when absent."""
        raise NotImplementedError

    def has(self, name: str) -> bool:
        raise NotImplementedError

    def keys(self) -> list[str]:
        """Names of all caches in creation order."""
        raise NotImplementedError

    def delete(self, name: str) -> bool:
        """Delete a cache. Returns False if it did not exist."""
        raise NotImplementedError


# =============================================================================
# IN-MEMORY BACKEND
# =============================================================================


class MemoryCache(Cache):
    """Thread-safe dict-backed cache."""

    def __init__(self, name: str, lock: threading.Lock, entries: dict[str, Response]) -> None:
        self.name = name
        self._lock = lock
        self._entries = entries

    def match(self, request: Request) -> Response | None:
        with self._lock:
            return self._entries.get(request.cache_key)

    def put(self, request: Request, response: Response) -> None:
        _check_storable(request)
        with self._lock:
            self._entries[request.cache_key] = response

    def put_all(self, entries: Iterable[tuple[Request, Response]]) -> None:
        entries = list(entries)
        for request, _ in entries:
            _check_storable(request)
        with self._lock:
            for request, response in entries:
                self._entries[request.cache_key] = response

    def delete(self, request: Request) -> bool:
        with self._lock:
            return self._entries.pop(request.cache_key, None) is not None

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)


class MemoryCacheStorage(CacheStorage):
    """Cache storage kept in process memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._caches: dict[str, dict[str, Response]] = {}

    def open(self, name: str) -> Cache:
        with self._lock:
            entries = self._caches.setdefault(name, {})
        return MemoryCache(name, self._lock, entries)

    def has(self, name: str) -> bool:
        with self._lock:
            return name in self._caches

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._caches)

    def delete(self, name: str) -> bool:
        with self._lock:
            return self._caches.pop(name, None) is not None


# =============================================================================
# SQLITE BACKEND
# =============================================================================

# Global lock for thread-safe database access.
# Background revalidation writes from worker threads while pages read.
_db_lock = threading.Lock()


def init_db(db_path: str) -> sqlite3.Connection:
    """Initialize the cache database and create tables if they don't exist.

    Args:
        db_path: Path to the SQLite database file.

    Returns:
        Database connection with WAL mode enabled.

    Raises:
        StorageError: If database initialization fails.
    """
    try:
        parent_dir = Path(db_path).parent
        if not parent_dir.exists():
            parent_dir.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row

        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")

        conn.execute("""
            CREATE TABLE IF NOT EXISTS caches (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS entries (
                cache_name TEXT NOT NULL,
                url TEXT NOT NULL,
                status INTEGER NOT NULL,
                status_text TEXT NOT NULL,
                headers TEXT NOT NULL,
                body BLOB NOT NULL,
                response_url TEXT NOT NULL,
                response_type TEXT NOT NULL,
                stored_at TEXT NOT NULL,
                PRIMARY KEY (cache_name, url)
            )
        """)

        conn.commit()
        return conn

    except sqlite3.Error as e:
        raise StorageError(f"Failed to initialize cache database: {e}")
    except OSError as e:
        raise StorageError(f"Failed to create cache database directory: {e}")


def _row_to_response(row: sqlite3.Row) -> Response:
    return Response(
        url=row["response_url"],
        status=row["status"],
        status_text=row["status_text"],
        headers=json.loads(row["headers"]),
        body=bytes(row["body"]),
        type=row["response_type"],
    )


class SqliteCache(Cache):
    """A cache store persisted in the entries table."""

    def __init__(self, name: str, conn: sqlite3.Connection) -> None:
        self.name = name
        self._conn = conn

    def match(self, request: Request) -> Response | None:
        try:
            with _db_lock:
                row = self._conn.execute(
                    "SELECT * FROM entries WHERE cache_name = ? AND url = ?",
                    (self.name, request.cache_key),
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read {request.url} from cache {self.name}: {e}")
        return _row_to_response(row) if row is not None else None

    def _insert(self, request: Request, response: Response, stored_at: str) -> None:
        self._conn.execute(
            """
            INSERT OR REPLACE INTO entries
            (cache_name, url, status, status_text, headers, body, response_url, response_type, stored_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                self.name,
                request.cache_key,
                response.status,
                response.status_text,
                json.dumps(response.headers),
                sqlite3.Binary(response.body),
                response.url,
                response.type,
                stored_at,
            ),
        )

    def put(self, request: Request, response: Response) -> None:
        self.put_all([(request, response)])

    def put_all(self, entries: Iterable[tuple[Request, Response]]) -> None:
        entries = list(entries)
        for request, _ in entries:
            _check_storable(request)
        stored_at = datetime.now(UTC).isoformat()
        try:
            with _db_lock:
                # A handle can outlive its store; never write rows for a deleted cache
                exists = self._conn.execute("SELECT 1 FROM caches WHERE name = ?", (self.name,)).fetchone()
                if exists is None:
                    raise StorageError(f"Cache {self.name} no longer exists")
                try:
                    for request, response in entries:
                        self._insert(request, response, stored_at)
                    self._conn.commit()
                except sqlite3.Error:
                    self._conn.rollback()
                    raise
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write to cache {self.name}: {e}")

    def delete(self, request: Request) -> bool:
        try:
            with _db_lock:
                cursor = self._conn.execute(
                    "DELETE FROM entries WHERE cache_name = ? AND url = ?",
                    (self.name, request.cache_key),
                )
                self._conn.commit()
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete {request.url} from cache {self.name}: {e}")

    def keys(self) -> list[str]:
        try:
            with _db_lock:
                rows = self._conn.execute(
                    "SELECT url FROM entries WHERE cache_name = ? ORDER BY rowid",
                    (self.name,),
                ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list cache {self.name}: {e}")
        return [row["url"] for row in rows]


class SqliteCacheStorage(CacheStorage):
    """Cache storage persisted to a SQLite database file."""

    def __init__(self, db_path: str) -> None:
        self._conn = init_db(db_path)

    def open(self, name: str) -> Cache:
        try:
            with _db_lock:
                self._conn.execute(
                    "INSERT OR IGNORE INTO caches (name, created_at) VALUES (?, ?)",
                    (name, datetime.now(UTC).isoformat()),
                )
                self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open cache {name}: {e}")
        return SqliteCache(name, self._conn)

    def has(self, name: str) -> bool:
        try:
            with _db_lock:
                row = self._conn.execute("SELECT 1 FROM caches WHERE name = ?", (name,)).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to look up cache {name}: {e}")
        return row is not None

    def keys(self) -> list[str]:
        try:
            with _db_lock:
                rows = self._conn.execute("SELECT name FROM caches ORDER BY id").fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list caches: {e}")
        return [row["name"] for row in rows]

    def delete(self, name: str) -> bool:
        try:
            with _db_lock:
                try:
                    self._conn.execute("DELETE FROM entries WHERE cache_name = ?", (name,))
                    cursor = self._conn.execute("DELETE FROM caches WHERE name = ?", (name,))
                    self._conn.commit()
                except sqlite3.Error:
                    self._conn.rollback()
                    raise
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete cache {name}: {e}")

    def close(self) -> None:
        self._conn.close()
