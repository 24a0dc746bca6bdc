"""Summary: TTL cache stores used for sync locks and usage counters.

Importance: Coordinates independent workers through shared state instead of in-process mutexes.
Alternatives: Use Redis with SETNX and INCRBY.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator


Clock = Callable[[], float]


class CacheStore(ABC):
    """Summary: Abstract key-value store with expiry.

    Importance: Lets locks and counters run against SQLite or memory interchangeably.
    Alternatives: Hardcode a single cache backend.
    """

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Return the live value for a key, or the default."""

    @abstractmethod
    def put(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Store a value, replacing any existing entry."""

    @abstractmethod
    def has(self, key: str) -> bool:
        """Check whether a live entry exists."""

    @abstractmethod
    def forget(self, key: str) -> bool:
        """Delete an entry; returns True when something was removed."""

    @abstractmethod
    def forget_if(self, key: str, value: Any) -> bool:
        """Summary: Delete an entry only while it still holds the given value.

        Importance: Atomic compare-and-delete so a worker only releases a lock it owns.
        Alternatives: Call forget() and risk deleting a lock another worker re-acquired.
        """

    @abstractmethod
    def add(self, key: str, value: Any, ttl_seconds: float | None = None) -> bool:
        """Summary: Store a value only if the key is absent or expired.

        Importance: Atomic set-if-absent used for lock acquisition.
        Alternatives: Check with has() then put(), which races between workers.
        """

    @abstractmethod
    def increment(self, key: str, amount: int, expires_at: float | None = None) -> int:
        """Summary: Atomically add to an integer counter and return the new value.

        Importance: Prevents lost updates when workers record usage concurrently.
        Alternatives: Read, add, and write back without a transaction.
        """


class MemoryCacheStore(CacheStore):
    """Summary: In-process cache guarded by a lock.

    Importance: Serves tests and single-process deployments without a database.
    Alternatives: Use a plain dict and accept races between threads.
    """

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[Any, float | None]] = {}
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._live_entry(key)
            return default if entry is None else entry[0]

    def put(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        with self._lock:
            self._entries[key] = (value, self._expiry(ttl_seconds))

    def has(self, key: str) -> bool:
        with self._lock:
            return self._live_entry(key) is not None

    def forget(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def forget_if(self, key: str, value: Any) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry[0] != value:
                return False
            del self._entries[key]
            return True

    def add(self, key: str, value: Any, ttl_seconds: float | None = None) -> bool:
        with self._lock:
            if self._live_entry(key) is not None:
                return False
            self._entries[key] = (value, self._expiry(ttl_seconds))
            return True

    def increment(self, key: str, amount: int, expires_at: float | None = None) -> int:
        with self._lock:
            entry = self._live_entry(key)
            current = int(entry[0]) if entry else 0
            updated = current + amount
            self._entries[key] = (updated, expires_at)
            return updated

    def _live_entry(self, key: str) -> tuple[Any, float | None] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def _expiry(self, ttl_seconds: float | None) -> float | None:
        return None if ttl_seconds is None else self._clock() + ttl_seconds


class SqliteCacheStore(CacheStore):
    """Summary: SQLite-backed cache shared by every worker using the same file.

    Importance: Gives cross-process locks and counters without extra infrastructure.
    Alternatives: Run Redis or Memcached next to the app.
    """

    def __init__(self, db_path: str, clock: Clock = time.time) -> None:
        """Summary: Initialize the cache with a database path and clock.

        Importance: The clock is injectable so expiry can be tested deterministically.
        Alternatives: Always read the wall clock.
        """

        self._db_path = Path(db_path)
        self._clock = clock

    def initialize(self) -> None:
        """Summary: Create the cache table if it does not exist.

        Importance: Ensures lock and counter operations have a table to write to.
        Alternatives: Manage the schema with a migration tool.
        """

        with self._connection() as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS cache_entries (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL
                )
                """
            )

    def get(self, key: str, default: Any = None) -> Any:
        with self._connection() as connection:
            row = connection.execute(
                "SELECT value FROM cache_entries WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)",
                (key, self._clock()),
            ).fetchone()
        return default if row is None else json.loads(row[0])

    def put(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        with self._transaction() as connection:
            connection.execute(
                "INSERT OR REPLACE INTO cache_entries (key, value, expires_at) VALUES (?, ?, ?)",
                (key, json.dumps(value), self._expiry(ttl_seconds)),
            )

    def has(self, key: str) -> bool:
        with self._connection() as connection:
            row = connection.execute(
                "SELECT 1 FROM cache_entries WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)",
                (key, self._clock()),
            ).fetchone()
        return row is not None

    def forget(self, key: str) -> bool:
        with self._transaction() as connection:
            cursor = connection.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
            return cursor.rowcount > 0

    def forget_if(self, key: str, value: Any) -> bool:
        with self._transaction() as connection:
            cursor = connection.execute(
                "DELETE FROM cache_entries WHERE key = ? AND value = ?", (key, json.dumps(value))
            )
            return cursor.rowcount > 0

    def add(self, key: str, value: Any, ttl_seconds: float | None = None) -> bool:
        now = self._clock()
        with self._transaction() as connection:
            connection.execute(
                "DELETE FROM cache_entries WHERE key = ? AND expires_at IS NOT NULL AND expires_at <= ?",
                (key, now),
            )
            cursor = connection.execute(
                "INSERT OR IGNORE INTO cache_entries (key, value, expires_at) VALUES (?, ?, ?)",
                (key, json.dumps(value), self._expiry(ttl_seconds)),
            )
            return cursor.rowcount == 1

    def increment(self, key: str, amount: int, expires_at: float | None = None) -> int:
        now = self._clock()
        with self._transaction() as connection:
            connection.execute(
                "DELETE FROM cache_entries WHERE key = ? AND expires_at IS NOT NULL AND expires_at <= ?",
                (key, now),
            )
            row = connection.execute(
                "SELECT value FROM cache_entries WHERE key = ?", (key,)
            ).fetchone()
            updated = (int(json.loads(row[0])) if row else 0) + amount
            connection.execute(
                "INSERT OR REPLACE INTO cache_entries (key, value, expires_at) VALUES (?, ?, ?)",
                (key, json.dumps(updated), expires_at),
            )
        return updated

    def _expiry(self, ttl_seconds: float | None) -> float | None:
        return None if ttl_seconds is None else self._clock() + ttl_seconds

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Summary: Run statements inside a write-locked transaction.

        Importance: BEGIN IMMEDIATE takes the write lock up front so read-check-write is atomic.
        Alternatives: Rely on deferred transactions and retry on conflicts.
        """

        with self._connection() as connection:
            connection.execute("BEGIN IMMEDIATE")
            try:
                yield connection
            except BaseException:
                connection.execute("ROLLBACK")
                raise
            connection.execute("COMMIT")

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        connection = sqlite3.connect(self._db_path, timeout=30, isolation_level=None)
        try:
            yield connection
        finally:
            connection.close()
