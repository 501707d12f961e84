#!/usr/bin/env python3
"""
Offline Cache Storage
Named, versioned cache stores in a single SQLite file

Implements:
- storage.open(name) → CacheStore (created on first open)
- storage.keys() → store names, oldest first
- storage.delete(name) → bool
- store.match(request) → Response | None
- store.put(request, response) → key (raises CacheWriteError)
- store.keys() → (method, url) pairs, oldest first

Design principles:
- One store per version tag; a whole generation is dropped at once
- Graceful degradation: a failed read is a miss, not an error
- Writes raise, so the caller decides whether a failure matters
- Optional byte quota across every store in the file
"""

import json
import logging
import os
import sqlite3
import threading
import time
from pathlib import Path
from typing import List, Optional, Tuple

from gateway.http import Request, Response, ResponseType

from .keys import normalize_url, request_key

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = os.path.expanduser("~/.cache/limo-gateway/caches.db")

SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_stores (
    name TEXT PRIMARY KEY,
    created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS cache_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    store_name TEXT NOT NULL,
    request_key TEXT NOT NULL,
    method TEXT NOT NULL,
    url TEXT NOT NULL,
    status INTEGER NOT NULL,
    reason TEXT DEFAULT '',
    headers TEXT DEFAULT '{}',
    body BLOB NOT NULL,
    response_url TEXT DEFAULT '',
    response_type TEXT NOT NULL,
    size_bytes INTEGER NOT NULL,
    created_at REAL NOT NULL,
    UNIQUE(store_name, request_key)
);

CREATE INDEX IF NOT EXISTS idx_entries_store ON cache_entries(store_name);
"""


class CacheError(Exception):
    """Base class for cache storage failures."""


class CacheWriteError(CacheError):
    """A response could not be written to a store."""


class QuotaExceededError(CacheWriteError):
    """Writing the response would exceed the storage quota."""


class CacheStorage:
    """
    All cache stores of one origin.

    The connection is shared between threads; every statement runs
    under one lock so concurrent writes to the same key serialize.
    """

    def __init__(self, db_path: str = None, quota_bytes: int = 0):
        if db_path is None:
            db_path = DEFAULT_DB_PATH

        self.db_path = db_path
        self.quota_bytes = quota_bytes
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        self.conn = sqlite3.connect(db_path, check_same_thread=False, timeout=10.0)
        self.conn.row_factory = sqlite3.Row
        self.conn.executescript(SCHEMA)
        self.conn.commit()

        logger.info("CacheStorage initialized at %s", db_path)

    def open(self, name: str) -> "CacheStore":
        """Return the store called name, creating it if needed."""
        with self._lock:
            self.conn.execute(
                "INSERT OR IGNORE INTO cache_stores (name, created_at) VALUES (?, ?)",
                (name, time.time()),
            )
            self.conn.commit()
        return CacheStore(self, name)

    def has(self, name: str) -> bool:
        with self._lock:
            row = self.conn.execute(
                "SELECT 1 FROM cache_stores WHERE name = ?", (name,)
            ).fetchone()
        return row is not None

    def keys(self) -> List[str]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT name FROM cache_stores ORDER BY created_at, name"
            ).fetchall()
        return [row["name"] for row in rows]

    def delete(self, name: str) -> bool:
        """Drop a store and every entry in it."""
        try:
            with self._lock:
                cursor = self.conn.execute("DELETE FROM cache_stores WHERE name = ?", (name,))
                deleted = cursor.rowcount > 0
                self.conn.execute("DELETE FROM cache_entries WHERE store_name = ?", (name,))
                self.conn.commit()
        except sqlite3.Error as e:
            raise CacheError(f"delete of {name} failed: {e}") from e
        if deleted:
            logger.info("Deleted cache store %s", name)
        return deleted

    def usage_bytes(self) -> int:
        with self._lock:
            row = self.conn.execute(
                "SELECT COALESCE(SUM(size_bytes), 0) AS used FROM cache_entries"
            ).fetchone()
        return int(row["used"])

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("CacheStorage closed")


class CacheStore:
    """One named store: request identity → response snapshot."""

    def __init__(self, storage: CacheStorage, name: str):
        self.storage = storage
        self.name = name

    def __repr__(self) -> str:
        return f"CacheStore({self.name!r})"

    def match(self, request: Request) -> Optional[Response]:
        key = request_key(request.method, request.url)
        try:
            with self.storage._lock:
                row = self.storage.conn.execute(
                    """
                    SELECT status, reason, headers, body, response_url, response_type
                    FROM cache_entries
                    WHERE store_name = ? AND request_key = ?
                    """,
                    (self.name, key),
                ).fetchone()
        except sqlite3.Error as e:
            logger.error("Cache read error in %s: %s", self.name, e)
            return None

        if row is None:
            return None

        return Response(
            status=row["status"],
            reason=row["reason"] or "",
            headers=json.loads(row["headers"] or "{}"),
            body=bytes(row["body"]),
            url=row["response_url"] or "",
            type=ResponseType(row["response_type"]),
        )

    def put(self, request: Request, response: Response) -> str:
        """
        Store response under request's identity, replacing any previous entry.

        Raises:
            QuotaExceededError: the write would go over the storage quota
            CacheWriteError: the store was deleted or the database rejected the write
        """
        key = request_key(request.method, request.url)
        size = len(response.body)
        storage = self.storage

        try:
            with storage._lock:
                exists = storage.conn.execute(
                    "SELECT 1 FROM cache_stores WHERE name = ?", (self.name,)
                ).fetchone()
                if exists is None:
                    raise CacheWriteError(f"cache store {self.name} has been deleted")
                if storage.quota_bytes:
                    self._check_quota(key, size)
                storage.conn.execute(
                    """
                    INSERT OR REPLACE INTO cache_entries
                    (store_name, request_key, method, url, status, reason, headers,
                     body, response_url, response_type, size_bytes, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        self.name,
                        key,
                        request.method.upper(),
                        normalize_url(request.url),
                        response.status,
                        response.reason,
                        json.dumps(dict(response.headers)),
                        sqlite3.Binary(response.body),
                        response.url,
                        response.type.value,
                        size,
                        time.time(),
                    ),
                )
                storage.conn.commit()
        except sqlite3.Error as e:
            raise CacheWriteError(f"write to {self.name} failed: {e}") from e

        logger.debug("Cached %s %s in %s (%d bytes)", request.method, request.url, self.name, size)
        return key

    def _check_quota(self, key: str, size: int):
        row = self.storage.conn.execute(
            """
            SELECT COALESCE(SUM(size_bytes), 0) AS used FROM cache_entries
            WHERE NOT (store_name = ? AND request_key = ?)
            """,
            (self.name, key),
        ).fetchone()
        used = int(row["used"])
        if used + size > self.storage.quota_bytes:
            raise QuotaExceededError(
                f"quota exceeded: {used + size} > {self.storage.quota_bytes} bytes"
            )

    def keys(self) -> List[Tuple[str, str]]:
        """(method, url) pairs held in this store, oldest first."""
        with self.storage._lock:
            rows = self.storage.conn.execute(
                "SELECT method, url FROM cache_entries WHERE store_name = ? ORDER BY id",
                (self.name,),
            ).fetchall()
        return [(row["method"], row["url"]) for row in rows]

    def count(self) -> int:
        with self.storage._lock:
            row = self.storage.conn.execute(
                "SELECT COUNT(*) AS count FROM cache_entries WHERE store_name = ?",
                (self.name,),
            ).fetchone()
        return int(row["count"])
