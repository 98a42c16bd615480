"""
SQLite storage backends.

One connection (WAL journal, shared across threads) behind a lock.
Timestamps are stored as UTC epoch seconds; cache metadata as JSON text.
Every ``sqlite3.Error`` is re-raised as ``StorageError``.
"""

import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional, Tuple

from models.errors import StorageError
from models.records import CacheEntry, HistoryRecord, RequestRecord
from utils.clock import from_epoch, to_epoch

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS requests (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    ip_address TEXT NOT NULL,
    url TEXT NOT NULL,
    user_agent TEXT,
    created_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_requests_ip_created ON requests (ip_address, created_at);
CREATE INDEX IF NOT EXISTS idx_requests_created ON requests (created_at);

CREATE TABLE IF NOT EXISTS cache (
    cache_key TEXT PRIMARY KEY,
    url TEXT NOT NULL,
    data_json TEXT NOT NULL,
    final_url TEXT,
    http_status INTEGER,
    content_type TEXT,
    content_length INTEGER,
    created_at REAL NOT NULL,
    ttl_seconds INTEGER NOT NULL,
    expires_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_cache_expires ON cache (expires_at);
CREATE INDEX IF NOT EXISTS idx_cache_url ON cache (url);

CREATE TABLE IF NOT EXISTS analysis_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    ip_address TEXT NOT NULL,
    url TEXT NOT NULL,
    final_url TEXT,
    http_status INTEGER,
    title TEXT,
    meta_description TEXT,
    og_title TEXT,
    og_description TEXT,
    cache_hit INTEGER NOT NULL DEFAULT 0,
    analysis_time_ms INTEGER,
    created_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_history_ip_created ON analysis_history (ip_address, created_at);

CREATE TABLE IF NOT EXISTS payloads (
    cache_key TEXT PRIMARY KEY,
    payload TEXT NOT NULL
);
"""


class SqliteDatabase:
    """
    Shared SQLite connection.

    Args:
        path: Database file path, or ":memory:"
    """

    def __init__(self, path: str):
        self.path = path
        if path != ":memory:":
            directory = os.path.dirname(os.path.abspath(path))
            os.makedirs(directory, exist_ok=True)

        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
            self._conn.row_factory = sqlite3.Row
            if path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            raise StorageError(f"Could not open database: {e}", {"path": path}) from e

        logger.info(f"SQLite storage ready at {path}")

    @contextmanager
    def cursor(self) -> Iterator[sqlite3.Cursor]:
        with self._lock:
            try:
                yield self._conn.cursor()
            except sqlite3.Error as e:
                logger.error(f"SQLite error: {e}")
                raise StorageError(f"Database error: {e}") from e

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class SqliteCacheRepository:
    """Structured cache tier in the ``cache`` table."""

    def __init__(self, db: SqliteDatabase):
        self.db = db

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> CacheEntry:
        try:
            metadata = json.loads(row["data_json"])
        except (TypeError, ValueError) as e:
            logger.error(f"Corrupt cache row {row['cache_key']}: {e}")
            raise StorageError(f"Corrupt cache entry: {e}") from e
        return CacheEntry(
            key=row["cache_key"],
            normalized_url=row["url"],
            metadata=metadata,
            final_url=row["final_url"] or row["url"],
            http_status=row["http_status"],
            content_type=row["content_type"],
            content_length=row["content_length"],
            created_at=from_epoch(row["created_at"]),
            ttl_seconds=row["ttl_seconds"],
            expires_at=from_epoch(row["expires_at"]),
        )

    def get(self, key: str) -> Optional[CacheEntry]:
        with self.db.cursor() as cur:
            cur.execute("SELECT * FROM cache WHERE cache_key = ?", (key,))
            row = cur.fetchone()
        return self._row_to_entry(row) if row else None

    def upsert(self, entry: CacheEntry) -> None:
        with self.db.cursor() as cur:
            cur.execute(
                """
                INSERT OR REPLACE INTO cache
                    (cache_key, url, data_json, final_url, http_status, content_type,
                     content_length, created_at, ttl_seconds, expires_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.key,
                    entry.normalized_url,
                    json.dumps(entry.metadata, ensure_ascii=False),
                    entry.final_url,
                    entry.http_status,
                    entry.content_type,
                    entry.content_length,
                    to_epoch(entry.created_at),
                    entry.ttl_seconds,
                    to_epoch(entry.expires_at),
                ),
            )

    def delete(self, key: str) -> bool:
        with self.db.cursor() as cur:
            cur.execute("DELETE FROM cache WHERE cache_key = ?", (key,))
            return cur.rowcount > 0

    def exists(self, key: str, now: datetime) -> bool:
        with self.db.cursor() as cur:
            cur.execute(
                "SELECT 1 FROM cache WHERE cache_key = ? AND expires_at > ?",
                (key, to_epoch(now)),
            )
            return cur.fetchone() is not None

    def delete_expired(self, now: datetime) -> int:
        with self.db.cursor() as cur:
            cur.execute("DELETE FROM cache WHERE expires_at <= ?", (to_epoch(now),))
            return cur.rowcount

    def keys(self) -> List[str]:
        with self.db.cursor() as cur:
            cur.execute("SELECT cache_key FROM cache")
            return [row["cache_key"] for row in cur.fetchall()]

    def stats(self, now: datetime) -> Tuple[int, int]:
        with self.db.cursor() as cur:
            cur.execute(
                "SELECT COUNT(*) AS total, "
                "COALESCE(SUM(CASE WHEN expires_at > ? THEN 1 ELSE 0 END), 0) AS valid "
                "FROM cache",
                (to_epoch(now),),
            )
            row = cur.fetchone()
        return row["total"], row["valid"]

    def clear(self) -> int:
        with self.db.cursor() as cur:
            cur.execute("DELETE FROM cache")
            return cur.rowcount


class SqlitePayloadRepository:
    """Raw cache tier in the ``payloads`` table (used when no payload_dir is set)."""

    def __init__(self, db: SqliteDatabase):
        self.db = db

    def get(self, key: str) -> Optional[str]:
        with self.db.cursor() as cur:
            cur.execute("SELECT payload FROM payloads WHERE cache_key = ?", (key,))
            row = cur.fetchone()
        return row["payload"] if row else None

    def put(self, key: str, payload: str) -> None:
        with self.db.cursor() as cur:
            cur.execute(
                "INSERT OR REPLACE INTO payloads (cache_key, payload) VALUES (?, ?)",
                (key, payload),
            )

    def delete(self, key: str) -> bool:
        with self.db.cursor() as cur:
            cur.execute("DELETE FROM payloads WHERE cache_key = ?", (key,))
            return cur.rowcount > 0

    def keys(self) -> List[str]:
        with self.db.cursor() as cur:
            cur.execute("SELECT cache_key FROM payloads")
            return [row["cache_key"] for row in cur.fetchall()]

    def total_bytes(self) -> int:
        with self.db.cursor() as cur:
            cur.execute("SELECT payload FROM payloads")
            return sum(len(row["payload"].encode("utf-8")) for row in cur.fetchall())

    def clear(self) -> int:
        with self.db.cursor() as cur:
            cur.execute("DELETE FROM payloads")
            return cur.rowcount


class SqliteRequestLogRepository:
    """Rate-limit request records in the ``requests`` table."""

    def __init__(self, db: SqliteDatabase):
        self.db = db

    def add(self, record: RequestRecord) -> None:
        with self.db.cursor() as cur:
            cur.execute(
                "INSERT INTO requests (ip_address, url, user_agent, created_at) VALUES (?, ?, ?, ?)",
                (record.client_identity, record.target_url, record.user_agent, to_epoch(record.timestamp)),
            )

    def count_since(self, client_identity: str, since: datetime) -> int:
        with self.db.cursor() as cur:
            cur.execute(
                "SELECT COUNT(*) AS count FROM requests WHERE ip_address = ? AND created_at > ?",
                (client_identity, to_epoch(since)),
            )
            return cur.fetchone()["count"]

    def delete_before(self, cutoff: datetime) -> int:
        with self.db.cursor() as cur:
            cur.execute("DELETE FROM requests WHERE created_at < ?", (to_epoch(cutoff),))
            return cur.rowcount

    def delete_for(self, client_identity: str) -> int:
        with self.db.cursor() as cur:
            cur.execute("DELETE FROM requests WHERE ip_address = ?", (client_identity,))
            return cur.rowcount

    def top_since(self, since: datetime, limit: int = 10) -> List[Tuple[str, int]]:
        with self.db.cursor() as cur:
            cur.execute(
                """
                SELECT ip_address, COUNT(*) AS count FROM requests
                WHERE created_at > ?
                GROUP BY ip_address
                ORDER BY count DESC
                LIMIT ?
                """,
                (to_epoch(since), limit),
            )
            return [(row["ip_address"], row["count"]) for row in cur.fetchall()]


class SqliteHistoryRepository:
    """Analysis history in the ``analysis_history`` table."""

    def __init__(self, db: SqliteDatabase):
        self.db = db

    def add(self, record: HistoryRecord) -> None:
        with self.db.cursor() as cur:
            cur.execute(
                """
                INSERT INTO analysis_history
                    (ip_address, url, final_url, http_status, title, meta_description,
                     og_title, og_description, cache_hit, analysis_time_ms, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.client_identity,
                    record.url,
                    record.final_url,
                    record.http_status,
                    record.title,
                    record.description,
                    record.og_title,
                    record.og_description,
                    int(record.cache_hit),
                    record.duration_ms,
                    to_epoch(record.created_at),
                ),
            )

    def list_for(self, client_identity: str, limit: int = 20) -> List[HistoryRecord]:
        with self.db.cursor() as cur:
            cur.execute(
                """
                SELECT * FROM analysis_history
                WHERE ip_address = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (client_identity, limit),
            )
            rows = cur.fetchall()
        return [
            HistoryRecord(
                client_identity=row["ip_address"],
                url=row["url"],
                final_url=row["final_url"],
                http_status=row["http_status"],
                title=row["title"],
                description=row["meta_description"],
                og_title=row["og_title"],
                og_description=row["og_description"],
                cache_hit=bool(row["cache_hit"]),
                duration_ms=row["analysis_time_ms"] or 0,
                created_at=from_epoch(row["created_at"]),
            )
            for row in rows
        ]
