"""
In-memory storage backends.

Cache entries and raw payloads live in bounded LRU caches; request
records and history in plain lists. Each store is guarded by its own
lock, so single-record reads and writes are atomic across threads.
"""

import threading
from collections import Counter, deque
from datetime import datetime
from typing import Deque, List, Optional, Tuple

from cachetools import LRUCache

from models.records import CacheEntry, HistoryRecord, RequestRecord


class MemoryCacheRepository:
    """Structured cache tier backed by ``cachetools.LRUCache``."""

    def __init__(self, maxsize: int = 1000):
        self._entries: LRUCache = LRUCache(maxsize=maxsize)
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def upsert(self, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[entry.key] = entry

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def exists(self, key: str, now: datetime) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(now)

    def delete_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries.keys())

    def stats(self, now: datetime) -> Tuple[int, int]:
        with self._lock:
            total = len(self._entries)
            valid = sum(1 for entry in self._entries.values() if not entry.is_expired(now))
            return total, valid

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count


class MemoryPayloadRepository:
    """Raw cache tier, sized by entry count like the structured tier."""

    def __init__(self, maxsize: int = 1000):
        self._payloads: LRUCache = LRUCache(maxsize=maxsize)
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._payloads.get(key)

    def put(self, key: str, payload: str) -> None:
        with self._lock:
            self._payloads[key] = payload

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._payloads.pop(key, None) is not None

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._payloads.keys())

    def total_bytes(self) -> int:
        with self._lock:
            return sum(len(payload.encode("utf-8")) for payload in self._payloads.values())

    def clear(self) -> int:
        with self._lock:
            count = len(self._payloads)
            self._payloads.clear()
            return count


class MemoryRequestLogRepository:
    """Request records for the rate limiter."""

    def __init__(self):
        self._records: List[RequestRecord] = []
        self._lock = threading.Lock()

    def add(self, record: RequestRecord) -> None:
        with self._lock:
            self._records.append(record)

    def count_since(self, client_identity: str, since: datetime) -> int:
        with self._lock:
            return sum(
                1 for record in self._records
                if record.client_identity == client_identity and record.timestamp > since
            )

    def delete_before(self, cutoff: datetime) -> int:
        with self._lock:
            kept = [record for record in self._records if record.timestamp >= cutoff]
            deleted = len(self._records) - len(kept)
            self._records = kept
            return deleted

    def delete_for(self, client_identity: str) -> int:
        with self._lock:
            kept = [record for record in self._records if record.client_identity != client_identity]
            deleted = len(self._records) - len(kept)
            self._records = kept
            return deleted

    def top_since(self, since: datetime, limit: int = 10) -> List[Tuple[str, int]]:
        with self._lock:
            counts = Counter(
                record.client_identity for record in self._records if record.timestamp > since
            )
        return counts.most_common(limit)


class MemoryHistoryRepository:
    """Analysis history, capped at ``maxlen`` records overall."""

    def __init__(self, maxlen: int = 10000):
        self._records: Deque[HistoryRecord] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def add(self, record: HistoryRecord) -> None:
        with self._lock:
            self._records.append(record)

    def list_for(self, client_identity: str, limit: int = 20) -> List[HistoryRecord]:
        with self._lock:
            matching = [r for r in reversed(self._records) if r.client_identity == client_identity]
        return matching[:limit]
