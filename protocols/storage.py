"""Storage protocols.

Three logical tables plus one side store:
- cache entries, keyed by cache key
- request records, keyed by client identity + timestamp
- analysis history, append-only, queried by client identity
- raw payloads, keyed like cache entries and pruned independently

Implementations raise ``models.errors.StorageError`` when the backing
store fails. Every single-record write is atomic.
"""

from datetime import datetime
from typing import List, Optional, Protocol, Tuple, runtime_checkable

from models.records import CacheEntry, HistoryRecord, RequestRecord


@runtime_checkable
class CacheRepository(Protocol):
    """Structured tier of the response cache."""

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the entry for ``key`` (expired or not), or None."""
        ...

    def upsert(self, entry: CacheEntry) -> None:
        """Insert or replace the entry with the same key."""
        ...

    def delete(self, key: str) -> bool:
        """Delete an entry.

        Returns:
            True if an entry was removed
        """
        ...

    def exists(self, key: str, now: datetime) -> bool:
        """Check for an unexpired entry without loading its metadata."""
        ...

    def delete_expired(self, now: datetime) -> int:
        """Delete every entry with ``expires_at <= now``.

        Returns:
            Number of entries deleted
        """
        ...

    def keys(self) -> List[str]:
        ...

    def stats(self, now: datetime) -> Tuple[int, int]:
        """Return (total_entries, valid_entries)."""
        ...

    def clear(self) -> int:
        ...


@runtime_checkable
class PayloadRepository(Protocol):
    """Raw tier of the response cache."""

    def get(self, key: str) -> Optional[str]:
        ...

    def put(self, key: str, payload: str) -> None:
        ...

    def delete(self, key: str) -> bool:
        """Delete a payload.

        Returns:
            True if a payload was removed, False if none existed
        """
        ...

    def keys(self) -> List[str]:
        ...

    def total_bytes(self) -> int:
        ...

    def clear(self) -> int:
        ...


@runtime_checkable
class RequestLogRepository(Protocol):
    """Request records used by the rate limiter."""

    def add(self, record: RequestRecord) -> None:
        ...

    def count_since(self, client_identity: str, since: datetime) -> int:
        """Count records for one identity with ``timestamp > since``."""
        ...

    def delete_before(self, cutoff: datetime) -> int:
        ...

    def delete_for(self, client_identity: str) -> int:
        ...

    def top_since(self, since: datetime, limit: int = 10) -> List[Tuple[str, int]]:
        """Identities ordered by request count since ``since``, busiest first."""
        ...


@runtime_checkable
class HistoryRepository(Protocol):
    """Append-only analysis history."""

    def add(self, record: HistoryRecord) -> None:
        ...

    def list_for(self, client_identity: str, limit: int = 20) -> List[HistoryRecord]:
        """Most recent records for one identity, newest first."""
        ...
