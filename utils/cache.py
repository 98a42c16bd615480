"""
Response cache for Meta Tag Analyzer.

Two tiers keyed by the same cache key:
- structured: the extracted metadata plus fetch details (CacheRepository)
- raw: the minimised HTML, only when requested and within the size cap
  (PayloadRepository)

Expiry is checked on read; ``cleanup`` sweeps expired entries and raw
payloads whose structured entry is gone. Default TTL is 6 hours.
"""

import dataclasses
import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional

from config import Settings, settings as default_settings
from models.errors import StorageError
from models.records import CacheEntry, FetchEnvelope
from protocols import CacheRepository, PayloadRepository
from utils.clock import Clock, utc_now
from utils.url_validator import is_valid_cache_key, make_cache_key

logger = logging.getLogger(__name__)


class CacheStore:
    """
    Cache facade over the structured and raw storage tiers.

    When caching is disabled, reads miss and writes succeed trivially.

    Args:
        repository: Structured tier
        payloads: Raw tier
        settings: Application settings (enable_cache, TTL, payload cap)
        clock: Time source, injectable for tests
    """

    def __init__(
        self,
        repository: CacheRepository,
        payloads: PayloadRepository,
        settings: Optional[Settings] = None,
        clock: Clock = utc_now,
    ):
        self.repository = repository
        self.payloads = payloads
        self.settings = settings or default_settings
        self.clock = clock
        self.ttl = self.settings.cache_ttl_seconds
        self.max_payload_bytes = self.settings.cache_max_payload_bytes

    @property
    def enabled(self) -> bool:
        return self.settings.enable_cache

    def _check_key(self, cache_key: str) -> bool:
        if is_valid_cache_key(cache_key):
            return True
        logger.warning(f"Invalid cache key rejected: {cache_key[:80]!r}")
        return False

    def get(self, cache_key: str) -> Optional[CacheEntry]:
        """
        Get a cached analysis.

        Args:
            cache_key: SHA-256 digest of the normalized URL

        Returns:
            CacheEntry (with raw_payload when stored), or None on miss,
            expiry or storage failure
        """
        if not self.enabled or not self._check_key(cache_key):
            return None

        try:
            entry = self.repository.get(cache_key)
        except StorageError as e:
            logger.error(f"Cache retrieval failed for {cache_key}: {e.message}")
            return None

        if entry is None:
            return None

        if entry.is_expired(self.clock()):
            self.delete(cache_key)
            return None

        try:
            raw_payload = self.payloads.get(cache_key)
        except StorageError as e:
            logger.warning(f"Raw payload unavailable for {cache_key}: {e.message}")
            raw_payload = None

        if raw_payload is not None:
            entry = dataclasses.replace(entry, raw_payload=raw_payload)

        logger.debug(f"Cache hit: {entry.normalized_url} (expires {entry.expires_at.isoformat()})")
        return entry

    def put(
        self,
        cache_key: str,
        normalized_url: str,
        metadata: Dict[str, Any],
        raw_payload: Optional[str] = None,
        envelope: Optional[FetchEnvelope] = None,
    ) -> bool:
        """
        Store an analysis, replacing any entry with the same key.

        The raw payload is stored only when given and no larger than
        ``cache_max_payload_bytes``; otherwise any previous raw payload
        under the key is dropped.

        Returns:
            True if the structured entry was stored
        """
        if not self.enabled:
            return True
        if not self._check_key(cache_key):
            return False

        entry = CacheEntry.build(
            key=cache_key,
            normalized_url=normalized_url,
            metadata=metadata,
            created_at=self.clock(),
            ttl_seconds=self.ttl,
            envelope=envelope,
        )

        try:
            self.repository.upsert(entry)
        except StorageError as e:
            logger.error(f"Cache storage failed for {normalized_url}: {e.message}")
            return False

        store_raw = raw_payload is not None and len(raw_payload.encode("utf-8")) <= self.max_payload_bytes
        try:
            if store_raw:
                self.payloads.put(cache_key, raw_payload)
            else:
                self.payloads.delete(cache_key)
        except StorageError as e:
            logger.warning(f"Raw payload not stored for {normalized_url}: {e.message}")

        logger.debug(f"Cache stored: {normalized_url} (raw={store_raw}, ttl={self.ttl}s)")
        return True

    def has(self, cache_key: str) -> bool:
        """Check for a valid entry without loading its metadata."""
        if not self.enabled or not is_valid_cache_key(cache_key):
            return False
        try:
            return self.repository.exists(cache_key, self.clock())
        except StorageError as e:
            logger.error(f"Cache check failed for {cache_key}: {e.message}")
            return False

    def delete(self, cache_key: str) -> bool:
        """
        Delete both tiers of an entry.

        A failure to remove the raw payload is logged but does not make
        the call fail.

        Returns:
            False only if the structured tier could not be cleared
        """
        if not self.enabled:
            return True
        if not self._check_key(cache_key):
            return False

        try:
            self.repository.delete(cache_key)
        except StorageError as e:
            logger.error(f"Cache deletion failed for {cache_key}: {e.message}")
            return False

        try:
            self.payloads.delete(cache_key)
        except StorageError as e:
            logger.warning(f"Failed to delete raw payload for {cache_key}: {e.message}")

        return True

    def invalidate_url(self, normalized_url: str) -> bool:
        """Delete the entry of a normalized URL."""
        return self.delete(make_cache_key(normalized_url))

    def cleanup(self) -> Dict[str, int]:
        """
        Remove expired entries and orphaned raw payloads.

        Returns:
            Dict with expired_entries, orphaned_payloads and cleanup_time_ms
        """
        result = {"expired_entries": 0, "orphaned_payloads": 0, "cleanup_time_ms": 0}
        if not self.enabled:
            return result

        start_time = time.monotonic()
        now = self.clock()

        try:
            result["expired_entries"] = self.repository.delete_expired(now)
        except StorageError as e:
            logger.error(f"Cache cleanup failed: {e.message}")
            return result

        try:
            live_keys = set(self.repository.keys())
            for key in self.payloads.keys():
                if key in live_keys:
                    continue
                try:
                    if self.payloads.delete(key):
                        result["orphaned_payloads"] += 1
                except StorageError as e:
                    logger.warning(f"Failed to delete orphaned payload {key}: {e.message}")
        except StorageError as e:
            logger.error(f"Orphan payload sweep failed: {e.message}")

        result["cleanup_time_ms"] = int((time.monotonic() - start_time) * 1000)
        logger.info(
            f"Cache cleanup completed: {result['expired_entries']} expired, "
            f"{result['orphaned_payloads']} orphaned payloads"
        )
        return result

    def clear(self) -> Dict[str, int]:
        """Delete every entry in both tiers."""
        result = {"deleted_entries": 0, "deleted_payloads": 0}
        try:
            result["deleted_entries"] = self.repository.clear()
            result["deleted_payloads"] = self.payloads.clear()
        except StorageError as e:
            logger.error(f"Cache clear failed: {e.message}")
        logger.info(f"Cache cleared: {result}")
        return result

    def get_stats(self) -> Dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dict with flag, TTL, payload cap and entry/payload counts
        """
        stats: Dict[str, Any] = {
            "enabled": self.enabled,
            "ttl_seconds": self.ttl,
            "max_payload_bytes": self.max_payload_bytes,
        }
        try:
            total, valid = self.repository.stats(self.clock())
            stats["total_entries"] = total
            stats["valid_entries"] = valid
            stats["payload_count"] = len(self.payloads.keys())
            stats["payload_bytes"] = self.payloads.total_bytes()
            stats["valid_ratio"] = round(valid / total * 100, 2) if total else 0
        except StorageError as e:
            logger.error(f"Failed to get cache stats: {e.message}")
            stats["error"] = "Failed to retrieve statistics"
        return stats

    def expires_in(self, entry: CacheEntry, now: Optional[datetime] = None) -> int:
        """Seconds until ``entry`` expires (0 when already expired)."""
        now = now or self.clock()
        return max(0, int((entry.expires_at - now).total_seconds()))
