"""
Per-client rate limiter for the analysis API.

Admission counts the client's requests in a trailing window (default:
the last hour). The advertised reset time is the next calendar-hour
boundary so users see a predictable reset.

Bookkeeping failures never block a request: a failed check fails open
and a failed record is logged and ignored.
"""

import ipaddress
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from config import Settings, settings as default_settings
from models.errors import StorageError
from models.records import RateDecision, RequestRecord
from protocols import RequestLogRepository
from utils.clock import Clock, next_hour_boundary, utc_now

logger = logging.getLogger(__name__)

STATS_SCAN_LIMIT = 100000


def identity_matches(client_identity: str, entry: str) -> bool:
    """
    Check a client identity against one whitelist entry.

    Entries may be a single IP, a CIDR range, or any literal identity.
    """
    if client_identity == entry:
        return True
    try:
        address = ipaddress.ip_address(client_identity)
        network = ipaddress.ip_network(entry, strict=False)
    except ValueError:
        return False
    return address.version == network.version and address in network


def format_duration(seconds: int) -> str:
    """Format a countdown as ``1h 5m``, ``5m 30s`` or ``30s``."""
    hours, remainder = divmod(max(0, seconds), 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


class RateLimiter:
    """
    Sliding-window request limiter keyed by client identity.

    Args:
        repository: Request record store
        settings: Application settings (limit, window, retention, whitelist)
        clock: Time source, injectable for tests
    """

    def __init__(
        self,
        repository: RequestLogRepository,
        settings: Optional[Settings] = None,
        clock: Clock = utc_now,
    ):
        self.repository = repository
        self.settings = settings or default_settings
        self.clock = clock
        self.limit = self.settings.rate_limit_per_hour
        self.window = timedelta(seconds=self.settings.rate_limit_window_seconds)
        self.retention = timedelta(hours=self.settings.rate_limit_retention_hours)

    @property
    def enabled(self) -> bool:
        return self.settings.enable_rate_limiting

    def _full_quota(self, now: datetime, degraded: bool = False) -> RateDecision:
        return RateDecision(
            allowed=True,
            remaining=self.limit,
            limit=self.limit,
            reset_at=next_hour_boundary(now),
            current_count=0,
            degraded=degraded,
        )

    def is_whitelisted(self, client_identity: str) -> bool:
        """Check if a client bypasses rate limiting."""
        return any(
            identity_matches(client_identity, entry)
            for entry in self.settings.rate_limit_whitelist
        )

    def check_limit(self, client_identity: str) -> RateDecision:
        """
        Check whether a client may make another request.

        Args:
            client_identity: Client IP address or other identity

        Returns:
            RateDecision for the client
        """
        now = self.clock()
        if not self.enabled or self.is_whitelisted(client_identity):
            return self._full_quota(now)

        try:
            current_count = self.repository.count_since(client_identity, now - self.window)
        except StorageError as e:
            logger.warning(f"Rate limit check failed for {client_identity}, allowing request: {e.message}")
            return self._full_quota(now, degraded=True)

        decision = RateDecision(
            allowed=current_count < self.limit,
            remaining=max(0, self.limit - current_count),
            limit=self.limit,
            reset_at=next_hour_boundary(now),
            current_count=current_count,
        )

        if not decision.allowed:
            logger.warning(
                f"Rate limit exceeded for {client_identity}: "
                f"{current_count}/{self.limit} requests in window"
            )
        return decision

    def record_request(
        self,
        client_identity: str,
        target_url: str,
        user_agent: Optional[str] = None,
    ) -> bool:
        """
        Record an admitted request.

        Returns:
            True if recorded (or limiting disabled), False on storage failure
        """
        if not self.enabled:
            return True

        record = RequestRecord(
            client_identity=client_identity,
            target_url=target_url,
            user_agent=user_agent,
            timestamp=self.clock(),
        )
        try:
            self.repository.add(record)
        except StorageError as e:
            logger.error(f"Failed to record request for {client_identity}: {e.message}")
            return False

        logger.debug(f"Request recorded for rate limiting: {client_identity} {target_url}")
        return True

    def check_and_record(
        self,
        client_identity: str,
        target_url: str,
        user_agent: Optional[str] = None,
    ) -> RateDecision:
        """
        Check the limit and, if allowed, record the request.

        The returned ``remaining`` is decremented locally after a
        successful record instead of re-reading storage, so concurrent
        requests from one client may see slightly stale values.
        """
        decision = self.check_limit(client_identity)
        if not decision.allowed:
            return decision

        # Whitelisted and disabled clients are not counted
        if not self.enabled or self.is_whitelisted(client_identity):
            return decision

        if self.record_request(client_identity, target_url, user_agent):
            return RateDecision(
                allowed=True,
                remaining=max(0, decision.remaining - 1),
                limit=decision.limit,
                reset_at=decision.reset_at,
                current_count=decision.current_count + 1,
                degraded=decision.degraded,
            )
        return decision

    def reset_limit(self, client_identity: str) -> bool:
        """Forget all recorded requests of one client."""
        try:
            deleted = self.repository.delete_for(client_identity)
        except StorageError as e:
            logger.error(f"Failed to reset rate limit for {client_identity}: {e.message}")
            return False
        logger.info(f"Rate limit reset for {client_identity} ({deleted} records)")
        return True

    def seconds_until_reset(self) -> int:
        now = self.clock()
        return max(0, int((next_hour_boundary(now) - now).total_seconds()))

    def cleanup(self) -> int:
        """
        Delete request records older than the retention horizon.

        Returns:
            Number of records deleted
        """
        try:
            deleted = self.repository.delete_before(self.clock() - self.retention)
        except StorageError as e:
            logger.error(f"Rate limiter cleanup failed: {e.message}")
            return 0
        if deleted > 0:
            logger.info(f"Rate limiter cleanup completed: {deleted} records deleted")
        return deleted

    def get_stats(self) -> Dict[str, Any]:
        """
        Get rate limiting statistics for the current window.

        Returns:
            Dict with limits, request totals and the busiest clients
        """
        stats: Dict[str, Any] = {
            "enabled": self.enabled,
            "limit_per_hour": self.limit,
            "time_window_seconds": int(self.window.total_seconds()),
        }
        if not self.enabled:
            return stats

        try:
            counts = self.repository.top_since(self.clock() - self.window, limit=STATS_SCAN_LIMIT)
        except StorageError as e:
            logger.error(f"Failed to get rate limiter stats: {e.message}")
            stats["error"] = "Failed to retrieve statistics"
            return stats

        stats["requests_last_window"] = sum(count for _, count in counts)
        stats["unique_clients_last_window"] = len(counts)
        stats["top_clients"] = [
            {"client": client, "request_count": count} for client, count in counts[:10]
        ]
        limited = [
            {"client": client, "request_count": count}
            for client, count in counts
            if count >= self.limit
        ]
        stats["rate_limited_clients"] = limited
        stats["rate_limited_count"] = len(limited)
        return stats
