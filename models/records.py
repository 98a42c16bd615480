"""
Internal records passed between the pipeline components.

These are plain dataclasses. API contracts live in models/schemas.py.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class RequestRecord:
    """One admitted request, used only in aggregate by the rate limiter."""
    client_identity: str
    target_url: str
    user_agent: Optional[str]
    timestamp: datetime


@dataclass(frozen=True)
class RateDecision:
    """
    Admission decision for one client identity.

    Attributes:
        allowed: Whether the request may proceed
        remaining: Requests left in the current window
        limit: Configured requests per window
        reset_at: Start of the next calendar hour (UTC)
        current_count: Requests counted in the trailing window
        degraded: True when the limiter failed open on a storage error
    """
    allowed: bool
    remaining: int
    limit: int
    reset_at: datetime
    current_count: int = 0
    degraded: bool = False

    def seconds_until_reset(self, now: datetime) -> int:
        return max(0, int((self.reset_at - now).total_seconds()))


@dataclass(frozen=True)
class FetchEnvelope:
    """Result of a guarded page fetch."""
    content: str
    final_url: str
    http_status: int
    content_type: str
    content_length: int
    fetch_duration_ms: int
    redirect_count: int
    headers: Dict[str, str] = field(default_factory=dict)
    encoding: Optional[str] = None


@dataclass(frozen=True)
class CacheEntry:
    """
    Cached analysis for one normalized URL.

    ``raw_payload`` is only filled on read when the raw tier holds a
    payload for the same key.
    """
    key: str
    normalized_url: str
    metadata: Dict[str, Any]
    final_url: str
    http_status: Optional[int]
    content_type: Optional[str]
    content_length: Optional[int]
    created_at: datetime
    ttl_seconds: int
    expires_at: datetime
    raw_payload: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    @classmethod
    def build(
        cls,
        key: str,
        normalized_url: str,
        metadata: Dict[str, Any],
        created_at: datetime,
        ttl_seconds: int,
        envelope: Optional[FetchEnvelope] = None,
    ) -> "CacheEntry":
        return cls(
            key=key,
            normalized_url=normalized_url,
            metadata=metadata,
            final_url=envelope.final_url if envelope else normalized_url,
            http_status=envelope.http_status if envelope else None,
            content_type=envelope.content_type if envelope else None,
            content_length=envelope.content_length if envelope else None,
            created_at=created_at,
            ttl_seconds=ttl_seconds,
            expires_at=created_at + timedelta(seconds=ttl_seconds),
        )


@dataclass(frozen=True)
class HistoryRecord:
    """One row of the optional analysis history."""
    client_identity: str
    url: str
    final_url: Optional[str]
    http_status: Optional[int]
    title: Optional[str]
    description: Optional[str]
    og_title: Optional[str]
    og_description: Optional[str]
    cache_hit: bool
    duration_ms: int
    created_at: datetime
