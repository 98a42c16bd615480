"""Time helpers shared by the cache and the rate limiter."""

from datetime import datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def next_hour_boundary(now: datetime) -> datetime:
    """Start of the calendar hour following ``now``."""
    return now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)


def to_epoch(value: datetime) -> float:
    return value.timestamp()


def from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)
