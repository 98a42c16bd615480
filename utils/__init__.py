"""Utilities package for Meta Tag Analyzer."""

from .url_validator import UrlValidator, normalize_url, make_cache_key, is_valid_cache_key
from .ssrf_guard import SsrfGuard, is_blocked_ip
from .cache import CacheStore
from .rate_limiter import RateLimiter
from .audit import audit_log

__all__ = [
    "UrlValidator",
    "normalize_url",
    "make_cache_key",
    "is_valid_cache_key",
    "SsrfGuard",
    "is_blocked_ip",
    "CacheStore",
    "RateLimiter",
    "audit_log",
]
