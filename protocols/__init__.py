"""Storage interfaces.

Any class implementing the required methods satisfies a protocol;
no inheritance needed. The in-memory and SQLite backends in
``repositories`` are interchangeable behind these interfaces.
"""

from .storage import (
    CacheRepository,
    HistoryRepository,
    PayloadRepository,
    RequestLogRepository,
)

__all__ = [
    "CacheRepository",
    "HistoryRepository",
    "PayloadRepository",
    "RequestLogRepository",
]
