"""Repository layer for data access.

Backends are protocol-based (structural typing), not inheritance-based:
any class implementing the methods in ``protocols.storage`` can be
swapped in.
"""

from dataclasses import dataclass
from typing import Optional

from config import Settings, settings as default_settings
from protocols import CacheRepository, HistoryRepository, PayloadRepository, RequestLogRepository

from .file_payload_repository import FilePayloadRepository
from .memory_repository import (
    MemoryCacheRepository,
    MemoryHistoryRepository,
    MemoryPayloadRepository,
    MemoryRequestLogRepository,
)
from .sqlite_repository import (
    SqliteCacheRepository,
    SqliteDatabase,
    SqliteHistoryRepository,
    SqlitePayloadRepository,
    SqliteRequestLogRepository,
)


@dataclass
class Repositories:
    cache: CacheRepository
    payloads: PayloadRepository
    requests: RequestLogRepository
    history: HistoryRepository
    database: Optional[SqliteDatabase] = None

    def close(self) -> None:
        if self.database is not None:
            self.database.close()


def build_repositories(settings: Optional[Settings] = None) -> Repositories:
    """
    Select storage backends from settings.

    ``storage_backend`` picks memory or SQLite for the three tables;
    ``payload_dir`` moves the raw tier onto the filesystem.
    """
    settings = settings or default_settings

    if settings.storage_backend == "sqlite":
        db = SqliteDatabase(settings.sqlite_path)
        payloads = (
            FilePayloadRepository(settings.payload_dir)
            if settings.payload_dir
            else SqlitePayloadRepository(db)
        )
        return Repositories(
            cache=SqliteCacheRepository(db),
            payloads=payloads,
            requests=SqliteRequestLogRepository(db),
            history=SqliteHistoryRepository(db),
            database=db,
        )

    payloads = (
        FilePayloadRepository(settings.payload_dir)
        if settings.payload_dir
        else MemoryPayloadRepository(maxsize=settings.cache_max_size)
    )
    return Repositories(
        cache=MemoryCacheRepository(maxsize=settings.cache_max_size),
        payloads=payloads,
        requests=MemoryRequestLogRepository(),
        history=MemoryHistoryRepository(),
    )


__all__ = [
    "Repositories",
    "build_repositories",
    "FilePayloadRepository",
    "MemoryCacheRepository",
    "MemoryHistoryRepository",
    "MemoryPayloadRepository",
    "MemoryRequestLogRepository",
    "SqliteCacheRepository",
    "SqliteDatabase",
    "SqliteHistoryRepository",
    "SqlitePayloadRepository",
    "SqliteRequestLogRepository",
]
