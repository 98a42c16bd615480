"""
File-backed raw cache tier.

Each payload is stored as ``<cache_key>.cache`` in one directory and
written atomically (temp file, then ``os.replace``).
"""

import logging
import os
import tempfile
from typing import List, Optional

from models.errors import InvalidCacheKey, StorageError
from utils.url_validator import is_valid_cache_key

logger = logging.getLogger(__name__)

PAYLOAD_SUFFIX = ".cache"


class FilePayloadRepository:
    """
    Raw payload store on the local filesystem.

    Args:
        directory: Directory holding the payload files (created if missing)
    """

    def __init__(self, directory: str):
        self.directory = directory
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Could not create payload directory: {e}", {"path": directory}) from e

    def _path(self, key: str) -> str:
        # Only digest-format keys ever reach the filesystem
        if not is_valid_cache_key(key):
            raise InvalidCacheKey("Invalid cache key format", {"key": key[:80]})
        return os.path.join(self.directory, key + PAYLOAD_SUFFIX)

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return fh.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Could not read payload: {e}", {"key": key}) from e

    def put(self, key: str, payload: str) -> None:
        path = self._path(key)
        try:
            fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise StorageError(f"Could not write payload: {e}", {"key": key}) from e

    def delete(self, key: str) -> bool:
        path = self._path(key)
        try:
            os.unlink(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Could not delete payload: {e}", {"key": key}) from e

    def keys(self) -> List[str]:
        try:
            names = os.listdir(self.directory)
        except OSError as e:
            raise StorageError(f"Could not list payloads: {e}") from e
        return [
            name[: -len(PAYLOAD_SUFFIX)]
            for name in names
            if name.endswith(PAYLOAD_SUFFIX) and is_valid_cache_key(name[: -len(PAYLOAD_SUFFIX)])
        ]

    def total_bytes(self) -> int:
        total = 0
        for key in self.keys():
            try:
                total += os.path.getsize(os.path.join(self.directory, key + PAYLOAD_SUFFIX))
            except OSError:
                continue
        return total

    def clear(self) -> int:
        count = 0
        for key in self.keys():
            if self.delete(key):
                count += 1
        return count
