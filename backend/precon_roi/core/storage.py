"""
Key-value storage backends for the deck price cache.

The cache only needs string get/set/delete and prefix listing, so any
backend offering those can be plugged in. Backend failures are raised as
StorageUnavailableError; the cache decides what to do with them.
"""
import json
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterator, Optional

import redis
import structlog
from redis.exceptions import RedisError

from precon_roi.core.config import Settings
from precon_roi.core.exceptions import StorageUnavailableError

logger = structlog.get_logger()


class KeyValueStore(ABC):
    """String key-value store with prefix listing."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value or None when the key is absent."""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key. Missing keys are ignored."""
        pass

    @abstractmethod
    def keys(self, prefix: str = "") -> Iterator[str]:
        """Iterate over keys starting with ``prefix``."""
        pass


class MemoryStore(KeyValueStore):
    """
    Process-local store.

    ``quota_bytes`` mimics a browser storage quota: a write that would push
    the total size of keys and values over it is rejected.
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes
        self._data: dict[str, str] = {}

    def _size_with(self, key: str, value: str) -> int:
        size = sum(len(k) + len(v) for k, v in self._data.items() if k != key)
        return size + len(key) + len(value)

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.quota_bytes is not None and self._size_with(key, value) > self.quota_bytes:
            raise StorageUnavailableError(
                f"Storage quota exceeded ({self.quota_bytes} bytes)"
            )
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> Iterator[str]:
        return iter([k for k in self._data if k.startswith(prefix)])


class FileStore(KeyValueStore):
    """
    Store backed by a single JSON document on disk.

    Writes go to a temporary file that then replaces the document, so a
    crash mid-write leaves the previous version intact.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _read(self) -> dict[str, str]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StorageUnavailableError(f"Cannot read {self.path}: {e}") from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Cache file is not valid JSON, starting empty", path=str(self.path))
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _write(self, data: dict[str, str]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(data), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageUnavailableError(f"Cannot write {self.path}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def delete(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def keys(self, prefix: str = "") -> Iterator[str]:
        return iter([k for k in self._read() if k.startswith(prefix)])


class RedisStore(KeyValueStore):
    """Store backed by Redis, for sharing cached prices between processes."""

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def get(self, key: str) -> Optional[str]:
        try:
            value = self.client.get(key)
        except RedisError as e:
            raise StorageUnavailableError(f"Redis get failed: {e}") from e
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, key: str, value: str) -> None:
        try:
            self.client.set(key, value)
        except RedisError as e:
            raise StorageUnavailableError(f"Redis set failed: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except RedisError as e:
            raise StorageUnavailableError(f"Redis delete failed: {e}") from e

    def keys(self, prefix: str = "") -> Iterator[str]:
        try:
            found = list(self.client.scan_iter(match=f"{prefix}*"))
        except RedisError as e:
            raise StorageUnavailableError(f"Redis scan failed: {e}") from e
        return iter([k.decode("utf-8") if isinstance(k, bytes) else k for k in found])


def create_store(config: Settings) -> Optional[KeyValueStore]:
    """
    Build the configured backend.

    Returns None for ``none`` so callers run without a cache.
    """
    backend = config.price_cache_backend.lower()
    if backend == "none":
        return None
    if backend == "file":
        return FileStore(config.price_cache_file)
    if backend == "redis":
        return RedisStore.from_url(config.redis_url)
    if backend != "memory":
        logger.warning("Unknown price cache backend, using memory", backend=backend)
    return MemoryStore()
