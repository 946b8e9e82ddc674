"""
Bounded in-memory LRU cache for per-card lookups.
"""
from collections import OrderedDict
from typing import Generic, Hashable, Optional, TypeVar

import structlog

logger = structlog.get_logger()

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class LRUCache(Generic[K, V]):
    """
    Size-bounded cache with least-recently-used eviction.

    Entries never expire on their own; the owner decides when to clear.
    """

    def __init__(self, max_size: int = 5000):
        """
        Initialize cache.

        Args:
            max_size: Maximum number of items to cache.
        """
        self.max_size = max_size
        self._cache: OrderedDict[K, V] = OrderedDict()

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, key: K) -> bool:
        return key in self._cache

    def get(self, key: K) -> Optional[V]:
        """
        Get value from cache.

        Args:
            key: Cache key.

        Returns:
            Cached value or None if not found.
        """
        if key not in self._cache:
            return None

        # Move to end (most recently used)
        self._cache.move_to_end(key)
        return self._cache[key]

    def set(self, key: K, value: V) -> None:
        """
        Set value in cache.

        Args:
            key: Cache key.
            value: Value to cache.
        """
        if key in self._cache:
            del self._cache[key]
        elif len(self._cache) >= self.max_size:
            evicted, _ = self._cache.popitem(last=False)  # Remove oldest
            logger.debug("LRU cache eviction", key=str(evicted))

        self._cache[key] = value

    def delete(self, key: K) -> None:
        """Delete a specific key from cache."""
        if key in self._cache:
            del self._cache[key]

    def clear(self) -> None:
        """Clear all cached items."""
        self._cache.clear()
