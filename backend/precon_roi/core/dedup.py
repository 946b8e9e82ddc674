"""
In-flight request deduplication.

Concurrent callers asking for the same key share a single upstream call.
"""
import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog

from precon_roi.core.exceptions import QueueFullError

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass
class InflightEntry:
    """A shared call plus the number of callers currently awaiting it."""
    task: Optional[asyncio.Task] = None
    waiters: int = 0


class RequestDeduplicator:
    """
    Collapse concurrent identical requests into one.

    Usage:
        dedup = RequestDeduplicator()

        data = await dedup.run(url, lambda: fetcher.get_json(url))

    For N callers issuing ``run(key, producer)`` while a call for ``key`` is
    pending, ``producer`` is invoked once and every caller receives the same
    result or the same exception. The entry is dropped as soon as the call
    settles, so the next ``run`` for that key starts fresh.

    The number of distinct keys in flight is capped at ``hard_limit``; new
    keys beyond it fail immediately with ``QueueFullError``.
    """

    def __init__(self, warn_threshold: int = 100, hard_limit: int = 500):
        self.warn_threshold = warn_threshold
        self.hard_limit = hard_limit
        self._inflight: dict[str, InflightEntry] = {}

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    def waiters(self, key: str) -> int:
        entry = self._inflight.get(key)
        return entry.waiters if entry else 0

    def is_inflight(self, key: str) -> bool:
        return key in self._inflight

    def clear(self) -> None:
        """Forget all in-flight entries. Pending calls keep running."""
        self._inflight.clear()

    async def run(self, key: str, producer: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``producer`` for ``key`` unless an identical call is already in flight.

        Args:
            key: Opaque request key (usually the request URL).
            producer: Zero-argument callable returning an awaitable.

        Returns:
            The shared result.

        Raises:
            QueueFullError: When ``hard_limit`` distinct keys are in flight.
        """
        entry = self._inflight.get(key)

        if entry is None:
            # Size check and insert must not be separated by an await
            size = len(self._inflight)
            if size >= self.hard_limit:
                logger.error(
                    "Deduplicator queue full",
                    depth=size,
                    hard_limit=self.hard_limit,
                    key=key,
                )
                raise QueueFullError(
                    f"Deduplicator queue full ({size}/{self.hard_limit})"
                )
            if size >= self.warn_threshold and size % 10 == 0:
                logger.warning(
                    "Deduplicator queue depth high",
                    depth=size,
                    hard_limit=self.hard_limit,
                )

            entry = InflightEntry()
            entry.task = asyncio.ensure_future(self._execute(key, entry, producer))
            self._inflight[key] = entry

        entry.waiters += 1
        try:
            # Shield so a cancelled waiter doesn't cancel the shared call
            return await asyncio.shield(entry.task)
        finally:
            entry.waiters -= 1

    async def _execute(
        self,
        key: str,
        entry: InflightEntry,
        producer: Callable[[], Awaitable[Any]],
    ) -> Any:
        try:
            return await producer()
        finally:
            if self._inflight.get(key) is entry:
                del self._inflight[key]
