"""
Single-flight execution keyed by cache key.

At most one fetch per key runs at a time. Later callers for the same key
attach to the running task, so a cold miss and a background refresh never
race each other for the same entry.
"""

import asyncio
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")

Fetch = Callable[[], Awaitable[T]]


@dataclass
class DeduplicatorStats:
    """Counters for one deduplicator."""

    total: int = 0  # fetches actually started
    deduplicated: int = 0  # callers that attached to a running fetch
    in_flight: int = 0

    @property
    def dedup_rate(self) -> float:
        joined = self.total + self.deduplicated
        return self.deduplicated / joined if joined else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "dedup_rate": f"{self.dedup_rate:.2%}"}


class RequestDeduplicator:
    """
    Map of key -> running task.

    Usage:
        flights = RequestDeduplicator()

        # caller waits for the shared result
        block = await flights.dedupe("block:100", lambda: client.get("/api/blocks/100"))

        # fire and forget, e.g. a background refresh
        task, started = flights.spawn("block:100", refresh)
    """

    def __init__(self, debug: bool = False):
        self._tasks: dict[str, asyncio.Task[Any]] = {}
        self._debug = debug
        self._stats = DeduplicatorStats()

    async def dedupe(self, key: str, fetch: Fetch[T]) -> T:
        """
        Await the fetch for ``key``, starting it only if none is running.

        Each waiter is shielded: cancelling one caller does not cancel the
        shared task that other callers are waiting on.
        """
        task, _ = self.spawn(key, fetch)
        return await asyncio.shield(task)

    def spawn(self, key: str, fetch: Fetch[T]) -> tuple["asyncio.Task[T]", bool]:
        """Return the running task for ``key`` and whether this call created it."""
        running = self._tasks.get(key)
        if running is not None:
            self._stats.deduplicated += 1
            self._trace(f"join {key[:50]}")
            return running, False

        task = asyncio.create_task(self._run(key, fetch))
        self._tasks[key] = task
        self._stats.total += 1
        self._trace(f"start {key[:50]}")
        return task, True

    async def _run(self, key: str, fetch: Fetch[T]) -> T:
        try:
            return await fetch()
        finally:
            # cancel_all() may already have dropped or replaced this key
            if self._tasks.get(key) is asyncio.current_task():
                del self._tasks[key]
            self._trace(f"finish {key[:50]}")

    def is_in_flight(self, key: str) -> bool:
        return key in self._tasks

    def get_in_flight_count(self) -> int:
        return len(self._tasks)

    async def cancel_all(self) -> int:
        """Cancel every running fetch and wait for them to unwind."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"[Deduplicator] Cancelled {len(tasks)} in-flight fetches")
        return len(tasks)

    def get_stats(self) -> DeduplicatorStats:
        self._stats.in_flight = len(self._tasks)
        return self._stats

    def _trace(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[Deduplicator] {message}")
