"""
In-process response cache.

Entries are fresh for their TTL, then servable as stale for an optional
stale-while-revalidate window, then gone. `CacheManager.wrap` is the main
entry point: fetch-through on a miss, serve-and-refresh on a stale hit, one
fetch per key at a time in both cases.
"""

import asyncio
import functools
import hashlib
import re
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Generic, Iterable, TypeVar
from urllib.parse import urlencode

from loguru import logger

from gateway.services.deduplicator import RequestDeduplicator
from gateway.settings import global_settings

T = TypeVar("T")

Duration = timedelta | float | int

# Keys longer than this are replaced by a digest
MAX_KEY_LENGTH = 200


def as_timedelta(value: Duration) -> timedelta:
    """Accept a timedelta or a number of seconds."""
    if isinstance(value, timedelta):
        return value
    return timedelta(seconds=value)


@dataclass(frozen=True)
class CachePolicy:
    """How long a value stays fresh and how long it may be served stale."""

    ttl: timedelta
    stale_while_revalidate: timedelta | None = None
    tags: tuple[str, ...] = ()


@dataclass
class CacheEntry(Generic[T]):
    data: T
    timestamp: datetime
    ttl: timedelta
    stale_while_revalidate: timedelta | None = None
    tags: frozenset[str] = field(default_factory=frozenset)

    def age(self, now: datetime | None = None) -> timedelta:
        return (now or datetime.now()) - self.timestamp

    def is_fresh(self, now: datetime | None = None) -> bool:
        return self.age(now) < self.ttl

    def is_stale(self, now: datetime | None = None) -> bool:
        """Past the TTL but still inside the revalidate window."""
        if not self.stale_while_revalidate:
            return False
        return self.ttl <= self.age(now) < self.ttl + self.stale_while_revalidate

    def is_valid(self, now: datetime | None = None) -> bool:
        now = now or datetime.now()
        return self.is_fresh(now) or self.is_stale(now)


@dataclass
class CacheResult(Generic[T]):
    """A servable value and whether it is past its TTL."""

    data: T
    is_stale: bool


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    stale_hits: int = 0
    evictions: int = 0
    refreshes: int = 0
    refresh_failures: int = 0
    in_flight: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        """Fresh and stale hits over all lookups."""
        served = self.hits + self.stale_hits
        lookups = served + self.misses
        return served / lookups if lookups else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "hit_rate": f"{self.hit_rate:.2%}"}


class CacheManager:
    """
    Async key/value cache with TTL, stale-while-revalidate and tags.

    Usage:
        cache = CacheManager(max_size=1000)

        validators = await cache.wrap(
            "validators:lumera",
            lambda: client.get("/api/validators", CallOptions(params={"chain": "lumera"})),
            policy=SHORT_CACHE,
        )

    When full, the entry with the oldest write time is evicted.
    """

    def __init__(
        self,
        prefix: str = "",
        max_size: int = 1000,
        default_ttl: timedelta = timedelta(minutes=5),
        debug: bool = False,
    ):
        self._entries: dict[str, CacheEntry[Any]] = {}
        self._prefix = prefix
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._debug = debug
        self._lock = asyncio.Lock()
        self._stats = CacheStats()
        self._flights = RequestDeduplicator(debug=debug)

    def generate_key(self, url: str, params: dict[str, Any] | None = None) -> str:
        """Build a stable key from a path and its query params."""
        key = f"{url}?{urlencode(sorted(params.items()))}" if params else url
        if len(key) > MAX_KEY_LENGTH:
            key = hashlib.sha1(key.encode()).hexdigest()[:16]
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> CacheResult[Any] | None:
        """
        Look up a key.

        Returns None for a miss or an entry past its revalidate window; such
        an entry is dropped on the way out.
        """
        async with self._lock:
            entry = self._entries.get(key)
            now = datetime.now()

            if entry is not None and entry.is_fresh(now):
                self._stats.hits += 1
                self._trace(f"hit {key[:50]}")
                return CacheResult(entry.data, is_stale=False)

            if entry is not None and entry.is_stale(now):
                self._stats.stale_hits += 1
                self._trace(f"stale {key[:50]}")
                return CacheResult(entry.data, is_stale=True)

            if entry is not None:
                del self._entries[key]
            self._stats.misses += 1
            self._trace(f"miss {key[:50]}")
            return None

    async def set(
        self,
        key: str,
        data: Any,
        ttl: Duration | None = None,
        tags: Iterable[str] | None = None,
        stale_while_revalidate: Duration | None = None,
    ) -> None:
        """
        Store a value, stamping it with the current time.

        Args:
            key: Cache key
            data: Value to store
            ttl: Freshness period, the manager default when omitted
            tags: Labels for invalidate_by_tag()
            stale_while_revalidate: How long past the TTL the value may be served

        Raises:
            ValueError: ttl is negative
        """
        ttl = self._default_ttl if ttl is None else as_timedelta(ttl)
        if ttl < timedelta(0):
            raise ValueError(f"Cache TTL must be >= 0, got {ttl}")
        swr = None if stale_while_revalidate is None else as_timedelta(stale_while_revalidate)

        async with self._lock:
            if key not in self._entries and len(self._entries) >= self._max_size:
                self._evict_oldest()
            self._entries[key] = CacheEntry(
                data=data,
                timestamp=datetime.now(),
                ttl=ttl,
                stale_while_revalidate=swr,
                tags=frozenset(tags or ()),
            )
        self._trace(f"set {key[:50]} ttl={ttl.total_seconds()}s")

    async def wrap(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        ttl: Duration | None = None,
        policy: CachePolicy | None = None,
    ) -> T:
        """
        Return the cached value for key, fetching and storing it on a miss.

        A stale hit is returned immediately and triggers one background
        refresh. Concurrent cold misses for the same key share one fetch,
        and a failed cold fetch raises to every caller waiting on it.
        """
        if ttl is None:
            ttl = policy.ttl if policy else self._default_ttl

        cached = await self.get(key)
        if cached is None:
            return await self._flights.dedupe(
                key, lambda: self._fetch_and_store(key, fetcher, ttl, policy)
            )

        if cached.is_stale:
            self._refresh_in_background(key, fetcher, ttl, policy)
        return cached.data

    async def _fetch_and_store(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        ttl: Duration,
        policy: CachePolicy | None,
    ) -> T:
        data = await fetcher()
        await self.set(
            key,
            data,
            ttl,
            tags=policy.tags if policy else None,
            stale_while_revalidate=policy.stale_while_revalidate if policy else None,
        )
        return data

    def _refresh_in_background(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        ttl: Duration,
        policy: CachePolicy | None,
    ) -> None:
        task, started = self._flights.spawn(
            key, lambda: self._fetch_and_store(key, fetcher, ttl, policy)
        )
        if not started:
            return
        self._stats.refreshes += 1
        self._trace(f"refresh {key[:50]}")
        task.add_done_callback(functools.partial(self._on_refresh_done, key))

    def _on_refresh_done(self, key: str, task: asyncio.Task) -> None:
        # The stale entry stays in place until its window closes
        if task.cancelled() or task.exception() is None:
            return
        self._stats.refresh_failures += 1
        logger.error(
            f"[CacheManager] Background refresh failed for key: {key}: {task.exception()}"
        )

    async def delete(self, key: str) -> bool:
        async with self._lock:
            removed = self._entries.pop(key, None) is not None
        if removed:
            self._trace(f"delete {key[:50]}")
        return removed

    def has(self, key: str) -> bool:
        """True if an entry exists, servable or not."""
        return key in self._entries

    async def invalidate(self, pattern: str) -> int:
        """
        Drop every key matching a regular expression.

        Args:
            pattern: Regex searched against every key

        Returns:
            Number of entries removed
        """
        regex = re.compile(pattern)
        removed = await self._drop_where(lambda key, entry: bool(regex.search(key)))
        logger.info(f"[CacheManager] Invalidated {removed} entries matching {pattern!r}")
        return removed

    async def invalidate_by_tag(self, tag: str) -> int:
        """Drop every entry carrying tag."""
        removed = await self._drop_where(lambda key, entry: tag in entry.tags)
        logger.info(f"[CacheManager] Invalidated {removed} entries tagged {tag!r}")
        return removed

    async def clear(self) -> None:
        async with self._lock:
            removed = len(self._entries)
            self._entries.clear()
        logger.info(f"[CacheManager] Cleared {removed} entries")

    async def cleanup_expired(self) -> int:
        """Drop entries past their revalidate window."""
        now = datetime.now()
        removed = await self._drop_where(lambda key, entry: not entry.is_valid(now))
        if removed:
            self._trace(f"cleanup removed {removed}")
        return removed

    async def close(self) -> None:
        """Cancel pending fetches and background refreshes."""
        await self._flights.cancel_all()

    async def _drop_where(self, predicate: Callable[[str, CacheEntry[Any]], bool]) -> int:
        async with self._lock:
            doomed = [k for k, entry in self._entries.items() if predicate(k, entry)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def _evict_oldest(self) -> None:
        # Caller holds the lock
        if not self._entries:
            return
        oldest = min(self._entries, key=lambda k: self._entries[k].timestamp)
        del self._entries[oldest]
        self._stats.evictions += 1
        self._trace(f"evict {oldest[:50]}")

    def stats(self) -> CacheStats:
        """Snapshot of the counters; mutating it does not touch the cache."""
        self._stats.size = len(self._entries)
        self._stats.max_size = self._max_size
        self._stats.in_flight = self._flights.get_in_flight_count()
        return replace(self._stats)

    def _trace(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[CacheManager] {message}")


_global_cache: CacheManager | None = None


def get_cache_manager() -> CacheManager:
    """Process-wide cache sized from settings."""
    global _global_cache
    if _global_cache is None:
        _global_cache = CacheManager(max_size=global_settings.cache_max_size)
    return _global_cache
