"""
Result cache for AI calls.

Keyed in-memory store with TTL expiry and bounded size, evicting by LRU or
LFU. One named instance per logical service, held by a CacheRegistry.
"""

import asyncio
import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, Iterator, List, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()


class EvictionStrategy(Enum):
    """Which entry to drop when the cache is full."""
    LRU = "lru"  # Oldest last access
    LFU = "lfu"  # Fewest accesses


@dataclass(frozen=True)
class CacheConfig:
    """Per-service cache configuration, fixed for the process lifetime."""
    ttl_seconds: float
    max_entries: int
    strategy: EvictionStrategy = EvictionStrategy.LRU

    def __post_init__(self):
        """Validate cache limits."""
        if self.ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        if self.max_entries <= 0:
            raise ValueError("max_entries must be > 0")


@dataclass
class CacheEntry(Generic[T]):
    """A cached value with its access bookkeeping."""
    key: str
    value: T
    created_at: float
    expires_at: float
    access_count: int = 0
    last_accessed_at: float = 0.0

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


@dataclass(frozen=True)
class CacheStats:
    """Hit/miss counters for one cache."""
    hits: int
    misses: int
    size: int
    hit_rate: float
    total_requests: int

    def to_dict(self) -> dict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "size": self.size,
            "hit_rate": self.hit_rate,
            "total_requests": self.total_requests,
        }


CACHE_PRESETS: Dict[str, CacheConfig] = {
    "short": CacheConfig(ttl_seconds=3600, max_entries=100, strategy=EvictionStrategy.LRU),
    "standard": CacheConfig(ttl_seconds=21600, max_entries=500, strategy=EvictionStrategy.LRU),
    "long": CacheConfig(ttl_seconds=86400, max_entries=1000, strategy=EvictionStrategy.LFU),
}


class CacheManager(Generic[T]):
    """TTL cache with LRU/LFU eviction.

    Expired entries are dropped lazily on access and in bulk by ``cleanup``.
    All map mutations happen under a lock so one instance can be shared by
    concurrent requests.
    """

    def __init__(self, config: CacheConfig, clock: Callable[[], float] = time.time):
        """Initialize an empty cache.

        Args:
            config: TTL, capacity and eviction strategy
            clock: Returns the current time in seconds
        """
        self.config = config
        self._clock = clock
        self._entries: Dict[str, CacheEntry[T]] = {}
        self._lock = threading.Lock()
        self._inflight: Dict[str, "asyncio.Task"] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value, or ``default`` if the key is unknown or expired.

        A hit updates the entry's access count and last access time. Unknown
        and expired keys both count as misses; expired entries are removed.
        """
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)

            if entry is None:
                self.misses += 1
                return default

            if entry.is_expired(now):
                del self._entries[key]
                self.misses += 1
                return default

            entry.access_count += 1
            entry.last_accessed_at = now
            self.hits += 1
            return entry.value

    def set(self, key: str, value: T, ttl: Optional[float] = None) -> None:
        """Insert or overwrite an entry with a fresh expiry.

        Args:
            key: Cache key
            value: Value to store
            ttl: TTL override in seconds, config TTL when omitted
        """
        with self._lock:
            now = self._clock()
            ttl_seconds = ttl if ttl is not None else self.config.ttl_seconds

            if key not in self._entries and len(self._entries) >= self.config.max_entries:
                self._evict()

            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                created_at=now,
                expires_at=now + ttl_seconds,
                access_count=0,
                last_accessed_at=now
            )

    def has(self, key: str) -> bool:
        """Check for a live entry without touching hit/miss counters."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return False
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        """Drop all entries and reset the hit/miss counters."""
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def _evict(self) -> None:
        # Caller holds the lock. min() keeps the first entry on ties, which
        # is the oldest insertion.
        if not self._entries:
            return

        if self.config.strategy == EvictionStrategy.LRU:
            victim = min(self._entries.values(), key=lambda e: e.last_accessed_at)
        else:
            victim = min(self._entries.values(), key=lambda e: e.access_count)

        del self._entries[victim.key]
        logger.debug("Evicted cache entry %s (%s)", victim.key, self.config.strategy.value)

    def cleanup(self) -> int:
        """Remove every expired entry.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def stats(self) -> CacheStats:
        with self._lock:
            total_requests = self.hits + self.misses
            return CacheStats(
                hits=self.hits,
                misses=self.misses,
                size=len(self._entries),
                hit_rate=self.hits / total_requests if total_requests > 0 else 0.0,
                total_requests=total_requests
            )

    def entries(self) -> Iterator[Tuple[str, CacheEntry[T]]]:
        """Snapshot of (key, entry) pairs."""
        with self._lock:
            return iter(list(self._entries.items()))

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[T]],
        ttl: Optional[float] = None,
        should_cache: Optional[Callable[[T], bool]] = None
    ) -> T:
        """Return the cached value or compute it once.

        Concurrent callers asking for the same missing key share a single
        ``compute``. It runs in its own task, so cancelling one caller does
        not cancel it for the others.

        Args:
            key: Cache key
            compute: Coroutine function producing the value
            ttl: TTL override in seconds
            should_cache: Predicate deciding whether a computed value is stored

        Raises:
            Whatever ``compute`` raises; nothing is cached in that case.
        """
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._compute_and_store(key, compute, ttl, should_cache))
            task.add_done_callback(_consume_exception)
            self._inflight[key] = task
        else:
            logger.debug("Joining in-flight computation for %s", key)

        # A cancelled caller stops waiting; the computation keeps running for the others
        return await asyncio.shield(task)

    async def _compute_and_store(
        self,
        key: str,
        compute: Callable[[], Awaitable[T]],
        ttl: Optional[float],
        should_cache: Optional[Callable[[T], bool]]
    ) -> T:
        try:
            value = await compute()
        finally:
            self._inflight.pop(key, None)

        if should_cache is None or should_cache(value):
            self.set(key, value, ttl)
        return value


def _consume_exception(task: "asyncio.Task") -> None:
    # Every waiter may have been cancelled; retrieve the outcome so it is not reported as lost
    if not task.cancelled():
        task.exception()


async def cached_or_compute(
    cache: CacheManager[T],
    key: str,
    compute: Callable[[], Awaitable[T]],
    ttl: Optional[float] = None,
    should_cache: Optional[Callable[[T], bool]] = None
) -> T:
    """Module-level form of ``CacheManager.get_or_compute``."""
    return await cache.get_or_compute(key, compute, ttl=ttl, should_cache=should_cache)


def generate_cache_key(service: str, params: Dict[str, Any]) -> str:
    """Build a content-addressed cache key.

    Parameters are serialized as JSON with keys sorted at every level, so
    the key does not depend on dict insertion order. List order is kept.

    Args:
        service: Service name, also used as the key prefix
        params: JSON-serializable request parameters

    Returns:
        ``"{service}:{sha256 hex digest}"``
    """
    params_string = json.dumps(params, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    digest = hashlib.sha256(f"{service}:{params_string}".encode("utf-8")).hexdigest()
    return f"{service}:{digest}"


class CacheRegistry:
    """Holds exactly one named cache per service.

    Caches are created lazily on first use. The registry is passed around
    explicitly instead of living in a module global.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._caches: Dict[str, CacheManager[Any]] = {}
        self._lock = threading.Lock()

    def get(self, service: str, config: Optional[CacheConfig] = None) -> CacheManager[Any]:
        """Get or create the cache for a service.

        The config only applies when the cache is created; later calls get
        the existing instance unchanged.
        """
        with self._lock:
            if service not in self._caches:
                self._caches[service] = CacheManager(config or CACHE_PRESETS["standard"], clock=self._clock)
            return self._caches[service]

    def names(self) -> List[str]:
        return list(self._caches)

    def cleanup_all(self) -> int:
        """Sweep expired entries from every cache; returns the total removed."""
        return sum(cache.cleanup() for cache in list(self._caches.values()))

    def stats_all(self) -> Dict[str, CacheStats]:
        return {name: cache.stats() for name, cache in list(self._caches.items())}

    def clear_all(self) -> None:
        for cache in list(self._caches.values()):
            cache.clear()
