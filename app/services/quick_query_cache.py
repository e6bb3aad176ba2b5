import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, Tuple, TypeVar

import structlog

from app.models.domain import QueryPoint

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# 5 decimal places is ~1.1 m at the equator: near-duplicate clicks share an entry
KEY_PRECISION = 5


def make_cache_key(point: QueryPoint, precision: int = KEY_PRECISION) -> str:
    """
    Build the cache key for a query point.

    Example: ``-23.55052,-46.63331,1500`` or ``-23.55052,-46.63331,1500,academia``.
    """
    # + 0.0 turns a rounded -0.0 into 0.0 so both sides of the equator share a key
    lat = round(point.lat, precision) + 0.0
    lng = round(point.lng, precision) + 0.0
    key = f"{lat:.{precision}f},{lng:.{precision}f},{point.radius_m}"
    if point.segment:
        key = f"{key},{point.segment.lower()}"
    return key


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    key: str
    value: T
    created_at: float


class QuickQueryCache(Generic[T]):
    """
    Bounded TTL memoization in front of the demographic pipeline.

    - Expiry is lazy: stale entries are dropped when looked up.
    - Overflow evicts in insertion order (oldest key first); reads do not
      refresh an entry's position.
    - A failed or cancelled fetch stores nothing.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.enabled = enabled
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry[T]]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def get(self, key: str) -> Optional[T]:
        if not self.enabled:
            return None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.created_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return entry.value

    def put(self, key: str, value: T) -> None:
        if not self.enabled:
            return
        with self._lock:
            # A fresh fetch replaces the entry and counts as a new insertion
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(key=key, value=value, created_at=self._clock())
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("quick_query_cache_evicted", key=evicted)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    async def get_or_fetch(
        self,
        point: QueryPoint,
        fetch: Callable[[], Awaitable[T]],
        cacheable: Callable[[T], bool] = lambda value: True,
    ) -> Tuple[T, bool]:
        """
        Return ``(value, cached)`` for ``point``, calling ``fetch`` on a miss.

        Values for which ``cacheable`` is false are returned but not stored.
        """
        key = make_cache_key(point)
        hit = self.get(key)
        if hit is not None:
            logger.info("quick_query_cache_hit", key=key)
            return hit, True

        value = await fetch()
        if cacheable(value):
            self.put(key, value)
        return value, False
