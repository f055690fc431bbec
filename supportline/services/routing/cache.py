"""In-memory response cache.

Maps a normalized query (lowercased, trimmed) to a previously computed
answer. Entries go stale after ``ttl_seconds``. The cache holds at most
``max_entries`` items; inserting at capacity evicts the least recently used
entry.
"""
import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


def normalize_query(text: str) -> str:
    """Return the cache key for a query."""
    return (text or "").lower().strip()


@dataclass
class CacheEntry:
    """A cached answer."""

    key: str
    value: Any
    inserted_at: float
    expires_at: float

    def is_stale(self, now: float) -> bool:
        return now >= self.expires_at


class ResponseCache:
    """TTL and capacity bounded LRU cache."""

    def __init__(
        self,
        ttl_seconds: float = 3600.0,
        max_entries: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._sweeper: Optional[asyncio.Task] = None
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, query: str) -> bool:
        entry = self._entries.get(normalize_query(query))
        return entry is not None and not entry.is_stale(self._clock())

    def get(self, query: str) -> Optional[Any]:
        """Get a cached answer if present and fresh."""
        key = normalize_query(query)
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        if entry.is_stale(self._clock()):
            del self._entries[key]
            self.misses += 1
            return None

        self._entries.move_to_end(key)
        self.hits += 1
        logger.debug(f"[CACHE] Hit: '{key}'")
        return entry.value

    def set(self, query: str, value: Any) -> None:
        """Cache an answer, evicting the least recently used entry at capacity."""
        key = normalize_query(query)
        if not key:
            return

        if key in self._entries:
            del self._entries[key]
        while len(self._entries) >= self.max_entries:
            evicted_key, _ = self._entries.popitem(last=False)
            self.evictions += 1
            logger.debug(f"[CACHE] Evicted LRU entry: '{evicted_key}'")

        now = self._clock()
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            inserted_at=now,
            expires_at=now + self.ttl_seconds,
        )

    def sweep(self) -> int:
        """Remove every stale entry. Returns the number removed."""
        now = self._clock()
        stale = [key for key, entry in self._entries.items() if entry.is_stale(now)]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.info(f"[CACHE] Swept {len(stale)} stale entries, {len(self._entries)} remain")
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def start_sweeper(self, interval_seconds: float) -> None:
        """Start the periodic sweep task on the running loop."""
        if self._sweeper and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_loop(interval_seconds))

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            self.sweep()

    def get_stats(self) -> Dict[str, Any]:
        """Return cache hit/miss statistics."""
        total = self.hits + self.misses
        hit_rate = (self.hits / total * 100) if total > 0 else 0
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate_percent": round(hit_rate, 2),
            "size": len(self._entries),
            "max_entries": self.max_entries,
        }
