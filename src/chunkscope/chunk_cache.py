"""
Bounded popularity cache for chunk embeddings.

Recency lives in an OrderedDict (oldest first); popularity counters live in a
separate Counter that is never trimmed by eviction, so re-warming can favour
chunks that were hot before they fell out of the cache.
"""
from __future__ import annotations

import time
from collections import Counter, OrderedDict
from typing import Callable, Mapping, Sequence

from .concurrency import ReadWriteLock
from .models import CacheStats, PopularityCacheItem
from .observability import get_logger

logger = get_logger(__name__)


class ChunkEmbeddingCache:
    """Thread-safe LRU mapping chunk id -> embedding vector."""

    def __init__(self, max_size: int = 1000, clock: Callable[[], float] = time.monotonic):
        if int(max_size) < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = int(max_size)
        self._clock = clock
        # get() reorders recency, so it takes the write side too.
        self._lock = ReadWriteLock()
        self._items: OrderedDict[str, PopularityCacheItem] = OrderedDict()
        self._access_counts: Counter[str] = Counter()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._last_cleared: float | None = None

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._items)

    def __contains__(self, chunk_id: str) -> bool:
        with self._lock.read_locked():
            return chunk_id in self._items

    def get(self, chunk_id: str) -> tuple[tuple[float, ...] | None, bool]:
        with self._lock.write_locked():
            item = self._items.get(chunk_id)
            if item is None:
                self._misses += 1
                return None, False
            self._items.move_to_end(chunk_id)
            item.last_access = self._clock()
            self._hits += 1
            return item.vector, True

    def set(self, chunk_id: str, vector: Sequence[float]):
        with self._lock.write_locked():
            self._insert(chunk_id, vector)

    def _insert(self, chunk_id: str, vector: Sequence[float]) -> bool:
        now = self._clock()
        existing = self._items.get(chunk_id)
        if existing is not None:
            existing.vector = tuple(vector)
            existing.last_access = now
            self._items.move_to_end(chunk_id)
            return False

        self._items[chunk_id] = PopularityCacheItem(chunk_id=chunk_id, vector=tuple(vector), last_access=now)
        while len(self._items) > self.max_size:
            self._evict_oldest()
        return True

    def _evict_oldest(self):
        evicted_id, _ = self._items.popitem(last=False)
        # Popularity survives eviction.
        self._evictions += 1
        logger.debug("chunk_cache_evicted", chunk_id=evicted_id, policy="lru")

    def record_access(self, chunk_id: str):
        with self._lock.write_locked():
            self._access_counts[chunk_id] += 1
            item = self._items.get(chunk_id)
            if item is not None:
                self._items.move_to_end(chunk_id)
                item.last_access = self._clock()

    def most_popular(self, limit: int) -> list[str]:
        if limit <= 0:
            return []
        with self._lock.read_locked():
            # most_common keeps first-recorded order among equal counts.
            return [chunk_id for chunk_id, _ in self._access_counts.most_common(limit)]

    def access_count(self, chunk_id: str) -> int:
        with self._lock.read_locked():
            return self._access_counts.get(chunk_id, 0)

    def keys(self) -> list[str]:
        """Cached chunk ids, least recently used first."""
        with self._lock.read_locked():
            return list(self._items.keys())

    def delete(self, chunk_id: str) -> bool:
        with self._lock.write_locked():
            removed = self._items.pop(chunk_id, None) is not None
            self._access_counts.pop(chunk_id, None)
            return removed

    def clear(self):
        with self._lock.write_locked():
            self._items.clear()
            self._access_counts.clear()
            self._last_cleared = time.time()
        logger.info("chunk_cache_cleared")

    def warm(self, embeddings: Mapping[str, Sequence[float]]) -> int:
        """
        Preloads embeddings while there is spare capacity.
        Once full, only chunks with recorded popularity are admitted.
        """
        warmed = 0
        with self._lock.write_locked():
            for chunk_id, vector in embeddings.items():
                if chunk_id in self._items:
                    continue
                if len(self._items) >= self.max_size and self._access_counts.get(chunk_id, 0) <= 0:
                    continue
                if self._insert(chunk_id, vector):
                    warmed += 1
        if warmed:
            logger.info("chunk_cache_warmed", warmed=warmed)
        return warmed

    def stats(self) -> CacheStats:
        with self._lock.read_locked():
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                size=len(self._items),
                max_size=self.max_size,
                evictions=self._evictions,
                last_cleared=self._last_cleared,
            )
