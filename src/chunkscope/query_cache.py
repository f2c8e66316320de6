"""
TTL cache of query embeddings with near-duplicate lookup.

Entries are keyed by the sha256 of the normalized query. Expired entries are
invisible to readers immediately and are physically removed either lazily on
read or by the periodic sweep.
"""
from __future__ import annotations

import dataclasses
import hashlib
import time
from typing import Callable, Sequence

from .concurrency import PeriodicSweeper, ReadWriteLock
from .errors import ValidationError
from .models import CacheStats, QueryCacheEntry
from .observability import get_logger
from .vector_math import cosine_similarity

logger = get_logger(__name__)

DEFAULT_TTL_S = 60 * 60.0
DEFAULT_SWEEP_INTERVAL_S = 5 * 60.0
DEFAULT_SIMILARITY_THRESHOLD = 0.95


def normalize_query(query: str) -> str:
    """Lowercases, trims and collapses internal whitespace."""
    return " ".join(str(query or "").lower().split())


def query_cache_key(query: str) -> str:
    return hashlib.sha256(normalize_query(query).encode("utf-8")).hexdigest()


class SemanticQueryCache:
    """Thread-safe TTL cache; `close()` stops the background sweep."""

    def __init__(
        self,
        default_ttl_s: float = DEFAULT_TTL_S,
        sweep_interval_s: float = DEFAULT_SWEEP_INTERVAL_S,
        *,
        clock: Callable[[], float] = time.monotonic,
        start_sweeper: bool = True,
    ):
        if default_ttl_s <= 0:
            raise ValueError("default_ttl_s must be positive")
        self.default_ttl_s = float(default_ttl_s)
        self._clock = clock
        self._lock = ReadWriteLock()
        self._entries: dict[str, QueryCacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._similar_hits = 0
        self._evictions = 0
        self._last_cleared: float | None = None
        self._sweeper = PeriodicSweeper("query_cache", sweep_interval_s, self.sweep_expired)
        if start_sweeper:
            self._sweeper.start()

    def get(self, key: str) -> tuple[QueryCacheEntry | None, bool]:
        now = self._clock()
        with self._lock.write_locked():
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None, False
            if entry.is_expired(now):
                del self._entries[key]
                self._evictions += 1
                self._misses += 1
                return None, False
            self._hits += 1
            return entry, True

    def set(self, key: str, entry: QueryCacheEntry, ttl_s: float | None = None) -> QueryCacheEntry:
        """Stores `entry` stamped with fresh timestamps; ttl of None or 0 means the default."""
        ttl = float(ttl_s) if ttl_s else self.default_ttl_s
        now = self._clock()
        stamped = dataclasses.replace(entry, created_at=now, expires_at=now + ttl)
        with self._lock.write_locked():
            self._entries[key] = stamped
        return stamped

    def put_query(self, query: str, vector: Sequence[float], ttl_s: float | None = None) -> str:
        key = query_cache_key(query)
        entry = QueryCacheEntry(
            vector=tuple(float(v) for v in vector),
            source_query_id=normalize_query(query),
            created_at=0.0,
            expires_at=0.0,
        )
        self.set(key, entry, ttl_s)
        return key

    def attach_context(self, key: str, file_id: str, chunk_ids: Sequence[str]) -> bool:
        """Records which chunks answered the entry's question; expiry is left untouched."""
        now = self._clock()
        with self._lock.write_locked():
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(now):
                return False
            self._entries[key] = dataclasses.replace(entry, file_id=file_id, chunk_ids=tuple(chunk_ids))
            return True

    def delete(self, key: str) -> bool:
        with self._lock.write_locked():
            return self._entries.pop(key, None) is not None

    def clear(self):
        with self._lock.write_locked():
            self._entries.clear()
            self._last_cleared = time.time()
        logger.info("query_cache_cleared")

    def find_similar(
        self,
        vector: Sequence[float],
        threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        predicate: Callable[[QueryCacheEntry], bool] | None = None,
    ) -> tuple[QueryCacheEntry | None, str, bool]:
        """Best live entry whose embedding has cosine similarity >= threshold."""
        now = self._clock()
        best_entry: QueryCacheEntry | None = None
        best_key = ""
        best_similarity = float("-inf")

        with self._lock.read_locked():
            candidates = list(self._entries.items())

        for key, entry in candidates:
            if entry.is_expired(now):
                continue
            if predicate is not None and not predicate(entry):
                continue
            try:
                similarity = cosine_similarity(vector, entry.vector)
            except ValidationError:
                continue
            if similarity > best_similarity:
                best_similarity = similarity
                best_entry = entry
                best_key = key

        if best_entry is not None and best_similarity >= threshold:
            # Counted apart from get(): the exact-key lookup already recorded its miss.
            with self._lock.write_locked():
                self._similar_hits += 1
            return best_entry, best_key, True
        return None, "", False

    def sweep_expired(self) -> int:
        now = self._clock()
        with self._lock.write_locked():
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self._evictions += len(expired)
        if expired:
            logger.info("query_cache_swept", removed=len(expired))
        return len(expired)

    def stats(self) -> CacheStats:
        with self._lock.read_locked():
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                size=len(self._entries),
                max_size=-1,
                evictions=self._evictions,
                last_cleared=self._last_cleared,
                similar_hits=self._similar_hits,
            )

    def close(self):
        self._sweeper.stop()
