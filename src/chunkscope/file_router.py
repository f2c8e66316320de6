"""
Per-document in-memory vector indexes with parallel cosine search.

Each file's index is an immutable FileVectorIndex snapshot; resync swaps the
whole snapshot under the write lock so searches never see a partial update.
Indexes are evicted by inactivity only, never by capacity.
"""
from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, Sequence

from .chunk_cache import ChunkEmbeddingCache
from .concurrency import PeriodicSweeper, ReadWriteLock
from .errors import ValidationError
from .models import ChunkEmbedding, FileVectorIndex, SimilarityResult
from .observability import get_logger
from .vector_math import as_vector, cosine_distance

logger = get_logger(__name__)

DEFAULT_INDEX_TTL_S = 24 * 60 * 60.0
DEFAULT_SWEEP_INTERVAL_S = 10 * 60.0
DEFAULT_MAX_WORKERS = 4

ChunkProvider = Callable[[str], Sequence[ChunkEmbedding]]


def _score_slice(
    query: Sequence[float],
    chunks: Sequence[ChunkEmbedding],
    slots: list[float | None],
    start: int,
    stop: int,
):
    """Writes distances for chunks[start:stop] into their own slots."""
    for idx in range(start, stop):
        try:
            slots[idx] = cosine_distance(query, chunks[idx].vector)
        except ValidationError:
            slots[idx] = None


class FileVectorRouter:
    def __init__(
        self,
        chunk_cache: ChunkEmbeddingCache | None = None,
        index_ttl_s: float = DEFAULT_INDEX_TTL_S,
        sweep_interval_s: float = DEFAULT_SWEEP_INTERVAL_S,
        max_workers: int = DEFAULT_MAX_WORKERS,
        *,
        clock: Callable[[], float] = time.monotonic,
        start_sweeper: bool = True,
    ):
        self.chunk_cache = chunk_cache
        self.index_ttl_s = float(index_ttl_s)
        self.max_workers = max(1, int(max_workers))
        self._clock = clock
        self._lock = ReadWriteLock()
        self._indexes: dict[str, FileVectorIndex] = {}
        self._last_access: dict[str, float] = {}
        self._sweeper = PeriodicSweeper("file_router", sweep_interval_s, self.sweep_expired)
        if start_sweeper:
            self._sweeper.start()

    def add_or_sync_index(self, file_id: str, chunks: Iterable[ChunkEmbedding]) -> FileVectorIndex:
        if not file_id:
            raise ValueError("file_id is required")
        snapshot = tuple(chunks)
        now = self._clock()
        with self._lock.write_locked():
            previous = self._indexes.get(file_id)
            index = FileVectorIndex(
                file_id=file_id,
                chunks=snapshot,
                created_at=previous.created_at if previous is not None else now,
                updated_at=now,
            )
            self._indexes[file_id] = index
            self._last_access[file_id] = now
        logger.info("file_index_synced", file_id=file_id, chunk_count=index.chunk_count)
        return index

    def get_index(self, file_id: str) -> tuple[FileVectorIndex | None, bool]:
        with self._lock.write_locked():
            index = self._indexes.get(file_id)
            if index is None:
                return None, False
            self._last_access[file_id] = self._clock()
            return index, True

    def has_index(self, file_id: str) -> bool:
        with self._lock.read_locked():
            return file_id in self._indexes

    def remove_index(self, file_id: str) -> bool:
        with self._lock.write_locked():
            removed = self._indexes.pop(file_id, None) is not None
            self._last_access.pop(file_id, None)
        if removed:
            logger.info("file_index_removed", file_id=file_id)
        return removed

    def indexed_file_ids(self) -> list[str]:
        with self._lock.read_locked():
            return sorted(self._indexes)

    def search_in_file(
        self,
        file_id: str,
        query_vector: Sequence[float],
        top_k: int,
        restrict_to: Iterable[str] | None = None,
    ) -> list[SimilarityResult]:
        """
        Cosine search over one file's index, ascending by distance.
        Ties keep scan order. Unscorable chunks are skipped. A missing index
        returns an empty list; falling back to the store is the caller's job.
        """
        index, found = self.get_index(file_id)
        if not found or top_k <= 0:
            return []

        chunks: Sequence[ChunkEmbedding] = index.chunks
        if restrict_to is not None:
            wanted = set(restrict_to)
            chunks = [chunk for chunk in chunks if chunk.chunk_id in wanted]
        if not chunks:
            return []

        query = as_vector(query_vector)
        slots: list[float | None] = [None] * len(chunks)
        workers = min(self.max_workers, len(chunks))
        step = -(-len(chunks) // workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="router-score") as pool:
            futures = [
                pool.submit(_score_slice, query, chunks, slots, start, min(start + step, len(chunks)))
                for start in range(0, len(chunks), step)
            ]
            for future in futures:
                future.result()

        scored = [(idx, distance) for idx, distance in enumerate(slots) if distance is not None]
        skipped = len(chunks) - len(scored)
        if skipped:
            logger.warning("file_search_skipped_chunks", file_id=file_id, skipped=skipped)
        # sort() is stable, so equal distances keep scan order.
        scored.sort(key=lambda item: item[1])

        results = [
            SimilarityResult(
                chunk_id=chunks[idx].chunk_id,
                distance=distance,
                text=chunks[idx].text,
                metadata=dict(chunks[idx].metadata),
                source="semantic",
            )
            for idx, distance in scored[:top_k]
        ]
        if self.chunk_cache is not None:
            for result in results:
                self.chunk_cache.record_access(result.chunk_id)
        return results

    def sweep_expired(self) -> list[str]:
        cutoff = self._clock() - self.index_ttl_s
        with self._lock.write_locked():
            stale = [file_id for file_id, seen in self._last_access.items() if seen < cutoff]
            for file_id in stale:
                self._indexes.pop(file_id, None)
                self._last_access.pop(file_id, None)
        if stale:
            logger.info("file_indexes_evicted", count=len(stale), file_ids=stale)
        return stale

    def warm_cache(self, file_ids: Iterable[str], chunk_provider: ChunkProvider) -> int:
        """Loads indexes through `chunk_provider`; per-file failures are logged and skipped."""
        warmed = 0
        for file_id in file_ids:
            try:
                chunks = chunk_provider(file_id)
            except Exception as exc:
                logger.warning("file_index_warm_failed", file_id=file_id, error=str(exc))
                continue
            if not chunks:
                continue
            self.add_or_sync_index(file_id, chunks)
            warmed += 1
        return warmed

    def clear(self):
        with self._lock.write_locked():
            self._indexes.clear()
            self._last_access.clear()

    def stats(self) -> dict:
        with self._lock.read_locked():
            total_chunks = sum(index.chunk_count for index in self._indexes.values())
            return {
                "indexed_files": len(self._indexes),
                "total_chunks": total_chunks,
                "max_age_hours": round(self.index_ttl_s / 3600.0, 3),
            }

    def close(self):
        self._sweeper.stop()
