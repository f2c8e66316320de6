"""
Semantic + keyword retrieval and their reciprocal rank fusion.
"""
from __future__ import annotations

import dataclasses
from typing import Iterable, Sequence

from .errors import ChunkscopeError, UpstreamError
from .file_router import FileVectorRouter
from .keyword_search import rank_keyword_matches
from .models import SimilarityResult
from .observability import get_logger
from .vector_store import VectorStore

logger = get_logger(__name__)

RRF_K = 60


class ChunkDeduplicator:
    """Collapses repeated chunk ids, keeping the lowest-distance occurrence."""

    def deduplicate(self, results: Iterable[SimilarityResult]) -> list[SimilarityResult]:
        best: dict[str, SimilarityResult] = {}
        for result in results:
            current = best.get(result.chunk_id)
            if current is None or result.distance < current.distance:
                # Dict keeps the position of the first-seen id on replacement.
                best[result.chunk_id] = result
        return list(best.values())

    def rank_and_merge(self, result_sets: Iterable[Sequence[SimilarityResult]], max_results: int) -> list[SimilarityResult]:
        flattened = [result for result_set in result_sets for result in result_set]
        merged = self.deduplicate(flattened)
        merged.sort(key=lambda result: result.distance)
        return merged[:max(0, int(max_results))]


def _first_occurrences(results: Sequence[SimilarityResult]) -> list[SimilarityResult]:
    seen: set[str] = set()
    out: list[SimilarityResult] = []
    for result in results:
        if result.chunk_id in seen:
            continue
        seen.add(result.chunk_id)
        out.append(result)
    return out


def reciprocal_rank_fusion(
    semantic: Sequence[SimilarityResult],
    keyword: Sequence[SimilarityResult],
    top_k: int,
    k: int = RRF_K,
) -> list[SimilarityResult]:
    """
    Sums 1 / (k + rank) per chunk across both lists (ranks start at 1).
    Output distance is 1 / score so the usual ascending sort applies.
    """
    scores: dict[str, float] = {}
    base: dict[str, SimilarityResult] = {}
    cosine: dict[str, float] = {}

    for rank, result in enumerate(_first_occurrences(semantic), start=1):
        scores[result.chunk_id] = scores.get(result.chunk_id, 0.0) + 1.0 / (k + rank)
        base.setdefault(result.chunk_id, result)
        if result.cosine_distance is not None:
            cosine[result.chunk_id] = result.cosine_distance

    for rank, result in enumerate(_first_occurrences(keyword), start=1):
        scores[result.chunk_id] = scores.get(result.chunk_id, 0.0) + 1.0 / (k + rank)
        base.setdefault(result.chunk_id, result)

    fused = [
        dataclasses.replace(
            base[chunk_id],
            distance=1.0 / score,
            source="fused",
            rrf_score=score,
            semantic_distance=cosine.get(chunk_id),
        )
        for chunk_id, score in scores.items()
    ]
    fused.sort(key=lambda result: result.distance)
    return fused[:max(0, int(top_k))]


class HybridSearchFusion:
    """
    Searches one file through the in-memory router when it holds the file,
    otherwise through the external store.
    """

    def __init__(
        self,
        store: VectorStore | None,
        router: FileVectorRouter | None = None,
        *,
        enable_file_routing: bool = True,
        lazy_load_index: bool = True,
        rrf_k: int = RRF_K,
    ):
        self.store = store
        self.router = router
        self.enable_file_routing = bool(enable_file_routing) and router is not None
        self.lazy_load_index = lazy_load_index
        self.rrf_k = int(rrf_k)

    def _routed(self, file_id: str) -> bool:
        if not self.enable_file_routing:
            return False
        if self.router.has_index(file_id):
            return True
        if self.lazy_load_index and self.store is not None:
            self.router.warm_cache([file_id], self.store.get_file_embeddings)
            return self.router.has_index(file_id)
        return False

    def _require_store(self) -> VectorStore:
        if self.store is None:
            raise UpstreamError("no vector store configured and no in-memory index available", source="vector_store")
        return self.store

    def semantic_search(self, query_vector: Sequence[float], file_id: str, top_k: int) -> list[SimilarityResult]:
        if self._routed(file_id):
            return self.router.search_in_file(file_id, query_vector, top_k)
        logger.debug("semantic_search_store_fallback", file_id=file_id)
        return self._require_store().query_similar(query_vector, file_id, top_k)

    def keyword_search(self, keywords: Sequence[str], file_id: str, top_k: int) -> list[SimilarityResult]:
        if self.enable_file_routing:
            index, found = self.router.get_index(file_id)
            if found:
                candidates = ((chunk.chunk_id, chunk.text, chunk.metadata) for chunk in index.chunks)
                return rank_keyword_matches(candidates, keywords, top_k)
        return self._require_store().keyword_search(keywords, file_id, top_k)

    def hybrid_search(
        self,
        query_vector: Sequence[float],
        keywords: Sequence[str],
        file_id: str,
        top_k: int,
    ) -> list[SimilarityResult]:
        semantic = self.semantic_search(query_vector, file_id, top_k)
        try:
            keyword = self.keyword_search(keywords, file_id, top_k // 2)
        except ChunkscopeError as exc:
            logger.warning("keyword_search_failed", file_id=file_id, error=str(exc))
            return semantic[:top_k]
        fused = reciprocal_rank_fusion(semantic, keyword, top_k, k=self.rrf_k)
        logger.info(
            "hybrid_search_fused",
            file_id=file_id,
            semantic=len(semantic),
            keyword=len(keyword),
            fused=len(fused),
        )
        return fused
