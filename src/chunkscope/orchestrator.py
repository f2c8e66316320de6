"""
End-to-end retrieval for one question against one document.

The orchestrator owns no globals: every cache, index and collaborator is an
explicit instance passed in (or wired by `build`) and released by `close()`.
"""
from __future__ import annotations

import time
from typing import Sequence

from langchain_core.embeddings import Embeddings

from .adaptive import AdaptiveRetriever
from .chunk_cache import ChunkEmbeddingCache
from .chunker import ChunkerConfig, SemanticChunker
from .config import RetrievalSettings
from .document_processor import DocumentProcessor
from .embeddings import CachedEmbeddingProvider
from .errors import ChunkscopeError, EmptyResultError, UpstreamError
from .file_router import FileVectorRouter
from .fusion import ChunkDeduplicator, HybridSearchFusion
from .intent import QueryIntentClassifier
from .key_terms import KeyTermExtractor, expand_query_for_comparison
from .metrics import RetrievalMetrics
from .models import IntentMetadata, QueryIntent, RetrievalOutcome, RetrievalStrategy, SimilarityResult
from .observability import get_logger
from .query_cache import SemanticQueryCache, normalize_query
from .ranking_rules import prioritize_comparison_chunks, promote_definition_match
from .vector_store import VectorStore

logger = get_logger(__name__)

SUMMARY_MIN_TOP_K = 10
MULTI_TERM_MIN_TOP_K = 2
# Tokens held back from the context window for the question and the answer.
CONTEXT_RESERVE_TOKENS = 1000
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    return len(text or "") // CHARS_PER_TOKEN


def fit_to_context_window(
    chunks: Sequence[SimilarityResult],
    context_window: int,
    reserve: int = CONTEXT_RESERVE_TOKENS,
) -> list[SimilarityResult]:
    """
    Keeps the leading chunks whose combined text fits the window minus the
    reserve. The first chunk is always kept.
    """
    budget = context_window - reserve if context_window > reserve else context_window
    kept: list[SimilarityResult] = []
    used = 0
    for chunk in chunks:
        cost = estimate_tokens(chunk.text)
        if kept and used + cost > budget:
            break
        kept.append(chunk)
        used += cost
    return kept


class RetrievalOrchestrator:
    def __init__(
        self,
        settings: RetrievalSettings,
        embedder: CachedEmbeddingProvider,
        fusion: HybridSearchFusion,
        *,
        router: FileVectorRouter | None = None,
        query_cache: SemanticQueryCache | None = None,
        chunk_cache: ChunkEmbeddingCache | None = None,
        classifier: QueryIntentClassifier | None = None,
        extractor: KeyTermExtractor | None = None,
        adaptive: AdaptiveRetriever | None = None,
        deduplicator: ChunkDeduplicator | None = None,
        metrics: RetrievalMetrics | None = None,
    ):
        self.settings = settings
        self.embedder = embedder
        self.fusion = fusion
        self.router = router
        self.query_cache = query_cache
        self.chunk_cache = chunk_cache
        self.classifier = classifier or QueryIntentClassifier()
        self.extractor = extractor or KeyTermExtractor()
        self.adaptive = adaptive or AdaptiveRetriever.from_settings(settings)
        self.deduplicator = deduplicator or ChunkDeduplicator()
        self.metrics = metrics or RetrievalMetrics()
        self._closed = False

    @classmethod
    def build(
        cls,
        settings: RetrievalSettings,
        embeddings: Embeddings,
        store: VectorStore | None,
        *,
        metrics: RetrievalMetrics | None = None,
        start_sweepers: bool = True,
    ) -> "RetrievalOrchestrator":
        """Wires every collaborator from `settings`; disabled layers stay None."""
        chunk_cache = ChunkEmbeddingCache(settings.chunk_cache_size) if settings.enable_chunk_cache else None
        query_cache = None
        if settings.enable_query_cache:
            query_cache = SemanticQueryCache(
                settings.query_cache_ttl_s,
                settings.query_cache_sweep_s,
                start_sweeper=start_sweepers,
            )
        router = None
        if settings.enable_file_routing:
            router = FileVectorRouter(
                chunk_cache,
                index_ttl_s=settings.file_index_ttl_s,
                sweep_interval_s=settings.file_index_sweep_s,
                max_workers=settings.search_max_workers,
                start_sweeper=start_sweepers,
            )
        embedder = CachedEmbeddingProvider(embeddings, query_cache, settings.query_cache_ttl_s)
        fusion = HybridSearchFusion(
            store,
            router,
            enable_file_routing=settings.enable_file_routing,
            rrf_k=settings.rrf_k,
        )
        return cls(
            settings,
            embedder,
            fusion,
            router=router,
            query_cache=query_cache,
            chunk_cache=chunk_cache,
            metrics=metrics,
        )

    def document_processor(self, chunker_config: ChunkerConfig | None = None) -> DocumentProcessor:
        """An ingestion pipeline sharing this orchestrator's store, index and caches."""
        return DocumentProcessor(
            self.embedder,
            store=self.fusion.store,
            router=self.router,
            chunk_cache=self.chunk_cache,
            chunker=SemanticChunker(chunker_config),
            extractor=self.extractor,
        )

    # ------------------------------------------------------------------
    # Single question
    # ------------------------------------------------------------------
    def retrieve(self, file_id: str, question: str) -> RetrievalOutcome:
        if not file_id:
            raise ValueError("file_id is required")
        if not str(question or "").strip():
            raise ValueError("question must not be empty")

        started = time.perf_counter()
        intent = self.classifier.analyze_query(question)
        key_terms = self.extractor.extract_named_terms(question)
        strategy = "semantic"
        top_k = intent.recommended_top_k
        cache_hit = False

        try:
            vector, cache_hit, cache_key = self.embedder.embed_with_cache_info(question)
            chunks = self._reuse_context(file_id, question, vector, top_k)
            context_reused = bool(chunks)
            if context_reused:
                strategy = "reused"
            else:
                chunks, strategy, top_k = self._search(file_id, vector, intent, key_terms)
                chunks = self._resize(chunks)
            chunks = self._apply_ranking_rules(chunks, intent, key_terms, question)
            chunks = fit_to_context_window(chunks, self.settings.context_window)
            if not chunks:
                raise EmptyResultError(
                    f"no relevant chunks found in {file_id}",
                    file_id=file_id,
                    strategy=strategy,
                )
        except ChunkscopeError as exc:
            latency_ms = (time.perf_counter() - started) * 1000
            self.metrics.record_query(
                latency_ms,
                success=False,
                cache_hit=cache_hit,
                top_k=0,
                strategy=strategy,
                intent=intent.intent.value,
            )
            logger.warning(
                "retrieval_failed",
                file_id=file_id,
                intent=intent.intent.value,
                strategy=strategy,
                error=str(exc),
            )
            raise

        if self.query_cache is not None:
            self.query_cache.attach_context(cache_key, file_id, [chunk.chunk_id for chunk in chunks])

        latency_ms = (time.perf_counter() - started) * 1000
        self.metrics.record_query(
            latency_ms,
            success=True,
            cache_hit=cache_hit,
            top_k=len(chunks),
            strategy=strategy,
            intent=intent.intent.value,
        )
        logger.info(
            "retrieval_completed",
            file_id=file_id,
            intent=intent.intent.value,
            strategy=strategy,
            key_terms=key_terms,
            cache_hit=cache_hit,
            context_reused=context_reused,
            returned=len(chunks),
            latency_ms=round(latency_ms, 2),
        )
        return RetrievalOutcome(
            chunks=chunks,
            intent=intent,
            key_terms=key_terms,
            strategy=strategy,
            cache_hit=cache_hit,
            context_reused=context_reused,
            latency_ms=latency_ms,
            top_k=top_k,
        )

    def _reuse_context(
        self,
        file_id: str,
        question: str,
        vector: Sequence[float],
        top_k: int,
    ) -> list[SimilarityResult]:
        """
        Re-scores the chunks that answered a near-identical earlier question
        about the same file. Needs the in-memory index; empty means no reuse.
        """
        if self.query_cache is None or self.router is None:
            return []

        asked = normalize_query(question)

        def _same_file(entry) -> bool:
            # Another question about this file; the current one has no context yet.
            return entry.has_context and entry.file_id == file_id and entry.source_query_id != asked

        entry, key, found = self.query_cache.find_similar(
            vector,
            self.settings.query_similarity_threshold,
            predicate=_same_file,
        )
        if not found:
            return []
        results = self.router.search_in_file(
            file_id,
            vector,
            max(top_k, len(entry.chunk_ids)),
            restrict_to=entry.chunk_ids,
        )
        if results:
            logger.info("retrieval_context_reused", file_id=file_id, source_query=entry.source_query_id)
        return results

    def _search(
        self,
        file_id: str,
        vector: Sequence[float],
        intent: IntentMetadata,
        key_terms: list[str],
    ) -> tuple[list[SimilarityResult], str, int]:
        """Returns (results, strategy name, requested top-k)."""
        top_k = intent.recommended_top_k
        if intent.intent is QueryIntent.COMPARISON and len(key_terms) >= 2:
            return self.fusion.hybrid_search(vector, key_terms, file_id, top_k), "hybrid", top_k
        if intent.intent is QueryIntent.DEFINITION and key_terms:
            return self.fusion.hybrid_search(vector, key_terms, file_id, top_k), "hybrid", top_k
        if intent.intent is QueryIntent.SUMMARY:
            top_k = max(SUMMARY_MIN_TOP_K, top_k)
        return self.fusion.semantic_search(vector, file_id, top_k), "semantic", top_k

    def _resize(self, chunks: list[SimilarityResult]) -> list[SimilarityResult]:
        if not self.settings.enable_adaptive_retrieval:
            return chunks
        strategy = self.settings.retrieval_strategy
        if strategy is RetrievalStrategy.FIXED:
            return chunks
        if strategy is RetrievalStrategy.THRESHOLD:
            return self.adaptive.get_threshold_results(chunks)
        return self.adaptive.get_adaptive_results(chunks)

    @staticmethod
    def _apply_ranking_rules(
        chunks: list[SimilarityResult],
        intent: IntentMetadata,
        key_terms: list[str],
        question: str,
    ) -> list[SimilarityResult]:
        if intent.intent is QueryIntent.COMPARISON:
            return prioritize_comparison_chunks(chunks, key_terms, question)
        if intent.intent is QueryIntent.DEFINITION:
            return promote_definition_match(chunks, key_terms)
        return chunks

    # ------------------------------------------------------------------
    # Several sub-queries merged into one list
    # ------------------------------------------------------------------
    def _merge_searches(self, file_id: str, queries: Sequence[str], per_query_top_k: int, top_k: int, label: str):
        result_sets: list[list[SimilarityResult]] = []
        for query in queries:
            try:
                vector = self.embedder.embed_query(query)
                result_sets.append(self.fusion.semantic_search(vector, file_id, per_query_top_k))
            except ChunkscopeError as exc:
                logger.warning(f"{label}_query_failed", file_id=file_id, query=query, error=str(exc))
        if not result_sets:
            raise UpstreamError(f"every {label} query failed for {file_id}", source="retrieval")
        merged = self.deduplicator.rank_and_merge(result_sets, top_k)
        logger.info(f"{label}_completed", file_id=file_id, queries=len(queries), returned=len(merged))
        return merged

    def retrieve_multi_term(self, file_id: str, terms: Sequence[str], top_k: int) -> list[SimilarityResult]:
        """One semantic search per term; failed terms are skipped unless all fail."""
        terms = [term for term in terms if str(term or "").strip()]
        if not terms or top_k <= 0:
            return []
        per_term = max(MULTI_TERM_MIN_TOP_K, top_k // len(terms))
        return self._merge_searches(file_id, terms, per_term, top_k, "multi_term")

    def retrieve_expanded(
        self,
        file_id: str,
        question: str,
        terms: Sequence[str],
        top_k: int,
    ) -> list[SimilarityResult]:
        """Searches the first few comparison expansions of `question`."""
        if top_k <= 0:
            return []
        expansions = expand_query_for_comparison(question, list(terms))[: self.settings.expansion_limit]
        return self._merge_searches(file_id, expansions, self.settings.expansion_top_k, top_k, "expanded")

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------
    def warm_chunk_cache(self, limit: int) -> int:
        """Reloads the most popular chunk vectors from the in-memory indexes."""
        if self.chunk_cache is None or self.router is None or limit <= 0:
            return 0
        wanted = self.chunk_cache.most_popular(limit)
        if not wanted:
            return 0
        remaining = set(wanted)
        vectors: dict[str, tuple[float, ...]] = {}
        for file_id in self.router.indexed_file_ids():
            index, found = self.router.get_index(file_id)
            if not found:
                continue
            for chunk in index.chunks:
                if chunk.chunk_id in remaining:
                    vectors[chunk.chunk_id] = chunk.vector
                    remaining.discard(chunk.chunk_id)
            if not remaining:
                break
        # Most popular first, so the hottest chunks claim any spare room.
        ordered = {chunk_id: vectors[chunk_id] for chunk_id in wanted if chunk_id in vectors}
        return self.chunk_cache.warm(ordered)

    def stats(self) -> dict:
        return {
            "query_cache": self.query_cache.stats().as_dict() if self.query_cache is not None else None,
            "chunk_cache": self.chunk_cache.stats().as_dict() if self.chunk_cache is not None else None,
            "file_router": self.router.stats() if self.router is not None else None,
            "metrics": self.metrics.get_summary(),
        }

    def close(self):
        """Stops background sweeps. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self.query_cache is not None:
            self.query_cache.close()
        if self.router is not None:
            self.router.close()
        logger.info("orchestrator_closed")
