"""
Data model shared across the retrieval core.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from langchain_core.documents import Document

from .vector_math import distance_to_similarity


class QueryIntent(str, Enum):
    SUMMARY = "summary"
    TABLE_OF_CONTENTS = "toc"
    DEFINITION = "definition"
    COMPARISON = "comparison"
    LIST = "list"
    SPECIFIC = "specific"


class RetrievalStrategy(str, Enum):
    FIXED = "fixed"
    ADAPTIVE = "adaptive"
    THRESHOLD = "threshold"


@dataclass(frozen=True)
class Chunk:
    id: str
    text: str
    start_char: int
    end_char: int
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ChunkEmbedding:
    chunk_id: str
    vector: tuple[float, ...]
    text: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FileVectorIndex:
    """Immutable snapshot of one document's vectors; replaced wholesale on resync."""

    file_id: str
    chunks: tuple[ChunkEmbedding, ...]
    created_at: float
    updated_at: float

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)


@dataclass(frozen=True)
class QueryCacheEntry:
    vector: tuple[float, ...]
    source_query_id: str
    created_at: float
    expires_at: float
    file_id: str = ""
    chunk_ids: tuple[str, ...] = ()

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    @property
    def has_context(self) -> bool:
        return bool(self.file_id and self.chunk_ids)


@dataclass
class PopularityCacheItem:
    chunk_id: str
    vector: tuple[float, ...]
    last_access: float


@dataclass(frozen=True)
class SimilarityResult:
    """
    One ranked chunk. `distance` is always ascending-is-better.

    Fused results carry `distance = 1 / rrf_score` for ordering; their cosine
    evidence, when a semantic hit contributed, lives in `semantic_distance`.
    """

    chunk_id: str
    distance: float
    text: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    source: str = "semantic"
    rrf_score: float | None = None
    semantic_distance: float | None = None

    @property
    def cosine_distance(self) -> float | None:
        if self.source == "fused":
            return self.semantic_distance
        return self.distance

    @property
    def similarity(self) -> float | None:
        cosine = self.cosine_distance
        if cosine is None:
            return None
        return distance_to_similarity(cosine)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.chunk_id,
            "text": self.text,
            "metadata": dict(self.metadata),
            "distance": self.distance,
        }

    def to_document(self) -> Document:
        metadata = dict(self.metadata)
        metadata["chunk_id"] = self.chunk_id
        metadata["distance"] = self.distance
        metadata["retrieval_source"] = self.source
        return Document(page_content=self.text, metadata=metadata)


@dataclass(frozen=True)
class IntentMetadata:
    intent: QueryIntent
    confidence: float
    recommended_top_k: int
    strategy: RetrievalStrategy
    hints: dict[str, Any] = field(default_factory=dict)
    explanation: str = ""


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    size: int
    max_size: int
    evictions: int
    last_cleared: float | None = None
    # Near-duplicate lookups that matched after an exact-key miss.
    similar_hits: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return (self.hits / total) if total > 0 else 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "size": self.size,
            "max_size": self.max_size,
            "evictions": self.evictions,
            "hit_rate": round(self.hit_rate, 4),
            "last_cleared": self.last_cleared,
            "similar_hits": self.similar_hits,
        }


@dataclass(frozen=True)
class RetrievalOutcome:
    chunks: list[SimilarityResult]
    intent: IntentMetadata
    key_terms: list[str]
    strategy: str
    cache_hit: bool = False
    context_reused: bool = False
    latency_ms: float = 0.0
    top_k: int = 0

    def to_documents(self) -> list[Document]:
        return [chunk.to_document() for chunk in self.chunks]
