"""
Embedding providers and the query-cache wrapper around them.
"""
from __future__ import annotations

import functools

from langchain_core.embeddings import Embeddings

from .config import (
    EMBEDDING_BACKEND,
    EMBEDDING_DEVICE,
    EMBEDDING_MODEL_NAME,
    OLLAMA_BASE_URL,
    OLLAMA_EMBEDDING_MODEL,
    console,
)
from .errors import UpstreamError
from .observability import get_logger
from .query_cache import SemanticQueryCache, query_cache_key

logger = get_logger(__name__)


@functools.cache
def get_embeddings() -> Embeddings:
    """Builds the configured LangChain embedding backend once per process."""
    if EMBEDDING_BACKEND == "ollama":
        from langchain_ollama import OllamaEmbeddings

        console.print(f"[cyan]Embedding backend:[/cyan] ollama ({OLLAMA_EMBEDDING_MODEL})")
        return OllamaEmbeddings(model=OLLAMA_EMBEDDING_MODEL, base_url=OLLAMA_BASE_URL)

    from langchain_huggingface import HuggingFaceEmbeddings

    console.print(f"[cyan]Embedding backend:[/cyan] huggingface ({EMBEDDING_MODEL_NAME})")
    return HuggingFaceEmbeddings(
        model_name=EMBEDDING_MODEL_NAME,
        model_kwargs={"device": EMBEDDING_DEVICE},
        encode_kwargs={"normalize_embeddings": True},
    )


class CachedEmbeddingProvider(Embeddings):
    """
    Wraps an Embeddings backend with the SemanticQueryCache.
    An exact (normalized) query hit never reaches the backend.
    """

    def __init__(self, provider: Embeddings, query_cache: SemanticQueryCache | None = None, ttl_s: float | None = None):
        self.provider = provider
        self.query_cache = query_cache
        self.ttl_s = ttl_s

    def embed_with_cache_info(self, text: str) -> tuple[list[float], bool, str]:
        """Returns (vector, cache_hit, cache_key)."""
        key = query_cache_key(text)
        if self.query_cache is not None:
            entry, found = self.query_cache.get(key)
            if found:
                logger.debug("query_embedding_cache_hit", key=key[:12])
                return list(entry.vector), True, key

        try:
            vector = [float(v) for v in self.provider.embed_query(text)]
        except Exception as exc:
            raise UpstreamError(f"embedding provider failed: {exc}", source="embedding") from exc
        if not vector:
            raise UpstreamError("embedding provider returned an empty vector", source="embedding")

        if self.query_cache is not None:
            self.query_cache.put_query(text, vector, self.ttl_s)
        return vector, False, key

    def embed_query(self, text: str) -> list[float]:
        vector, _, _ = self.embed_with_cache_info(text)
        return vector

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        try:
            vectors = self.provider.embed_documents(list(texts))
        except Exception as exc:
            raise UpstreamError(f"embedding provider failed: {exc}", source="embedding") from exc
        return [[float(v) for v in vector] for vector in vectors]

    def embed_text(self, text: str) -> list[float]:
        """One document-side embedding, bypassing the query cache."""
        vectors = self.embed_documents([text])
        if not vectors or not vectors[0]:
            raise UpstreamError("embedding provider returned an empty vector", source="embedding")
        return vectors[0]

