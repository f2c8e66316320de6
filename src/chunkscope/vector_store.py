"""
External vector store contract and its Chroma adapter.

Every call into Chroma is bounded by a client-side timeout; failures surface
as UpstreamError and are never retried here.
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Protocol, Sequence, TypeVar

import chromadb

from .errors import UpstreamError
from .keyword_search import rank_keyword_matches
from .models import ChunkEmbedding, SimilarityResult
from .observability import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_SCALAR_TYPES = (str, int, float, bool)


class VectorStore(Protocol):
    def query_similar(self, vector: Sequence[float], file_id: str, top_k: int) -> list[SimilarityResult]:
        ...

    def keyword_search(self, keywords: Sequence[str], file_id: str, top_k: int) -> list[SimilarityResult]:
        ...

    def upsert(self, chunks: Sequence[ChunkEmbedding]) -> int:
        ...

    def delete(self, file_id: str) -> int:
        ...

    def chunk_ids(self, file_id: str) -> list[str]:
        ...

    def delete_chunks(self, chunk_ids: Sequence[str]) -> int:
        ...

    def get_file_embeddings(self, file_id: str) -> list[ChunkEmbedding]:
        ...


def sanitize_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """Chroma only stores scalar metadata values; lists become comma-joined strings."""
    clean: dict[str, Any] = {}
    for key, value in (metadata or {}).items():
        if value is None:
            continue
        if isinstance(value, _SCALAR_TYPES):
            clean[str(key)] = value
        elif isinstance(value, (list, tuple, set)):
            clean[str(key)] = ",".join(str(item) for item in value)
        else:
            clean[str(key)] = str(value)
    return clean


def build_chroma_client(db_path: str | None = None, host: str = "", port: int = 8000):
    if host:
        return chromadb.HttpClient(host=host, port=port)
    if db_path:
        return chromadb.PersistentClient(path=str(db_path))
    return chromadb.EphemeralClient()


class ChromaVectorStore:
    """Stores chunk vectors in one cosine-space collection, scoped by a `file_id` metadata filter."""

    def __init__(self, client, collection_name: str = "document_chunks", timeout_s: float = 60.0):
        self.timeout_s = float(timeout_s)
        self._client = client
        self._collection = client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
            embedding_function=None,
        )
        # Single worker: calls are serialized, the pool only enforces the timeout.
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="chroma-call")

    def _call(self, operation: str, fn: Callable[[], T]) -> T:
        future = self._executor.submit(fn)
        try:
            return future.result(timeout=self.timeout_s)
        except FutureTimeoutError as exc:
            future.cancel()
            logger.error("vector_store_timeout", operation=operation, timeout_s=self.timeout_s)
            raise UpstreamError(f"vector store {operation} timed out after {self.timeout_s}s", source="vector_store") from exc
        except Exception as exc:
            logger.error("vector_store_failed", operation=operation, error=str(exc))
            raise UpstreamError(f"vector store {operation} failed: {exc}", source="vector_store") from exc

    def query_similar(self, vector: Sequence[float], file_id: str, top_k: int) -> list[SimilarityResult]:
        if top_k <= 0:
            return []
        raw = self._call(
            "query",
            lambda: self._collection.query(
                query_embeddings=[[float(v) for v in vector]],
                n_results=int(top_k),
                where={"file_id": file_id},
                include=["documents", "metadatas", "distances"],
            ),
        )
        ids = (raw.get("ids") or [[]])[0]
        documents = (raw.get("documents") or [[]])[0] or []
        metadatas = (raw.get("metadatas") or [[]])[0] or []
        distances = (raw.get("distances") or [[]])[0] or []
        results = []
        for idx, chunk_id in enumerate(ids):
            results.append(SimilarityResult(
                chunk_id=chunk_id,
                # Collection is created in cosine space, so this is already 1 - similarity.
                distance=float(distances[idx]),
                text=documents[idx] if idx < len(documents) else "",
                metadata=dict(metadatas[idx] or {}) if idx < len(metadatas) else {},
                source="semantic",
            ))
        return results

    def _get_file_rows(self, file_id: str, include: list[str]) -> dict:
        return self._call(
            "get",
            lambda: self._collection.get(where={"file_id": file_id}, include=include),
        )

    def keyword_search(self, keywords: Sequence[str], file_id: str, top_k: int) -> list[SimilarityResult]:
        raw = self._get_file_rows(file_id, ["documents", "metadatas"])
        ids = raw.get("ids") or []
        documents = raw.get("documents") or []
        metadatas = raw.get("metadatas") or []
        candidates = (
            (chunk_id, documents[idx] or "", metadatas[idx] or {})
            for idx, chunk_id in enumerate(ids)
        )
        return rank_keyword_matches(candidates, keywords, top_k)

    def get_file_embeddings(self, file_id: str) -> list[ChunkEmbedding]:
        raw = self._get_file_rows(file_id, ["documents", "metadatas", "embeddings"])
        ids = raw.get("ids") or []
        embeddings = raw.get("embeddings")
        if embeddings is None:
            embeddings = []
        documents = raw.get("documents") or []
        metadatas = raw.get("metadatas") or []
        chunks = []
        for idx, chunk_id in enumerate(ids):
            if idx >= len(embeddings):
                break
            metadata = dict(metadatas[idx] or {}) if idx < len(metadatas) else {}
            chunks.append(ChunkEmbedding(
                chunk_id=chunk_id,
                vector=tuple(float(v) for v in embeddings[idx]),
                text=documents[idx] if idx < len(documents) else "",
                metadata=metadata,
            ))
        chunks.sort(key=lambda chunk: int(chunk.metadata.get("chunk_index", 0)))
        return chunks

    def upsert(self, chunks: Sequence[ChunkEmbedding]) -> int:
        if not chunks:
            return 0
        self._call(
            "upsert",
            lambda: self._collection.upsert(
                ids=[chunk.chunk_id for chunk in chunks],
                embeddings=[[float(v) for v in chunk.vector] for chunk in chunks],
                documents=[chunk.text for chunk in chunks],
                metadatas=[sanitize_metadata(chunk.metadata) for chunk in chunks],
            ),
        )
        logger.info("vector_store_upserted", count=len(chunks))
        return len(chunks)

    def chunk_ids(self, file_id: str) -> list[str]:
        return list(self._get_file_rows(file_id, []).get("ids") or [])

    def delete_chunks(self, chunk_ids: Sequence[str]) -> int:
        ids = list(chunk_ids)
        if ids:
            self._call("delete", lambda: self._collection.delete(ids=ids))
        return len(ids)

    def delete(self, file_id: str) -> int:
        removed = self.delete_chunks(self.chunk_ids(file_id))
        logger.info("vector_store_deleted", file_id=file_id, count=removed)
        return removed

    def close(self):
        self._executor.shutdown(wait=False, cancel_futures=True)

