"""
Ingestion pipeline: raw document text -> normalized chunks -> embeddings ->
vector store, in-memory file index and chunk cache.
"""
from __future__ import annotations

import re
import time
from dataclasses import dataclass, field

from .chunk_cache import ChunkEmbeddingCache
from .chunker import SemanticChunker
from .embeddings import CachedEmbeddingProvider
from .errors import EmptyResultError, UpstreamError
from .file_router import FileVectorRouter
from .key_terms import KeyTermExtractor
from .models import Chunk, ChunkEmbedding
from .observability import get_logger
from .table_processor import TableProcessor
from .text_normalizer import TextNormalizer, normalize_for_embedding
from .vector_store import VectorStore

logger = get_logger(__name__)

_COMPARISON_WORDS = ("comparison", "difference", "versus", "vs")
_LIST_RES = (
    re.compile(r"^\s*[\d•\-\*]"),
    re.compile(r"\n\s*[\d•\-\*]"),
    re.compile(r"(first|second|third|finally)"),
)
_TECH_VERSION_RE = re.compile(r"(wifi|wi-fi|802\.11[a-z]*)\s*(\d+|[a-z]{1,2})", flags=re.IGNORECASE)
_NON_WORD_RE = re.compile(r"[^\w\s-]")

TECHNICAL_MIN_TERMS = 5
TECHNICAL_MAX_WORDS = 200


def detect_chunk_type(text: str, key_terms: list[str]) -> str:
    """One of comparison, list, table, technical or narrative; checked in that order."""
    lowered = text.lower()
    if any(word in lowered for word in _COMPARISON_WORDS):
        return "comparison"

    if any(pattern.search(text) for pattern in _LIST_RES):
        return "list"

    lines = text.split("\n")
    if len(lines) > 3:
        columnar = sum(1 for line in lines if line.count("\t") > 1 or line.count("  ") > 3)
        if columnar > 2:
            return "table"

    if len(key_terms) > TECHNICAL_MIN_TERMS and len(text.split()) < TECHNICAL_MAX_WORDS:
        return "technical"
    return "narrative"


def extract_table_metadata(text: str) -> list[str]:
    """
    Extra search terms for restructured tables: technology names from
    comparison titles, bullet labels and long row-header words.
    """
    terms: list[str] = []
    for raw in text.split("\n"):
        line = raw.strip()

        if "comparison" in line.lower():
            for tech, version in _TECH_VERSION_RE.findall(line):
                tech = tech.lower()
                terms.extend((tech, f"{tech} {version}"))
            terms.append("comparison")

        if line.startswith(("•", "-")):
            parts = line.split(":")
            if len(parts) >= 2:
                label = _NON_WORD_RE.sub("", parts[0].strip().lstrip("•-").strip().lower())
                if len(label) > 2:
                    terms.append(label)

        if line.endswith(":") and not line.startswith("•"):
            header = line[:-1].lower()
            terms.extend(word for word in header.split() if len(word) >= 4)
    return terms


def _dedupe(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


@dataclass
class ProcessingReport:
    file_id: str
    chunk_count: int
    embedded: int
    skipped: list[str] = field(default_factory=list)
    elapsed_ms: float = 0.0


class DocumentProcessor:
    def __init__(
        self,
        embedder: CachedEmbeddingProvider,
        store: VectorStore | None = None,
        router: FileVectorRouter | None = None,
        chunk_cache: ChunkEmbeddingCache | None = None,
        normalizer: TextNormalizer | None = None,
        table_processor: TableProcessor | None = None,
        chunker: SemanticChunker | None = None,
        extractor: KeyTermExtractor | None = None,
    ):
        self.embedder = embedder
        self.store = store
        self.router = router
        self.chunk_cache = chunk_cache
        self.normalizer = normalizer or TextNormalizer()
        self.table_processor = table_processor or TableProcessor()
        self.chunker = chunker or SemanticChunker()
        self.extractor = extractor or KeyTermExtractor()

    def build_chunks(self, file_id: str, text: str) -> list[Chunk]:
        normalized = self.normalizer.normalize(text)
        if not normalized:
            return []
        segments = self.table_processor.process(normalized)
        return self.chunker.split_segments(segments, file_id)

    def chunk_metadata(self, file_id: str, index: int, chunk: Chunk) -> dict:
        key_terms = self.extractor.extract(chunk.text)
        table_terms = extract_table_metadata(chunk.text)
        if table_terms:
            key_terms = _dedupe(key_terms + table_terms)

        metadata = {
            "file_id": file_id,
            "chunk_index": index,
            "timestamp": int(time.time()),
            "start_char": chunk.start_char,
            "end_char": chunk.end_char,
        }
        if key_terms:
            metadata["key_terms"] = ",".join(key_terms)
            metadata["term_count"] = len(key_terms)
        metadata["chunk_type"] = detect_chunk_type(chunk.text, key_terms)
        metadata.update(chunk.metadata)
        return metadata

    def process(self, file_id: str, text: str) -> ProcessingReport:
        """
        Chunks, embeds and indexes one document. Chunks whose embedding fails
        are skipped; the document fails only when none can be embedded.
        Re-processing a file replaces its previous chunks everywhere, dropping
        only the ids the new version no longer has.
        """
        if not file_id:
            raise ValueError("file_id is required")
        started = time.perf_counter()

        chunks = self.build_chunks(file_id, text)
        if not chunks:
            raise EmptyResultError("no chunks created from text", file_id=file_id)
        logger.info("document_chunked", file_id=file_id, chunk_count=len(chunks))

        embedded: list[ChunkEmbedding] = []
        skipped: list[str] = []
        for index, chunk in enumerate(chunks):
            try:
                vector = self.embedder.embed_text(normalize_for_embedding(chunk.text))
            except UpstreamError as exc:
                logger.warning("chunk_embedding_failed", file_id=file_id, chunk_id=chunk.id, error=str(exc))
                skipped.append(chunk.id)
                continue
            metadata = self.chunk_metadata(file_id, index, chunk)
            embedded.append(ChunkEmbedding(
                chunk_id=chunk.id,
                vector=tuple(vector),
                text=chunk.text,
                metadata=metadata,
            ))

        if not embedded:
            raise UpstreamError(f"failed to generate any embeddings for {file_id}", source="embedding")

        # New rows land before stale ones go; a failed upsert leaves the previous version in place.
        new_ids = {chunk.chunk_id for chunk in embedded}
        previous_ids: set[str] = set()
        if self.router is not None:
            old_index, found = self.router.get_index(file_id)
            if found:
                previous_ids.update(chunk.chunk_id for chunk in old_index.chunks)
        if self.store is not None:
            stored_ids = set(self.store.chunk_ids(file_id))
            previous_ids |= stored_ids
            self.store.upsert(embedded)
            stale = sorted(stored_ids - new_ids)
            if stale:
                self.store.delete_chunks(stale)
        if self.router is not None:
            self.router.add_or_sync_index(file_id, embedded)
        if self.chunk_cache is not None:
            for chunk_id in sorted(previous_ids - new_ids):
                self.chunk_cache.delete(chunk_id)
            self.chunk_cache.warm({chunk.chunk_id: chunk.vector for chunk in embedded})

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "document_processed",
            file_id=file_id,
            chunk_count=len(chunks),
            embedded=len(embedded),
            skipped=len(skipped),
            elapsed_ms=round(elapsed_ms, 2),
        )
        return ProcessingReport(
            file_id=file_id,
            chunk_count=len(chunks),
            embedded=len(embedded),
            skipped=skipped,
            elapsed_ms=elapsed_ms,
        )

    def delete(self, file_id: str) -> int:
        """Drops a document from the store, the router and the chunk cache."""
        removed = 0
        chunk_ids: list[str] = []
        if self.router is not None:
            index, found = self.router.get_index(file_id)
            if found:
                chunk_ids = [chunk.chunk_id for chunk in index.chunks]
            self.router.remove_index(file_id)
        if self.store is not None:
            removed = self.store.delete(file_id)
        if self.chunk_cache is not None:
            for chunk_id in chunk_ids:
                self.chunk_cache.delete(chunk_id)
        logger.info("document_deleted", file_id=file_id, removed=removed)
        return max(removed, len(chunk_ids))
