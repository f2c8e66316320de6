"""
Turns normalized document text into Chunks.

Tables restructured by TableProcessor are kept whole; ordinary prose goes
through LangChain's recursive splitter sized in approximate tokens.
"""
from __future__ import annotations

from dataclasses import dataclass

from langchain_core.documents import Document
from langchain_text_splitters import RecursiveCharacterTextSplitter

from .models import Chunk
from .table_processor import TextSegment


@dataclass(frozen=True)
class ChunkerConfig:
    target_tokens: int = 1000
    overlap_percent: float = 0.15
    chars_per_token: int = 4
    min_chunk_size: int = 100

    @property
    def target_chars(self) -> int:
        return self.target_tokens * self.chars_per_token

    @property
    def overlap_chars(self) -> int:
        return int(self.target_chars * min(0.5, max(0.0, self.overlap_percent)))


def make_chunk_id(document_id: str, ordinal: int) -> str:
    return f"{document_id}_{ordinal}"


class SemanticChunker:
    def __init__(self, config: ChunkerConfig | None = None):
        self.config = config or ChunkerConfig()
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=self.config.target_chars,
            chunk_overlap=self.config.overlap_chars,
            separators=["\n\n", "\n", ". ", " ", ""],
            add_start_index=True,
        )

    def _metadata(self, text: str) -> dict:
        return {"estimated_tokens": len(text) // self.config.chars_per_token}

    def _split_text_segment(self, segment: TextSegment) -> list[Document]:
        pieces = self._splitter.create_documents([segment.text])
        # Fragments below the minimum carry too little context to retrieve.
        return [doc for doc in pieces if len(doc.page_content.strip()) >= self.config.min_chunk_size]

    def split_segments(self, segments: list[TextSegment], document_id: str) -> list[Chunk]:
        chunks: list[Chunk] = []
        for segment in segments:
            if segment.is_table:
                text = segment.text
                chunks.append(Chunk(
                    id=make_chunk_id(document_id, len(chunks)),
                    text=text,
                    start_char=segment.start_char,
                    end_char=segment.end_char,
                    metadata=self._metadata(text) | {"is_table": True},
                ))
                continue

            for doc in self._split_text_segment(segment):
                text = doc.page_content.strip()
                start = segment.start_char + max(0, int(doc.metadata.get("start_index", 0) or 0))
                chunks.append(Chunk(
                    id=make_chunk_id(document_id, len(chunks)),
                    text=text,
                    start_char=start,
                    end_char=start + len(text),
                    metadata=self._metadata(text),
                ))
        return chunks

    def split(self, text: str, document_id: str) -> list[Chunk]:
        return self.split_segments([TextSegment(text, 0, len(text), False)], document_id)
