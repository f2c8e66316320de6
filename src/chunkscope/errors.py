"""
Error taxonomy for the retrieval core.

Lookups signal "not found" through return values; NotFoundError exists for
callers that prefer raising once a miss becomes fatal for them.
"""
from __future__ import annotations


class ChunkscopeError(Exception):
    """Base class for every error raised by chunkscope."""


class ValidationError(ChunkscopeError, ValueError):
    """Malformed input to a similarity computation (length mismatch, empty or zero vector)."""


class NotFoundError(ChunkscopeError, LookupError):
    """A file index, cache entry or chunk does not exist."""


class UpstreamError(ChunkscopeError):
    """The embedding provider or the external vector store failed."""

    def __init__(self, message: str, *, source: str = ""):
        super().__init__(message)
        self.source = source


class EmptyResultError(ChunkscopeError):
    """Retrieval succeeded but produced no usable chunks."""

    def __init__(self, message: str, *, file_id: str = "", strategy: str = ""):
        super().__init__(message)
        self.file_id = file_id
        self.strategy = strategy
