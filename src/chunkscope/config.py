# /chunkscope/config.py
"""
Centralized configuration for the retrieval engine.
Includes feature toggles, cache sizes and TTLs, adaptive thresholds, model names and paths.
Every optimization layer can be switched off from the environment without code changes.
"""
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field
from rich.console import Console

from .models import RetrievalStrategy
from .observability import configure_logging

# ==============================================================================
# CONSOLE & ENVIRONMENT
# ==============================================================================
console = Console()
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return bool(default)
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None:
        return int(default)
    try:
        value = int(raw)
    except ValueError:
        return int(default)
    return max(minimum, value)


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None:
        return float(default)
    try:
        value = float(raw)
    except ValueError:
        return float(default)
    return max(float(minimum), value)


# ==============================================================================
# GLOBAL CONFIGURATION
# ==============================================================================
# --- Optimization Layer Toggles ---
ENABLE_QUERY_CACHE = _env_bool("ENABLE_QUERY_CACHE", True)
ENABLE_CHUNK_CACHE = _env_bool("ENABLE_CHUNK_CACHE", True)
ENABLE_ADAPTIVE_RETRIEVAL = _env_bool("ENABLE_ADAPTIVE_RETRIEVAL", True)
ENABLE_FILE_ROUTING = _env_bool("ENABLE_FILE_ROUTING", True)

# --- Cache Tuning ---
CHUNK_CACHE_SIZE = _env_int("CHUNK_CACHE_SIZE", 1000, minimum=1)
QUERY_CACHE_TTL_MINUTES = _env_float("QUERY_CACHE_TTL_MINUTES", 60.0, minimum=0.01)
QUERY_CACHE_SWEEP_SECONDS = _env_float("QUERY_CACHE_SWEEP_SECONDS", 300.0, minimum=1.0)
QUERY_SIMILARITY_THRESHOLD = _env_float("QUERY_SIMILARITY_THRESHOLD", 0.95, minimum=0.0)
FILE_INDEX_TTL_HOURS = _env_float("FILE_INDEX_TTL_HOURS", 24.0, minimum=0.001)
FILE_INDEX_SWEEP_SECONDS = _env_float("FILE_INDEX_SWEEP_SECONDS", 600.0, minimum=1.0)

# --- Adaptive Retrieval ---
RAG_HIGH_THRESHOLD = _env_float("RAG_HIGH_THRESHOLD", 0.8)
RAG_MED_THRESHOLD = _env_float("RAG_MED_THRESHOLD", 0.5)
RAG_MIN_THRESHOLD = _env_float("RAG_MIN_THRESHOLD", 0.3)
RAG_CONTEXT_WINDOW = _env_int("RAG_CONTEXT_WINDOW", 4000, minimum=256)
RAG_MAX_CHUNKS = _env_int("RAG_MAX_CHUNKS", 10, minimum=1)
try:
    RAG_RETRIEVAL_STRATEGY = RetrievalStrategy(os.getenv("RAG_RETRIEVAL_STRATEGY", "adaptive").strip().lower())
except ValueError:
    RAG_RETRIEVAL_STRATEGY = RetrievalStrategy.ADAPTIVE
if RAG_MED_THRESHOLD > RAG_HIGH_THRESHOLD:
    RAG_MED_THRESHOLD = RAG_HIGH_THRESHOLD

# --- Search Tuning ---
RRF_K = _env_int("RRF_K", 60, minimum=1)
SEARCH_MAX_WORKERS = _env_int("SEARCH_MAX_WORKERS", 4, minimum=1)
VECTOR_STORE_TIMEOUT_S = _env_float("VECTOR_STORE_TIMEOUT_S", 60.0, minimum=1.0)
QUERY_EXPANSION_LIMIT = _env_int("QUERY_EXPANSION_LIMIT", 5, minimum=1)
QUERY_EXPANSION_TOP_K = _env_int("QUERY_EXPANSION_TOP_K", 3, minimum=1)

# --- Chunking Configuration ---
CHUNK_TARGET_TOKENS = _env_int("CHUNK_TARGET_TOKENS", 1000, minimum=32)
CHUNK_CHARS_PER_TOKEN = _env_int("CHUNK_CHARS_PER_TOKEN", 4, minimum=1)
CHUNK_OVERLAP_PERCENT = min(0.5, _env_float("CHUNK_OVERLAP_PERCENT", 0.15))
CHUNK_MIN_SIZE = _env_int("CHUNK_MIN_SIZE", 100, minimum=1)

# --- Model Names ---
EMBEDDING_BACKEND = os.getenv("EMBEDDING_BACKEND", "huggingface").strip().lower()
EMBEDDING_MODEL_NAME = os.getenv("EMBEDDING_MODEL_NAME", "sentence-transformers/all-MiniLM-L6-v2")
OLLAMA_EMBEDDING_MODEL = os.getenv("OLLAMA_EMBEDDING_MODEL", "nomic-embed-text")
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
EMBEDDING_DEVICE = os.getenv("EMBEDDING_DEVICE", "cpu")

# --- Path Configuration ---
# Data directory is at ../../data relative to this file (src/chunkscope/config.py)
_BASE_DIR = Path(__file__).resolve().parent.parent.parent
_DATA_DIR = _BASE_DIR / "data"

DB_PATH = os.getenv("DB_PATH", str(_DATA_DIR / "vector_store_db"))
CHROMA_COLLECTION = os.getenv("CHROMA_COLLECTION", "document_chunks")
CHROMA_HOST = os.getenv("CHROMA_HOST", "").strip()
CHROMA_PORT = _env_int("CHROMA_PORT", 8000, minimum=1)
CACHE_DIR = Path(os.getenv("CACHE_DIR", str(_DATA_DIR / "runtime_cache")))
METRICS_DIR = Path(os.getenv("METRICS_DIR", str(CACHE_DIR / "metrics")))

# --- Create necessary directories ---
CACHE_DIR.mkdir(parents=True, exist_ok=True)
LOG_PATH = Path(os.getenv("LOG_PATH", str(CACHE_DIR / "chunkscope.log")))
LOG_PATH.parent.mkdir(parents=True, exist_ok=True)
configure_logging(LOG_PATH)


class RetrievalSettings(BaseModel):
    """Snapshot of the tunables handed to the orchestrator and its collaborators."""

    model_config = ConfigDict(frozen=True)

    enable_query_cache: bool = True
    enable_chunk_cache: bool = True
    enable_adaptive_retrieval: bool = True
    enable_file_routing: bool = True

    chunk_cache_size: int = Field(default=1000, ge=1)
    query_cache_ttl_s: float = Field(default=3600.0, gt=0)
    query_cache_sweep_s: float = Field(default=300.0, gt=0)
    query_similarity_threshold: float = Field(default=0.95, ge=0.0, le=1.0)
    file_index_ttl_s: float = Field(default=86400.0, gt=0)
    file_index_sweep_s: float = Field(default=600.0, gt=0)

    high_threshold: float = 0.8
    medium_threshold: float = 0.5
    min_threshold: float = 0.3
    context_window: int = Field(default=4000, ge=1)
    max_chunks: int = Field(default=10, ge=1)
    # How the candidate list is resized once adaptive retrieval is enabled.
    retrieval_strategy: RetrievalStrategy = RetrievalStrategy.ADAPTIVE

    rrf_k: int = Field(default=60, ge=1)
    search_max_workers: int = Field(default=4, ge=1)
    store_timeout_s: float = Field(default=60.0, gt=0)
    expansion_limit: int = Field(default=5, ge=1)
    expansion_top_k: int = Field(default=3, ge=1)

    @property
    def min_top_k(self) -> int:
        return max(1, self.max_chunks // 4)

    @classmethod
    def from_env(cls) -> "RetrievalSettings":
        return cls(
            enable_query_cache=ENABLE_QUERY_CACHE,
            enable_chunk_cache=ENABLE_CHUNK_CACHE,
            enable_adaptive_retrieval=ENABLE_ADAPTIVE_RETRIEVAL,
            enable_file_routing=ENABLE_FILE_ROUTING,
            chunk_cache_size=CHUNK_CACHE_SIZE,
            query_cache_ttl_s=QUERY_CACHE_TTL_MINUTES * 60.0,
            query_cache_sweep_s=QUERY_CACHE_SWEEP_SECONDS,
            query_similarity_threshold=min(1.0, QUERY_SIMILARITY_THRESHOLD),
            file_index_ttl_s=FILE_INDEX_TTL_HOURS * 3600.0,
            file_index_sweep_s=FILE_INDEX_SWEEP_SECONDS,
            high_threshold=RAG_HIGH_THRESHOLD,
            medium_threshold=RAG_MED_THRESHOLD,
            min_threshold=RAG_MIN_THRESHOLD,
            context_window=RAG_CONTEXT_WINDOW,
            max_chunks=RAG_MAX_CHUNKS,
            retrieval_strategy=RAG_RETRIEVAL_STRATEGY,
            rrf_k=RRF_K,
            search_max_workers=SEARCH_MAX_WORKERS,
            store_timeout_s=VECTOR_STORE_TIMEOUT_S,
            expansion_limit=QUERY_EXPANSION_LIMIT,
            expansion_top_k=QUERY_EXPANSION_TOP_K,
        )
