"""
Retrieval metrics collector.

Tracks: latency, throughput, memory usage, query-cache hit rate, adaptive
top-k choices, strategy mix, error count.
Logs one JSON line per query to <log_dir>/retrieval_metrics.jsonl.
"""
from __future__ import annotations

import json
import os
import threading
import time
from collections import Counter, deque
from pathlib import Path

import psutil

from .observability import get_logger

logger = get_logger(__name__)

TOP_K_HISTORY_SIZE = 100


class RetrievalMetrics:
    """Thread-safe per-query metrics tracker with JSONL file logging."""

    def __init__(self, log_dir: str | Path | None = None):
        self._lock = threading.Lock()
        self._start_time: float = time.time()

        # Counters.
        self._total_queries: int = 0
        self._total_latency_ms: float = 0.0
        self._error_count: int = 0
        self._min_latency_ms: float = float("inf")
        self._max_latency_ms: float = 0.0
        self._cache_hits: int = 0

        # Retrieval shape.
        self._top_k_history: deque[int] = deque(maxlen=TOP_K_HISTORY_SIZE)
        self._strategies: Counter[str] = Counter()
        self._intents: Counter[str] = Counter()

        # Logging; no directory means in-memory only.
        self._log_path: Path | None = None
        if log_dir is not None:
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)
            self._log_path = log_dir / "retrieval_metrics.jsonl"

        # Process handle for memory tracking.
        self._process = psutil.Process(os.getpid())

    @property
    def log_path(self) -> Path | None:
        return self._log_path

    def record_query(
        self,
        latency_ms: float,
        success: bool,
        cache_hit: bool = False,
        top_k: int = 0,
        strategy: str = "",
        intent: str = "",
    ) -> None:
        """Records a single retrieval's outcome and appends to the JSONL log."""
        entry = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
            "latency_ms": round(latency_ms, 2),
            "success": success,
            "cache_hit": cache_hit,
            "top_k": top_k,
            "strategy": strategy,
            "intent": intent,
        }

        with self._lock:
            self._total_queries += 1
            self._total_latency_ms += latency_ms
            if latency_ms < self._min_latency_ms:
                self._min_latency_ms = latency_ms
            if latency_ms > self._max_latency_ms:
                self._max_latency_ms = latency_ms
            if not success:
                self._error_count += 1
            if cache_hit:
                self._cache_hits += 1
            if success:
                self._top_k_history.append(int(top_k))
            if strategy:
                self._strategies[strategy] += 1
            if intent:
                self._intents[intent] += 1

        if self._log_path is None:
            return
        # Append to JSONL file outside the lock.
        try:
            with open(self._log_path, "a", encoding="utf-8") as fh:
                fh.write(json.dumps(entry, ensure_ascii=True) + "\n")
        except OSError as exc:
            logger.warning("metrics_write_failed", path=str(self._log_path), error=str(exc))

    def get_summary(self) -> dict:
        """Returns comprehensive metrics snapshot."""
        with self._lock:
            total = self._total_queries
            avg_lat = (self._total_latency_ms / total) if total > 0 else 0.0
            min_lat = self._min_latency_ms if total > 0 else 0.0
            max_lat = self._max_latency_ms if total > 0 else 0.0
            errors = self._error_count
            hits = self._cache_hits
            history = list(self._top_k_history)
            strategies = dict(self._strategies)
            intents = dict(self._intents)

        # Throughput.
        uptime_s = time.time() - self._start_time
        throughput_qps = (total / uptime_s) if uptime_s > 0 else 0.0

        # Memory usage.
        mem_info = self._process.memory_info()
        mem_rss_mb = mem_info.rss / (1024 * 1024)
        mem_vms_mb = mem_info.vms / (1024 * 1024)

        return {
            "latency": {
                "avg_ms": round(avg_lat, 2),
                "min_ms": round(min_lat, 2),
                "max_ms": round(max_lat, 2),
            },
            "throughput": {
                "total_queries": total,
                "queries_per_second": round(throughput_qps, 4),
                "uptime_seconds": round(uptime_s, 1),
            },
            "memory": {
                "rss_mb": round(mem_rss_mb, 1),
                "vms_mb": round(mem_vms_mb, 1),
            },
            "cache": {
                "hits": hits,
                "hit_rate_percent": round((hits / total * 100) if total > 0 else 0.0, 2),
            },
            "adaptive": {
                "recent_top_k": history,
                "avg_top_k": round(sum(history) / len(history), 2) if history else 0.0,
            },
            "strategies": strategies,
            "intents": intents,
            "errors": {
                "count": errors,
                "rate_percent": round((errors / total * 100) if total > 0 else 0.0, 2),
            },
        }
