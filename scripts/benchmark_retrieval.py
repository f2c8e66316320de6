"""
Retrieval benchmark on synthetic data.
Indexes a generated document, then measures latency with and without the
query cache and with adaptive versus fixed top-k under concurrent load.

Usage:  python scripts/benchmark_retrieval.py [num_queries] [concurrency] [embed_delay_ms]
"""
import hashlib
import sys
import time
from concurrent.futures import ThreadPoolExecutor, as_completed

import numpy as np
from langchain_core.embeddings import Embeddings

from chunkscope.config import RetrievalSettings
from chunkscope.errors import ChunkscopeError
from chunkscope.orchestrator import RetrievalOrchestrator

DIMENSIONS = 128
FILE_ID = "benchmark-doc"

TOPICS = [
    "wifi standards and wireless throughput",
    "battery chemistry and charge cycles",
    "database indexing and query planning",
    "network latency and packet loss",
    "memory allocation and garbage collection",
    "solar panels and inverter efficiency",
    "encryption keys and certificate rotation",
    "container orchestration and scheduling",
]

QUERIES = [
    "compare WiFi 5 and WiFi 6",
    "What is garbage collection?",
    "Summarize the document",
    "How does query planning use indexes?",
    "list the battery charge cycle stages",
    "What is certificate rotation?",
    "difference between packet loss and latency",
    "How do solar inverters work?",
]


class HashingEmbeddings(Embeddings):
    """Deterministic bag-of-words vectors with an artificial provider delay."""

    def __init__(self, delay_ms: float = 0.0):
        self.delay_s = delay_ms / 1000.0
        self.calls = 0

    def _embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.delay_s:
            time.sleep(self.delay_s)
        vector = np.zeros(DIMENSIONS)
        for token in text.lower().split():
            bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % DIMENSIONS
            vector[bucket] += 1.0
        vector[0] += 0.01
        return (vector / np.linalg.norm(vector)).tolist()

    def embed_documents(self, texts):
        return [self._embed(text) for text in texts]

    def embed_query(self, text):
        return self._embed(text)


def build_document(paragraphs_per_topic: int = 6) -> str:
    paragraphs = []
    for round_idx in range(paragraphs_per_topic):
        for topic in TOPICS:
            sentence = f"Section {round_idx + 1} discusses {topic}. "
            paragraphs.append((sentence * 12).strip())
    paragraphs.append(
        "# Comparison of WiFi Standards 5 6\nMax speed\n3.5 Gbps\n9.6 Gbps\nBands\n5 GHz\n2.4 and 5 GHz"
    )
    return "\n\n".join(paragraphs)


def run_queries(orchestrator: RetrievalOrchestrator, num_queries: int, concurrency: int) -> list[dict]:
    def _one(question: str) -> dict:
        start = time.perf_counter()
        try:
            outcome = orchestrator.retrieve(FILE_ID, question)
        except ChunkscopeError as exc:
            return {"success": False, "latency_ms": (time.perf_counter() - start) * 1000, "error": str(exc)}
        return {
            "success": True,
            "latency_ms": (time.perf_counter() - start) * 1000,
            "returned": len(outcome.chunks),
            "cache_hit": outcome.cache_hit,
        }

    results = []
    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        futures = [pool.submit(_one, QUERIES[i % len(QUERIES)]) for i in range(num_queries)]
        for f in as_completed(futures):
            results.append(f.result())
    return results


def report(label: str, results: list[dict], wall_elapsed: float, provider_calls: int):
    successes = [r for r in results if r["success"]]
    latencies = sorted(r["latency_ms"] for r in successes)
    returned = [r["returned"] for r in successes]
    print(f"\n  {label}")
    print(f"  {'-'*56}")
    print(f"  Queries:           {len(results)}  (failed: {len(results) - len(successes)})")
    print(f"  Provider calls:    {provider_calls}")
    print(f"  Cache hits:        {sum(1 for r in successes if r['cache_hit'])}")
    print(f"  Throughput:        {len(results) / wall_elapsed:.2f} q/s")
    if latencies:
        print(f"  Avg latency:       {sum(latencies)/len(latencies):.2f} ms")
        print(f"  P50 latency:       {latencies[len(latencies)//2]:.2f} ms")
        print(f"  P95 latency:       {latencies[int(len(latencies)*0.95)]:.2f} ms")
        print(f"  Avg chunks:        {sum(returned)/len(returned):.2f}")


def benchmark(label: str, settings: RetrievalSettings, num_queries: int, concurrency: int, delay_ms: float):
    embeddings = HashingEmbeddings(delay_ms)
    orchestrator = RetrievalOrchestrator.build(settings, embeddings, store=None, start_sweepers=False)
    try:
        orchestrator.document_processor().process(FILE_ID, build_document())
        embeddings.calls = 0
        wall_start = time.perf_counter()
        results = run_queries(orchestrator, num_queries, concurrency)
        report(label, results, time.perf_counter() - wall_start, embeddings.calls)
    finally:
        orchestrator.close()


def main():
    num_queries = int(sys.argv[1]) if len(sys.argv) > 1 else 200
    concurrency = int(sys.argv[2]) if len(sys.argv) > 2 else 4
    delay_ms = float(sys.argv[3]) if len(sys.argv) > 3 else 20.0

    print(f"\n{'='*60}")
    print(f"  chunkscope Retrieval Benchmark")
    print(f"  Queries: {num_queries}  |  Concurrency: {concurrency}  |  Embed delay: {delay_ms} ms")
    print(f"{'='*60}")

    base = RetrievalSettings()
    benchmark("Query cache ON, adaptive ON", base, num_queries, concurrency, delay_ms)
    benchmark(
        "Query cache OFF, adaptive ON",
        base.model_copy(update={"enable_query_cache": False}),
        num_queries,
        concurrency,
        delay_ms,
    )
    benchmark(
        "Query cache ON, adaptive OFF (fixed top-k)",
        base.model_copy(update={"enable_adaptive_retrieval": False}),
        num_queries,
        concurrency,
        delay_ms,
    )
    print(f"\n{'='*60}\n")


if __name__ == "__main__":
    main()
