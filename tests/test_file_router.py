import math
import unittest

from chunkscope.chunk_cache import ChunkEmbeddingCache
from chunkscope.file_router import FileVectorRouter
from chunkscope.models import ChunkEmbedding
from chunkscope.vector_math import cosine_distance


class _Clock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def _chunk(chunk_id, vector, text=""):
    return ChunkEmbedding(chunk_id=chunk_id, vector=tuple(vector), text=text or chunk_id, metadata={"file_id": "f"})


HOUR = 3600.0


class TestFileVectorRouterSearch(unittest.TestCase):
    def setUp(self):
        self.clock = _Clock()
        self.cache = ChunkEmbeddingCache(max_size=10)
        self.router = FileVectorRouter(self.cache, clock=self.clock, start_sweeper=False)
        self.router.add_or_sync_index("f", [
            _chunk("c0", [0.0, 1.0]),
            _chunk("c1", [1.0, 0.0]),
            _chunk("c2", [1.0, 1.0]),
            _chunk("c3", [2.0, 0.0]),
        ])

    def tearDown(self):
        self.router.close()

    def test_results_ascend_by_distance_and_ties_keep_scan_order(self):
        results = self.router.search_in_file("f", [1.0, 0.0], top_k=4)
        self.assertEqual([r.chunk_id for r in results], ["c1", "c3", "c2", "c0"])
        self.assertAlmostEqual(results[0].distance, 0.0)
        self.assertAlmostEqual(results[2].distance, 1 - 1 / math.sqrt(2))
        self.assertTrue(all(r.source == "semantic" for r in results))

    def test_top_k_truncates(self):
        self.assertEqual(len(self.router.search_in_file("f", [1.0, 0.0], top_k=2)), 2)
        self.assertEqual(self.router.search_in_file("f", [1.0, 0.0], top_k=0), [])

    def test_missing_index_returns_empty(self):
        self.assertEqual(self.router.search_in_file("other", [1.0, 0.0], top_k=3), [])

    def test_malformed_vectors_are_skipped(self):
        self.router.add_or_sync_index("bad", [
            _chunk("ok", [1.0, 0.0]),
            _chunk("wide", [1.0, 0.0, 0.0]),
            _chunk("zero", [0.0, 0.0]),
        ])
        results = self.router.search_in_file("bad", [1.0, 0.0], top_k=5)
        self.assertEqual([r.chunk_id for r in results], ["ok"])

    def test_restrict_to_scores_only_named_chunks(self):
        results = self.router.search_in_file("f", [1.0, 0.0], top_k=5, restrict_to=["c0", "c2"])
        self.assertEqual([r.chunk_id for r in results], ["c2", "c0"])

    def test_returned_chunks_are_reported_to_the_chunk_cache(self):
        self.router.search_in_file("f", [1.0, 0.0], top_k=2)
        self.router.search_in_file("f", [1.0, 0.0], top_k=1)
        self.assertEqual(self.cache.access_count("c1"), 2)
        self.assertEqual(self.cache.access_count("c3"), 1)
        self.assertEqual(self.cache.access_count("c0"), 0)

    def test_parallel_scoring_matches_sequential_order(self):
        chunks = [_chunk(f"p{i}", [math.cos(i * 0.07), math.sin(i * 0.07), 0.1 * (i % 3)]) for i in range(57)]
        self.router.add_or_sync_index("big", chunks)
        query = [0.3, 0.9, 0.2]
        expected = sorted(
            ((chunk.chunk_id, cosine_distance(query, chunk.vector)) for chunk in chunks),
            key=lambda item: item[1],
        )
        results = self.router.search_in_file("big", query, top_k=57)
        self.assertEqual([r.chunk_id for r in results], [chunk_id for chunk_id, _ in expected])


class TestFileVectorRouterLifecycle(unittest.TestCase):
    def setUp(self):
        self.clock = _Clock()
        self.router = FileVectorRouter(index_ttl_s=24 * HOUR, clock=self.clock, start_sweeper=False)

    def tearDown(self):
        self.router.close()

    def test_idle_index_is_evicted_after_ttl(self):
        self.router.add_or_sync_index("F", [_chunk("a", [1.0])])
        self.clock.advance(25 * HOUR)
        self.assertEqual(self.router.sweep_expired(), ["F"])
        self.assertFalse(self.router.has_index("F"))

    def test_lookup_refreshes_last_access(self):
        self.router.add_or_sync_index("F", [_chunk("a", [1.0])])
        self.clock.advance(20 * HOUR)
        self.router.get_index("F")
        self.clock.advance(20 * HOUR)
        self.assertEqual(self.router.sweep_expired(), [])
        self.assertTrue(self.router.has_index("F"))

    def test_resync_replaces_snapshot_and_keeps_creation_time(self):
        first = self.router.add_or_sync_index("F", [_chunk("a", [1.0])])
        self.clock.advance(5.0)
        second = self.router.add_or_sync_index("F", [_chunk("a", [1.0]), _chunk("b", [0.5])])
        self.assertEqual(first.chunk_count, 1)
        self.assertEqual(second.chunk_count, 2)
        self.assertEqual(second.created_at, 0.0)
        self.assertEqual(second.updated_at, 5.0)

    def test_requires_file_id(self):
        with self.assertRaises(ValueError):
            self.router.add_or_sync_index("", [])

    def test_warm_cache_skips_failing_files(self):
        def _provider(file_id):
            if file_id == "broken":
                raise RuntimeError("store offline")
            if file_id == "empty":
                return []
            return [_chunk(f"{file_id}_0", [1.0, 0.0])]

        warmed = self.router.warm_cache(["a", "broken", "empty", "b"], _provider)
        self.assertEqual(warmed, 2)
        self.assertEqual(self.router.indexed_file_ids(), ["a", "b"])

    def test_stats_remove_and_clear(self):
        self.router.add_or_sync_index("a", [_chunk("a_0", [1.0]), _chunk("a_1", [1.0])])
        self.router.add_or_sync_index("b", [_chunk("b_0", [1.0])])
        self.assertEqual(self.router.stats(), {"indexed_files": 2, "total_chunks": 3, "max_age_hours": 24.0})
        self.assertTrue(self.router.remove_index("a"))
        self.assertFalse(self.router.remove_index("a"))
        self.router.clear()
        self.assertEqual(self.router.indexed_file_ids(), [])

    def test_close_is_idempotent(self):
        router = FileVectorRouter(sweep_interval_s=0.01)
        router.close()
        router.close()


if __name__ == "__main__":
    unittest.main()
