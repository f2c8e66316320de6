import unittest

from chunkscope.errors import UpstreamError
from chunkscope.file_router import FileVectorRouter
from chunkscope.fusion import ChunkDeduplicator, HybridSearchFusion, reciprocal_rank_fusion
from chunkscope.keyword_search import keyword_score, rank_keyword_matches
from chunkscope.models import ChunkEmbedding, SimilarityResult
from chunkscope.ranking_rules import (
    definition_prominence,
    is_specific_table_query,
    prioritize_comparison_chunks,
    promote_definition_match,
)


def _result(chunk_id, distance, source="semantic", text="", chunk_type=""):
    metadata = {"chunk_type": chunk_type} if chunk_type else {}
    return SimilarityResult(chunk_id=chunk_id, distance=distance, text=text or chunk_id, metadata=metadata, source=source)


class _FakeStore:
    def __init__(self, semantic=None, keyword=None, embeddings=None, keyword_error=None):
        self.semantic = semantic or []
        self.keyword = keyword or []
        self.embeddings = embeddings or []
        self.keyword_error = keyword_error
        self.calls = []

    def query_similar(self, vector, file_id, top_k):
        self.calls.append("query_similar")
        return self.semantic[:top_k]

    def keyword_search(self, keywords, file_id, top_k):
        self.calls.append("keyword_search")
        if self.keyword_error is not None:
            raise self.keyword_error
        return self.keyword[:top_k]

    def get_file_embeddings(self, file_id):
        self.calls.append("get_file_embeddings")
        return list(self.embeddings)

    def upsert(self, chunks):
        return len(chunks)

    def delete(self, file_id):
        return 0

    def chunk_ids(self, file_id):
        return [chunk.chunk_id for chunk in self.embeddings]

    def delete_chunks(self, chunk_ids):
        return len(chunk_ids)


class TestChunkDeduplicator(unittest.TestCase):
    def setUp(self):
        self.dedup = ChunkDeduplicator()

    def test_keeps_lowest_distance_in_first_seen_position(self):
        results = [_result("a", 0.5), _result("b", 0.3), _result("a", 0.2)]
        deduped = self.dedup.deduplicate(results)
        self.assertEqual([(r.chunk_id, r.distance) for r in deduped], [("a", 0.2), ("b", 0.3)])

    def test_idempotent(self):
        results = [_result("a", 0.5), _result("b", 0.3), _result("a", 0.2), _result("b", 0.9)]
        once = self.dedup.deduplicate(results)
        self.assertEqual(self.dedup.deduplicate(once), once)

    def test_rank_and_merge(self):
        merged = self.dedup.rank_and_merge(
            [[_result("a", 0.4), _result("b", 0.1)], [_result("c", 0.2), _result("a", 0.05)]],
            max_results=2,
        )
        self.assertEqual([r.chunk_id for r in merged], ["a", "b"])
        self.assertEqual(self.dedup.rank_and_merge([[_result("a", 0.1)]], 0), [])


class TestReciprocalRankFusion(unittest.TestCase):
    def test_fusion_order(self):
        semantic = [_result("c1", 0.1), _result("c2", 0.2), _result("c3", 0.3)]
        keyword = [_result("c3", 0.0, "keyword"), _result("c1", 0.3, "keyword"), _result("c4", 0.5, "keyword")]
        fused = reciprocal_rank_fusion(semantic, keyword, top_k=10, k=60)

        self.assertEqual([r.chunk_id for r in fused], ["c1", "c3", "c2", "c4"])
        self.assertAlmostEqual(fused[0].rrf_score, 1 / 61 + 1 / 62)
        self.assertAlmostEqual(fused[0].distance, 1 / (1 / 61 + 1 / 62))
        self.assertTrue(all(r.source == "fused" for r in fused))
        self.assertAlmostEqual(fused[1].semantic_distance, 0.3)
        self.assertIsNone(fused[3].semantic_distance)

    def test_duplicates_within_a_list_count_once(self):
        fused = reciprocal_rank_fusion([_result("a", 0.1), _result("a", 0.2)], [], top_k=5)
        self.assertEqual(len(fused), 1)
        self.assertAlmostEqual(fused[0].rrf_score, 1 / 61)

    def test_truncates_to_top_k(self):
        semantic = [_result(f"s{i}", 0.1 * i) for i in range(6)]
        self.assertEqual(len(reciprocal_rank_fusion(semantic, [], top_k=3)), 3)


class TestKeywordScoring(unittest.TestCase):
    def test_body_outweighs_metadata(self):
        score, matched = keyword_score("WiFi 6 is fast", {"key_terms": "wifi,wifi 6"}, ["wifi", "6", "slow"])
        self.assertEqual((score, matched), (30, 2))
        self.assertEqual(keyword_score("plain", {"key_terms": "wifi"}, ["wifi"]), (5, 1))

    def test_rank_only_matching_chunks(self):
        candidates = [
            ("a", "nothing relevant", {}),
            ("b", "wifi only", {}),
            ("c", "wifi and bluetooth", {"key_terms": "wifi,bluetooth"}),
        ]
        ranked = rank_keyword_matches(candidates, ["wifi", "bluetooth"], top_k=5)
        self.assertEqual([r.chunk_id for r in ranked], ["c", "b"])
        self.assertAlmostEqual(ranked[0].distance, 0.0)
        self.assertAlmostEqual(ranked[1].distance, 1 - 10 / 30)
        self.assertEqual(ranked[0].source, "keyword")
        self.assertEqual(rank_keyword_matches(candidates, [], top_k=5), [])


class TestHybridSearchFusion(unittest.TestCase):
    def test_keyword_failure_falls_back_to_semantic(self):
        semantic = [_result("a", 0.1), _result("b", 0.2), _result("c", 0.3)]
        store = _FakeStore(semantic=semantic, keyword_error=UpstreamError("down"))
        fusion = HybridSearchFusion(store)
        results = fusion.hybrid_search([1.0, 0.0], ["wifi"], "f", top_k=2)
        self.assertEqual([r.chunk_id for r in results], ["a", "b"])
        self.assertTrue(all(r.source == "semantic" for r in results))

    def test_programming_errors_in_keyword_search_propagate(self):
        store = _FakeStore(semantic=[_result("a", 0.1)], keyword_error=TypeError("bad keywords"))
        with self.assertRaises(TypeError):
            HybridSearchFusion(store).hybrid_search([1.0, 0.0], ["wifi"], "f", top_k=2)

    def test_hybrid_uses_half_top_k_for_keywords(self):
        store = _FakeStore(
            semantic=[_result("a", 0.1), _result("b", 0.2)],
            keyword=[_result(f"k{i}", 0.0, "keyword") for i in range(5)],
        )
        fused = HybridSearchFusion(store).hybrid_search([1.0], ["x"], "f", top_k=4)
        self.assertEqual({r.chunk_id for r in fused}, {"a", "b", "k0", "k1"})

    def test_router_index_is_loaded_lazily_from_the_store(self):
        embeddings = [
            ChunkEmbedding("f_0", (1.0, 0.0), "wifi 6 text", {"key_terms": "wifi"}),
            ChunkEmbedding("f_1", (0.0, 1.0), "battery text", {}),
        ]
        store = _FakeStore(embeddings=embeddings)
        router = FileVectorRouter(start_sweeper=False)
        try:
            fusion = HybridSearchFusion(store, router)
            results = fusion.semantic_search([1.0, 0.0], "f", top_k=2)
            self.assertEqual([r.chunk_id for r in results], ["f_0", "f_1"])
            self.assertTrue(router.has_index("f"))
            self.assertNotIn("query_similar", store.calls)

            keyword = fusion.keyword_search(["wifi"], "f", top_k=3)
            self.assertEqual([r.chunk_id for r in keyword], ["f_0"])
            self.assertNotIn("keyword_search", store.calls)
        finally:
            router.close()

    def test_store_fallback_without_routing(self):
        store = _FakeStore(semantic=[_result("s", 0.1)])
        router = FileVectorRouter(start_sweeper=False)
        try:
            fusion = HybridSearchFusion(store, router, enable_file_routing=False)
            self.assertEqual([r.chunk_id for r in fusion.semantic_search([1.0], "f", 3)], ["s"])
            self.assertEqual(store.calls, ["query_similar"])
        finally:
            router.close()

    def test_no_store_and_no_index_is_an_upstream_error(self):
        router = FileVectorRouter(start_sweeper=False)
        try:
            with self.assertRaises(UpstreamError):
                HybridSearchFusion(None, router).semantic_search([1.0], "missing", 3)
        finally:
            router.close()


TABLE_TEXT = "COMPARISON TABLE: Comparison of WiFi 5 6\n\nThis table compares: Wi-Fi 5, Wi-Fi 6\n\nMax speed\n  Wi-Fi 5: 3.5 Gbps\n  Wi-Fi 6: 9.6 Gbps"


class TestComparisonRules(unittest.TestCase):
    def setUp(self):
        self.narrative = _result("n1", 0.1, text="WiFi history and 5 GHz bands", chunk_type="narrative")
        self.other_cmp = _result("c2", 0.2, text="WiFi 5 versus older standards", chunk_type="comparison")
        self.table = _result("t", 0.3, text=TABLE_TEXT, chunk_type="comparison")
        self.terms = ["wifi", "5", "6"]

    def test_perfect_table_match_moves_first(self):
        ordered = prioritize_comparison_chunks([self.narrative, self.other_cmp, self.table], self.terms, "compare WiFi 5 and WiFi 6")
        self.assertEqual([r.chunk_id for r in ordered], ["t", "c2", "n1"])

    def test_specific_table_query_collapses_to_one_chunk(self):
        ordered = prioritize_comparison_chunks([self.narrative, self.table], self.terms, "comparison of wifi 5 vs wifi 6")
        self.assertEqual([r.chunk_id for r in ordered], ["t"])

    def test_without_perfect_match_comparison_chunks_lead(self):
        ordered = prioritize_comparison_chunks([self.narrative, self.other_cmp], self.terms, "compare wifi 5 and 6")
        self.assertEqual([r.chunk_id for r in ordered], ["c2", "n1"])

    def test_specific_table_query_detection(self):
        self.assertTrue(is_specific_table_query("comparison of wifi 5 and 6", ["wifi", "5"]))
        self.assertTrue(is_specific_table_query("compare wifi 5 vs wifi 6", ["wifi", "5"]))
        self.assertFalse(is_specific_table_query("compare wifi 5 and wifi 6", ["wifi", "5"]))
        self.assertFalse(is_specific_table_query("comparison of wifi", ["wifi"]))


class TestDefinitionRules(unittest.TestCase):
    def test_prominence_scoring(self):
        self.assertEqual(definition_prominence("wifi is a family of protocols", "wifi"), 100 + 50 + 30 + 5)
        self.assertEqual(definition_prominence("nothing here", "wifi"), 0)
        self.assertEqual(definition_prominence("x" * 250 + " wifi", "wifi"), 10 + 5)

    def test_best_match_is_promoted(self):
        chunks = [
            _result("mention", 0.1, text="Routers support many standards including wifi."),
            _result("definition", 0.2, text="WiFi is a family of wireless protocols. WiFi uses radio."),
        ]
        ordered = promote_definition_match(chunks, ["wifi"])
        self.assertEqual([r.chunk_id for r in ordered], ["definition", "mention"])
        self.assertEqual(promote_definition_match(chunks, []), chunks)


if __name__ == "__main__":
    unittest.main()
