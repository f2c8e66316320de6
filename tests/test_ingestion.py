import unittest

from langchain_core.embeddings import Embeddings

from chunkscope.chunk_cache import ChunkEmbeddingCache
from chunkscope.chunker import ChunkerConfig, SemanticChunker, make_chunk_id
from chunkscope.document_processor import DocumentProcessor, detect_chunk_type, extract_table_metadata
from chunkscope.embeddings import CachedEmbeddingProvider
from chunkscope.errors import EmptyResultError, UpstreamError
from chunkscope.file_router import FileVectorRouter
from chunkscope.table_processor import TableProcessor, TextSegment, is_table_title
from chunkscope.text_normalizer import TextNormalizer, normalize_for_embedding

TABLE_FIXTURE = """
Here is some intro text.

# Comparison of Wi-Fi Standards 5 6 7
Feature:
Wi-Fi 5
Wi-Fi 6
Wi-Fi 7
Speed
3.5 Gbps
9.6 Gbps
46 Gbps
Latency
High
Low
Very Low

And some text after.
"""

INTRO = (
    "Wireless networking lets laptops and phones reach the internet without cables. "
    "Routers broadcast radio signals that client devices decode into network traffic."
)
OUTRO = (
    "Deployment guidance: place the router centrally, keep firmware current and "
    "prefer the five gigahertz band for dense apartments with many neighbours."
)


class _FakeEmbeddings(Embeddings):
    """Two-dimensional vectors; texts containing POISON fail."""

    def __init__(self):
        self.calls = 0

    def _embed(self, text):
        self.calls += 1
        if "POISON" in text:
            raise RuntimeError("provider rejected input")
        lowered = text.lower()
        return [1.0 if "wi-fi" in lowered else 0.2, 1.0 if "router" in lowered else 0.1]

    def embed_documents(self, texts):
        return [self._embed(text) for text in texts]

    def embed_query(self, text):
        return self._embed(text)


class _RecordingStore:
    def __init__(self):
        self.rows = {}
        self.upserted = []
        self.deleted = []
        self.deleted_chunks = []
        self.upsert_error = None

    def upsert(self, chunks):
        if self.upsert_error is not None:
            raise self.upsert_error
        self.upserted.extend(chunks)
        for chunk in chunks:
            self.rows[chunk.chunk_id] = chunk.metadata.get("file_id")
        return len(chunks)

    def chunk_ids(self, file_id):
        return [chunk_id for chunk_id, owner in self.rows.items() if owner == file_id]

    def delete_chunks(self, chunk_ids):
        self.deleted_chunks.extend(chunk_ids)
        for chunk_id in chunk_ids:
            self.rows.pop(chunk_id, None)
        return len(chunk_ids)

    def delete(self, file_id):
        self.deleted.append(file_id)
        return self.delete_chunks(self.chunk_ids(file_id))

    def query_similar(self, vector, file_id, top_k):
        return []

    def keyword_search(self, keywords, file_id, top_k):
        return []

    def get_file_embeddings(self, file_id):
        return []


class TestTextNormalizer(unittest.TestCase):
    def setUp(self):
        self.normalizer = TextNormalizer()

    def test_layout_artifacts_are_removed(self):
        text = "Intro line\r\nPage 3\r\nBody text here\n42\nCopyright © 2024 Acme\n*****\nEnd"
        self.assertEqual(self.normalizer.normalize(text), "Intro line\nBody text here\nEnd")

    def test_repeated_running_headers_are_removed(self):
        lines = ["Title", "ACME Report", "alpha", "ACME Report", "beta", "ACME Report", "gamma", "ACME Report", "end"]
        self.assertEqual(self.normalizer.normalize("\n".join(lines)), "Title\nalpha\nbeta\ngamma\nend")

    def test_whitespace_and_lists(self):
        self.assertEqual(self.normalizer.normalize("too    many \t spaces"), "too many spaces")
        self.assertEqual(self.normalizer.normalize("intro\n- item    one"), "intro\n- item one")
        self.assertEqual(self.normalizer.normalize("a\n\n\n\n\nb"), "a\n\nb")

    def test_cleanup_patterns(self):
        self.assertEqual(self.normalizer.normalize("infor-\nmation"), "information")
        self.assertEqual(self.normalizer.normalize("soft\u00adhyphen\u200b"), "softhyphen")
        self.assertEqual(self.normalizer.normalize("Wait..... What?? Yes!!!"), "Wait... What? Yes!")

    def test_normalize_for_embedding(self):
        self.assertEqual(normalize_for_embedding("  a \t b\r\n\n\n\nc "), "a b\n\nc")


class TestTableProcessor(unittest.TestCase):
    def test_comparison_table_is_restructured(self):
        segments = TableProcessor().process(TABLE_FIXTURE)

        self.assertEqual(len(segments), 3)
        self.assertFalse(segments[0].is_table)
        self.assertIn("intro text", segments[0].text)

        table = segments[1]
        self.assertTrue(table.is_table)
        self.assertIn("COMPARISON TABLE: Comparison of Wi-Fi Standards", table.text)
        self.assertIn("This table compares: Wi-Fi 5, Wi-Fi 6, Wi-Fi 7", table.text)
        self.assertIn("Wi-Fi 5: 3.5 Gbps", table.text)
        self.assertIn("Wi-Fi 7: Very Low", table.text)
        self.assertNotIn("Feature:", table.text)

        self.assertFalse(segments[2].is_table)
        self.assertIn("text after", segments[2].text)
        self.assertEqual(segments[0].end_char, table.start_char)
        self.assertEqual(table.end_char, segments[2].start_char)

    def test_plain_text_is_one_segment(self):
        segments = TableProcessor().process("No tables in here.")
        self.assertEqual(segments, [TextSegment("No tables in here.", 0, 18, False)])

    def test_title_detection(self):
        self.assertTrue(is_table_title("# Comparison of things"))
        self.assertTrue(is_table_title("Table of results"))
        self.assertTrue(is_table_title("WiFi 5-6-7"))
        self.assertTrue(is_table_title("apples vs oranges"))
        self.assertFalse(is_table_title("An ordinary sentence."))

    def test_column_helpers(self):
        self.assertEqual(TableProcessor.extract_column_count("Comparison of WiFi 5 6"), 2)
        self.assertEqual(TableProcessor.extract_column_count("cats vs dogs"), 2)
        self.assertEqual(TableProcessor.extract_column_names("Comparison of items", 2), ["Column 1", "Column 2"])
        self.assertEqual(TableProcessor.format_row("Feature:", ["a"], ["Column 1"]), "")

    def test_detected_column_count_without_title_numbers(self):
        lines = ["Speed", "fast", "slow", "Cost", "high", "low"]
        self.assertEqual(TableProcessor().detect_column_count(lines, 0), 2)


class TestSemanticChunker(unittest.TestCase):
    def test_split_respects_size_and_offsets(self):
        paragraphs = [
            f"Paragraph {i} explains one idea in plain words so the splitter has natural breaks to use."
            for i in range(12)
        ]
        text = "\n\n".join(paragraphs)
        chunker = SemanticChunker(ChunkerConfig(target_tokens=50, chars_per_token=4, min_chunk_size=20))
        chunks = chunker.split(text, "doc")

        self.assertGreater(len(chunks), 1)
        self.assertEqual([c.id for c in chunks], [make_chunk_id("doc", i) for i in range(len(chunks))])
        for chunk in chunks:
            self.assertLessEqual(len(chunk.text), 200)
            self.assertEqual(text[chunk.start_char:chunk.end_char], chunk.text)
            self.assertEqual(chunk.metadata["estimated_tokens"], len(chunk.text) // 4)

    def test_tables_stay_whole_and_tiny_fragments_are_dropped(self):
        segments = [
            TextSegment("tiny", 0, 4, False),
            TextSegment("COMPARISON TABLE: X\n" + "row\n" * 400, 4, 2000, True),
        ]
        chunks = SemanticChunker(ChunkerConfig(target_tokens=50)).split_segments(segments, "doc")
        self.assertEqual(len(chunks), 1)
        self.assertEqual(chunks[0].id, "doc_0")
        self.assertTrue(chunks[0].metadata["is_table"])
        self.assertEqual((chunks[0].start_char, chunks[0].end_char), (4, 2000))

    def test_config_sizes(self):
        config = ChunkerConfig()
        self.assertEqual((config.target_chars, config.overlap_chars), (4000, 600))


class TestChunkClassification(unittest.TestCase):
    def test_detect_chunk_type(self):
        self.assertEqual(detect_chunk_type("Cats versus dogs", []), "comparison")
        self.assertEqual(detect_chunk_type("- item one\n- item two", []), "list")
        table = "\n".join(f"{name}  10  x  y  z" for name in ("name", "alpha", "beta", "gamma"))
        self.assertEqual(detect_chunk_type(table, []), "table")
        self.assertEqual(detect_chunk_type("Short technical blurb.", ["a", "b", "c", "d", "e", "f"]), "technical")
        self.assertEqual(detect_chunk_type("A quiet story about rain.", ["quiet"]), "narrative")

    def test_extract_table_metadata(self):
        text = "Comparison of WiFi 5 and WiFi 6\n• Wi-Fi 6: 2019\nRelease Year:"
        terms = extract_table_metadata(text)
        self.assertEqual(terms[:5], ["wifi", "wifi 5", "wifi", "wifi 6", "comparison"])
        self.assertIn("wi-fi 6", terms)
        self.assertIn("release", terms)
        self.assertIn("year", terms)


class TestDocumentProcessor(unittest.TestCase):
    def setUp(self):
        self.embeddings = _FakeEmbeddings()
        self.store = _RecordingStore()
        self.cache = ChunkEmbeddingCache(max_size=10)
        self.router = FileVectorRouter(self.cache, start_sweeper=False)
        self.processor = DocumentProcessor(
            CachedEmbeddingProvider(self.embeddings),
            store=self.store,
            router=self.router,
            chunk_cache=self.cache,
        )

    def tearDown(self):
        self.router.close()

    def _document(self, outro=OUTRO):
        return INTRO + "\n\n" + TABLE_FIXTURE.replace("Here is some intro text.\n", "").strip() + "\n\n" + outro

    def test_process_indexes_every_chunk(self):
        report = self.processor.process("f", self._document())

        self.assertEqual((report.chunk_count, report.embedded, report.skipped), (3, 3, []))
        self.assertEqual((self.store.deleted, self.store.deleted_chunks), ([], []))
        self.assertEqual([c.chunk_id for c in self.store.upserted], ["f_0", "f_1", "f_2"])
        index, found = self.router.get_index("f")
        self.assertTrue(found)
        self.assertEqual(index.chunk_count, 3)
        self.assertEqual(len(self.cache), 3)

        table = self.store.upserted[1]
        self.assertTrue(table.text.startswith("COMPARISON TABLE:"))
        self.assertEqual(table.metadata["chunk_type"], "comparison")
        self.assertIn("comparison", table.metadata["key_terms"].split(","))
        self.assertEqual(table.metadata["term_count"], len(table.metadata["key_terms"].split(",")))
        for position, chunk in enumerate(self.store.upserted):
            self.assertEqual(chunk.metadata["file_id"], "f")
            self.assertEqual(chunk.metadata["chunk_index"], position)
            self.assertLess(chunk.metadata["start_char"], chunk.metadata["end_char"])

    def test_failed_chunk_embeddings_are_skipped(self):
        report = self.processor.process("f", self._document(outro=OUTRO + " POISON"))
        self.assertEqual(report.embedded, 2)
        self.assertEqual(report.skipped, ["f_2"])
        self.assertEqual([c.chunk_id for c in self.store.upserted], ["f_0", "f_1"])

    def test_document_fails_when_nothing_embeds(self):
        with self.assertRaises(UpstreamError):
            self.processor.process("f", INTRO + " POISON")
        self.assertEqual(self.store.upserted, [])

    def test_empty_document(self):
        with self.assertRaises(EmptyResultError):
            self.processor.process("f", "   \n\n  ")
        with self.assertRaises(ValueError):
            self.processor.process("", INTRO)

    def test_delete_drops_index_and_cached_vectors(self):
        self.processor.process("f", self._document())
        self.assertEqual(self.processor.delete("f"), 3)
        self.assertFalse(self.router.has_index("f"))
        self.assertEqual(len(self.cache), 0)
        self.assertEqual(self.store.deleted, ["f"])
        self.assertEqual(self.store.rows, {})

    def test_failed_upsert_keeps_the_previous_version(self):
        self.processor.process("f", self._document())
        rows_before = dict(self.store.rows)
        self.store.upsert_error = UpstreamError("store down", source="vector_store")

        with self.assertRaises(UpstreamError):
            self.processor.process("f", INTRO)
        self.assertEqual(self.store.rows, rows_before)
        self.assertEqual(self.store.deleted_chunks, [])
        index, found = self.router.get_index("f")
        self.assertTrue(found)
        self.assertEqual(index.chunk_count, 3)

    def test_reprocessing_a_shorter_document_drops_only_stale_chunks(self):
        self.processor.process("f", self._document())
        self.processor.process("other", INTRO)
        report = self.processor.process("f", INTRO)

        self.assertEqual(report.embedded, 1)
        self.assertEqual(self.store.deleted_chunks, ["f_1", "f_2"])
        self.assertEqual(sorted(self.store.rows), ["f_0", "other_0"])
        index, _ = self.router.get_index("f")
        self.assertEqual(index.chunk_count, 1)
        self.assertNotIn("f_1", self.cache)
        self.assertNotIn("f_2", self.cache)
        self.assertIn("f_0", self.cache)


if __name__ == "__main__":
    unittest.main()
