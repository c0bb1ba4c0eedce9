"""
Tests for RAGEngine

End-to-end behavior through the public API with the deterministic local
embedder and in-memory/file stores. No network, no database.

PATTERNS:
---------
1. Real components everywhere (hashing embeddings are already a test double)
2. Seeded HNSW for reproducible graphs
3. Failure injection through small store subclasses
"""

import asyncio
import re
import warnings
from datetime import datetime
from unittest.mock import patch

import numpy as np
import pytest
import pytest_asyncio

from local_rag.config import HNSWConfig, RAGConfig, reset_config
from local_rag.core.errors import (
    EngineNotInitializedError,
    IndexConsistencyWarning,
    StorageError,
    ValidationError,
)
from local_rag.core.protocols import RetrievedDocument
from local_rag.embeddings import HashingEmbeddings
from local_rag.engine import (
    NO_CONTEXT,
    EngineStats,
    RAGEngine,
    ReadWriteLock,
    create_engine,
    format_context,
)
from local_rag.retrieval import Document, FileVectorStore, InMemoryVectorStore

CHUNK_ID = re.compile(r"^\d{13}_\d+_[0-9a-z]{9}$")

PASSWORD_DOC = "How to reset your password: open account settings and choose reset password."
SHIPPING_DOC = "Shipping takes three to five business days and tracking numbers arrive by email."


def _region(phrase: str, length: int) -> str:
    """Repeat a phrase to exactly `length` chars, ending on a space."""
    return (phrase * (length // len(phrase) + 1))[: length - 1] + " "


def _config(**overrides) -> RAGConfig:
    return RAGConfig(hnsw=HNSWConfig(seed=7), **overrides)


# ---------------------------------------------------------------------------
# FIXTURES
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine():
    rag = create_engine(_config())
    await rag.initialize()
    yield rag
    await rag.close()


class FlakyStore(InMemoryVectorStore):
    """Fails every add after the first `allowed` writes."""

    def __init__(self, allowed: int):
        super().__init__()
        self.allowed = allowed

    async def add(self, doc):
        if self.allowed <= 0:
            raise StorageError("disk full")
        self.allowed -= 1
        return await super().add(doc)


# ---------------------------------------------------------------------------
# SCENARIOS
# ---------------------------------------------------------------------------


class TestScenarios:
    """The end-to-end scenarios the engine is built around."""

    @pytest.mark.asyncio
    async def test_three_chunk_document_retrieves_middle_chunk(self, engine):
        middle_phrase = "quarterly invoice reconciliation workflow "
        text = (
            _region("customer support refund policy ", 450)
            + _region(middle_phrase, 500)
            + _region("shipping carrier tracking labels ", 250)
        )
        assert len(text) == 1200

        ids = await engine.add_document({"text": text, "source": "manual.txt"})

        assert len(ids) == 3
        hits = await engine.retrieve(middle_phrase.strip())
        assert hits[0].id == ids[1]
        assert hits[0].similarity >= 0.65
        assert hits[0].full_text == text[450:950]

    @pytest.mark.asyncio
    async def test_every_chunk_retrievable_by_its_own_text(self, engine):
        text = (
            _region("alpha bravo charlie delta ", 450)
            + _region("echo foxtrot golf hotel ", 500)
            + _region("india juliet kilo lima ", 250)
        )
        ids = await engine.add_document({"text": text})

        for chunk_id in ids:
            stored = await engine.store.get(chunk_id)
            hits = await engine.retrieve(stored.text, top_k=1)
            assert hits[0].id == chunk_id
            assert hits[0].similarity >= 0.999

    @pytest.mark.asyncio
    async def test_empty_engine_returns_nothing(self, engine):
        assert await engine.retrieve("anything at all") == []
        assert await engine.generate_context("anything at all") is NO_CONTEXT


# ---------------------------------------------------------------------------
# INGESTION
# ---------------------------------------------------------------------------


class TestAddDocument:
    """Chunking, ids, metadata and validation."""

    @pytest.mark.asyncio
    async def test_short_document_single_chunk(self, engine):
        ids = await engine.add_document({"text": PASSWORD_DOC})
        assert len(ids) == 1
        assert CHUNK_ID.match(ids[0])
        assert ids[0].split("_")[1] == "0"

    @pytest.mark.asyncio
    async def test_chunk_metadata(self, engine):
        text = "word " * 240  # 1200 chars
        ids = await engine.add_document({
            "text": text,
            "category": "faq",
            "source": "faq.md",
            "metadata": {"lang": "en"},
        })

        for i, chunk_id in enumerate(ids):
            doc = await engine.store.get(chunk_id)
            assert doc.category == "faq"
            assert doc.source == "faq.md"
            assert doc.metadata == {
                "lang": "en",
                "chunk_index": i,
                "total_chunks": len(ids),
                "original_length": 1200,
            }
            assert doc.embedding.shape == (384,)
            assert engine.index.get_metadata(chunk_id) == {
                "text": doc.text,
                "category": "faq",
                "source": "faq.md",
            }

    @pytest.mark.asyncio
    async def test_accepts_document_input_model(self, engine):
        from local_rag.schemas import DocumentInput

        ids = await engine.add_document(DocumentInput(text=SHIPPING_DOC, category="shipping"))
        assert (await engine.store.get(ids[0])).category == "shipping"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("document", [
        {"text": "too short"},
        {"text": ""},
        {"category": "faq"},
        "just a string",
        {"text": PASSWORD_DOC, "metadata": {"when": datetime(2024, 1, 1)}},
    ])
    async def test_invalid_documents_rejected_without_side_effects(self, engine, document):
        with pytest.raises(ValidationError):
            await engine.add_document(document)
        assert await engine.store.count() == 0
        assert len(engine.index) == 0

    @pytest.mark.asyncio
    async def test_storage_failure_keeps_earlier_chunks(self):
        rag = create_engine(_config(), store=FlakyStore(allowed=1))
        await rag.initialize()

        with pytest.raises(StorageError):
            await rag.add_document({"text": "word " * 240})

        assert await rag.store.count() == 1
        assert len(rag.index) == 1
        assert rag.get_stats().documents_indexed == 1

    @pytest.mark.asyncio
    async def test_file_store_rejects_non_json_metadata(self, tmp_path):
        path = tmp_path / "vectors.json"
        async with create_engine(_config(), store=FileVectorStore(path)) as rag:
            with pytest.raises(ValidationError):
                await rag.add_document({"text": PASSWORD_DOC, "metadata": {"when": datetime(2024, 1, 1)}})

            [doc_id] = await rag.add_document({"text": SHIPPING_DOC, "metadata": {"tags": ["a", "b"]}})

            assert await rag.store.count() == len(rag.index) == 1
            assert (await rag.store.get(doc_id)).metadata["tags"] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_requires_initialize(self):
        rag = create_engine(_config())
        with pytest.raises(EngineNotInitializedError):
            await rag.add_document({"text": PASSWORD_DOC})
        with pytest.raises(EngineNotInitializedError):
            await rag.retrieve("password")


class TestImportBatch:
    @pytest.mark.asyncio
    async def test_skips_failures_and_counts_successes(self, engine):
        imported = await engine.import_batch([
            {"text": PASSWORD_DOC},
            {"text": "tiny"},
            {"text": SHIPPING_DOC},
        ])

        assert imported == 2
        assert await engine.store.count() == 2

    @pytest.mark.asyncio
    async def test_bad_metadata_item_skipped(self, tmp_path):
        async with create_engine(_config(), store=FileVectorStore(tmp_path / "vectors.json")) as rag:
            imported = await rag.import_batch([
                {"text": PASSWORD_DOC},
                {"text": SHIPPING_DOC, "metadata": {"seen": {1, 2}}},
                {"text": SHIPPING_DOC},
            ])

            assert imported == 2
            assert await rag.store.count() == len(rag.index) == 2

    @pytest.mark.asyncio
    async def test_accepts_generators(self, engine):
        docs = ({"text": f"{SHIPPING_DOC} Variant {i}."} for i in range(3))
        assert await engine.import_batch(docs) == 3


# ---------------------------------------------------------------------------
# RETRIEVAL
# ---------------------------------------------------------------------------


class TestRetrieve:
    """Filtering, hydration and option validation."""

    @pytest.mark.asyncio
    async def test_hits_are_hydrated(self, engine):
        [doc_id] = await engine.add_document({"text": PASSWORD_DOC, "source": "help.md"})

        hits = await engine.retrieve("reset password account settings", min_similarity=0.3)

        assert hits[0].id == doc_id
        assert hits[0].full_text == PASSWORD_DOC
        assert hits[0].source == "help.md"
        assert hits[0].timestamp is not None

    @pytest.mark.asyncio
    async def test_without_metadata_uses_index_text(self, engine):
        await engine.add_document({"text": PASSWORD_DOC})

        hits = await engine.retrieve(
            "reset password account settings", min_similarity=0.3, include_metadata=False
        )

        assert hits[0].full_text is None
        assert hits[0].text == PASSWORD_DOC

    @pytest.mark.asyncio
    async def test_category_filter(self, engine):
        await engine.add_document({"text": PASSWORD_DOC, "category": "faq"})
        [policy_id] = await engine.add_document({
            "text": PASSWORD_DOC + " Passwords expire yearly.",
            "category": "policy",
        })

        hits = await engine.retrieve("reset password", min_similarity=0.1, category="policy")

        assert [h.id for h in hits] == [policy_id]

    @pytest.mark.asyncio
    async def test_min_similarity_filter(self, engine):
        await engine.add_document({"text": PASSWORD_DOC})
        await engine.add_document({"text": SHIPPING_DOC})

        hits = await engine.retrieve("reset password account settings", min_similarity=0.5)

        assert len(hits) == 1
        assert all(h.similarity >= 0.5 for h in hits)

    @pytest.mark.asyncio
    async def test_top_k_truncates(self, engine):
        for i in range(6):
            await engine.add_document({"text": f"{PASSWORD_DOC} Note number {i}."})

        hits = await engine.retrieve("reset password", top_k=3, min_similarity=0.0)

        assert len(hits) == 3
        similarities = [h.similarity for h in hits]
        assert similarities == sorted(similarities, reverse=True)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("options", [
        {"top_k": 0},
        {"top_k": -1},
        {"min_similarity": 1.5},
        {"unknown_option": True},
    ])
    async def test_invalid_options_raise(self, engine, options):
        with pytest.raises(ValidationError):
            await engine.retrieve("password", **options)

    @pytest.mark.asyncio
    async def test_non_string_query_rejected(self, engine):
        with pytest.raises(ValidationError):
            await engine.retrieve(None)


class TestGenerateContext:
    @pytest.mark.asyncio
    async def test_formats_numbered_block(self, engine):
        await engine.add_document({"text": PASSWORD_DOC, "source": "help.md"})
        await engine.add_document({"text": PASSWORD_DOC + " Contact support if locked out."})

        context = await engine.generate_context("reset password account settings", min_similarity=0.3)

        assert context.startswith("RELEVANT CONTEXT:\n1. ")
        assert "\n\n2. " in context
        assert "[Source: help.md]" in context
        assert re.search(r"\[Relevance: \d+%\]", context)

    @pytest.mark.asyncio
    async def test_no_hits_returns_sentinel(self, engine):
        await engine.add_document({"text": SHIPPING_DOC})
        assert await engine.generate_context("reset password", min_similarity=0.9) is None


class TestFormatContext:
    """Pure formatting of retrieval hits."""

    def test_empty(self):
        assert format_context([]) is NO_CONTEXT

    def test_entry_layout(self):
        hits = [
            RetrievedDocument(id="a", similarity=0.874, full_text="First passage", source="a.md"),
            RetrievedDocument(id="b", similarity=0.7, metadata={"text": "Second passage"}),
        ]
        assert format_context(hits) == (
            "RELEVANT CONTEXT:\n"
            "1. First passage [Source: a.md] [Relevance: 87%]\n\n"
            "2. Second passage [Relevance: 70%]"
        )

    def test_falls_back_to_index_source(self):
        hit = RetrievedDocument(id="a", similarity=1.0, metadata={"text": "t", "source": "idx"})
        assert "[Source: idx]" in format_context([hit])


# ---------------------------------------------------------------------------
# REMOVAL
# ---------------------------------------------------------------------------


class TestRemoval:
    @pytest.mark.asyncio
    async def test_remove_document(self, engine):
        [doc_id] = await engine.add_document({"text": PASSWORD_DOC})

        assert await engine.remove_document(doc_id) is True

        assert await engine.store.get(doc_id) is None
        assert doc_id not in engine.index
        assert await engine.retrieve("reset password", min_similarity=0.0) == []
        assert engine.get_stats().documents_indexed == 0

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_store_and_index(self, tmp_path):
        path = tmp_path / "vectors.json"
        async with create_engine(_config(), store=FileVectorStore(path)) as rag:
            [doc_id] = await rag.add_document({"text": PASSWORD_DOC})

            with patch("local_rag.retrieval.store.os.replace", side_effect=OSError("read-only")):
                with pytest.raises(StorageError):
                    await rag.remove_document(doc_id)

            assert await rag.store.get(doc_id) is not None
            assert doc_id in rag.index
            assert rag.get_stats().documents_indexed == 1

    @pytest.mark.asyncio
    async def test_remove_unknown(self, engine):
        assert await engine.remove_document("missing") is False

    @pytest.mark.asyncio
    async def test_clear(self, engine):
        await engine.import_batch([{"text": PASSWORD_DOC}, {"text": SHIPPING_DOC}])

        await engine.clear()

        assert await engine.store.count() == 0
        assert len(engine.index) == 0
        assert engine.get_stats().documents_indexed == 0
        assert await engine.retrieve("password", min_similarity=0.0) == []


# ---------------------------------------------------------------------------
# STATS / EXPORT
# ---------------------------------------------------------------------------


class TestStatsAndExport:
    @pytest.mark.asyncio
    async def test_stats_track_activity(self, engine):
        await engine.add_document({"text": PASSWORD_DOC})
        await engine.retrieve("password")
        await engine.retrieve("shipping")

        stats = engine.get_stats()

        assert stats.documents_indexed == 1
        assert stats.queries_processed == 2
        assert stats.index_size == 1
        assert stats.embedding_cache_size == 3
        assert stats.avg_retrieval_ms >= 0

    def test_stats_to_dict(self):
        stats = EngineStats(documents_indexed=2, queries_processed=1, avg_retrieval_ms=12.345)
        assert stats.to_dict() == {
            "documents_indexed": 2,
            "queries_processed": 1,
            "avg_retrieval_time": "12.35ms",
            "index_size": 0,
            "embedding_cache_size": 0,
        }

    def test_running_average(self):
        stats = EngineStats()
        stats.record_query(10.0)
        stats.record_query(20.0)
        assert stats.avg_retrieval_ms == pytest.approx(15.0)

    @pytest.mark.asyncio
    async def test_export(self, engine):
        await engine.import_batch([{"text": PASSWORD_DOC}, {"text": SHIPPING_DOC}])

        dump = await engine.export()

        assert set(dump) == {"documents", "stats", "exported_at"}
        assert len(dump["documents"]) == 2
        assert len(dump["documents"][0]["embedding"]) == 384
        assert dump["stats"]["documents_indexed"] == 2
        assert dump["stats"]["avg_retrieval_time"].endswith("ms")
        assert datetime.fromisoformat(dump["exported_at"]).tzinfo is not None


# ---------------------------------------------------------------------------
# STARTUP / REBUILD
# ---------------------------------------------------------------------------


class TestInitialize:
    @pytest.mark.asyncio
    async def test_rebuild_skips_inconsistent_records(self):
        store = InMemoryVectorStore()
        good = HashingEmbeddings(384).embed_sync(PASSWORD_DOC)
        await store.add(Document(id="good", text=PASSWORD_DOC, embedding=good))
        await store.add(Document(id="short", text="bad vector", embedding=np.ones(10)))
        store._documents["orphan"] = Document(id="orphan", text="no vector", embedding=None)

        rag = create_engine(_config(), store=store)
        with pytest.warns(IndexConsistencyWarning):
            await rag.initialize()

        assert rag.index.ids() == ["good"]
        assert rag.get_stats().documents_indexed == 1
        hits = await rag.retrieve(PASSWORD_DOC)
        assert hits[0].id == "good"

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, engine):
        await engine.add_document({"text": PASSWORD_DOC})
        await engine.initialize()
        assert len(engine.index) == 1

    @pytest.mark.asyncio
    async def test_file_store_survives_restart(self, tmp_path):
        path = tmp_path / "vectors.json"

        async with create_engine(_config(), store=FileVectorStore(path)) as first:
            [doc_id] = await first.add_document({"text": SHIPPING_DOC, "source": "kb"})

        with warnings.catch_warnings():
            warnings.simplefilter("error", IndexConsistencyWarning)
            async with create_engine(_config(), store=FileVectorStore(path)) as second:
                hits = await second.retrieve("shipping tracking numbers email", min_similarity=0.3)

        assert hits[0].id == doc_id
        assert hits[0].source == "kb"


# ---------------------------------------------------------------------------
# CONCURRENCY
# ---------------------------------------------------------------------------


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_ingest_and_search(self, engine):
        docs = [{"text": f"{SHIPPING_DOC} Parcel reference {i}."} for i in range(20)]

        results = await asyncio.gather(
            *(engine.add_document(d) for d in docs),
            *(engine.retrieve("shipping parcel", min_similarity=0.0) for _ in range(10)),
        )

        ids = [chunk_id for r in results[:20] for chunk_id in r]
        assert len(ids) == 20
        assert len(engine.index) == await engine.store.count() == 20
        for hits in results[20:]:
            assert all(h.id in engine.index for h in hits)

    @pytest.mark.asyncio
    async def test_writer_excludes_readers(self):
        lock = ReadWriteLock()
        events = []

        async def writer():
            async with lock.write():
                events.append("write-start")
                await asyncio.sleep(0.02)
                events.append("write-end")

        async def reader():
            await asyncio.sleep(0.005)
            async with lock.read():
                events.append("read")

        await asyncio.gather(writer(), reader(), reader())

        assert events == ["write-start", "write-end", "read", "read"]

    @pytest.mark.asyncio
    async def test_readers_share(self):
        lock = ReadWriteLock()
        async with lock.read():
            async with lock.read():
                assert lock.readers == 2


# ---------------------------------------------------------------------------
# FACTORY
# ---------------------------------------------------------------------------


class TestCreateEngine:
    def test_invalid_config_rejected(self):
        with pytest.raises(ValidationError, match="chunk_overlap"):
            create_engine(RAGConfig(chunk_size=100, chunk_overlap=200))

    def test_dimension_mismatch_rejected(self):
        with pytest.raises(ValueError, match="dimensions"):
            create_engine(_config(), embeddings=HashingEmbeddings(16))

    def test_load_env(self, monkeypatch):
        monkeypatch.setenv("RAG_TOP_K", "9")
        try:
            with patch("local_rag.engine.factory.load_dotenv") as load:
                rag = create_engine(load_env=True)
            load.assert_called_once()
            assert rag.config.top_k == 9
        finally:
            reset_config()

    def test_builds_independent_engines(self):
        a = create_engine(_config())
        b = create_engine(_config())
        assert a.index is not b.index
        assert a.store is not b.store
        assert isinstance(a, RAGEngine)
