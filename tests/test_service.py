"""
Knowledge Base Facade Tests

- add_record chunking, ids and metadata
- reset and stats
- Default query parameters
"""

import pytest

from knowledge_pipeline.ingestion.chunker import Chunker
from knowledge_pipeline.knowledge.query import KnowledgeQuery
from knowledge_pipeline.knowledge.seeder import SeedState
from knowledge_pipeline.knowledge.service import KnowledgeBase


@pytest.fixture
def knowledge_base(make_seeder, stub_embedder, vector_index):
    return KnowledgeBase(
        seeder=make_seeder(),
        searcher=KnowledgeQuery(stub_embedder, vector_index, "test-kb"),
        chunker=Chunker(max_size=200, overlap=20),
        embedder=stub_embedder,
        index=vector_index,
        index_name="test-kb",
        default_top_k=2,
        default_min_score=0.5,
    )


class TestAddRecord:
    """Tests for KnowledgeBase.add_record."""

    @pytest.mark.asyncio
    async def test_adds_topic_record(self, knowledge_base, vector_index):
        written = await knowledge_base.add_record(
            "BioSynth", "BioSynth Corporation makes enzymes."
        )

        assert written == 1
        [record] = vector_index.upserts[0]
        assert record.id.startswith("knowledge/")
        assert record.id.endswith("#0")
        assert record.metadata["topic"] == "BioSynth"
        assert record.metadata["source"] == "topic:BioSynth"
        assert record.metadata["text"].startswith("Topic: BioSynth\n\n")

    @pytest.mark.asyncio
    async def test_same_content_is_idempotent(self, knowledge_base, vector_index):
        await knowledge_base.add_record("Ops", "Restart the worker nightly.")
        await knowledge_base.add_record("Ops", "Restart the worker nightly.")

        assert await vector_index.count("test-kb") == 1

    @pytest.mark.asyncio
    async def test_different_content_appends(self, knowledge_base, vector_index):
        await knowledge_base.add_record("Ops", "Restart the worker nightly.")
        await knowledge_base.add_record("Ops", "Rotate logs weekly.")

        assert await vector_index.count("test-kb") == 2

    @pytest.mark.asyncio
    async def test_long_content_is_chunked(self, knowledge_base, vector_index):
        content = "Enzymes speed up reactions in living cells. " * 20

        written = await knowledge_base.add_record("Biology", content)

        assert written > 1
        ids = [r.id for r in vector_index.upserts[0]]
        assert [i.rsplit("#", 1)[1] for i in ids] == [str(n) for n in range(written)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("topic, content", [("", "body"), ("topic", "  "), (" ", "")])
    async def test_blank_input_rejected(self, knowledge_base, topic, content):
        with pytest.raises(ValueError):
            await knowledge_base.add_record(topic, content)

    @pytest.mark.asyncio
    async def test_added_record_is_queryable(self, knowledge_base):
        await knowledge_base.add_record("BioSynth", "BioSynth Corporation makes enzymes.")

        results = await knowledge_base.query("BioSynth enzymes", min_score=0.0)

        assert results
        assert results[0].metadata["topic"] == "BioSynth"


class TestLifecycle:
    """Tests for seed, stats, reset and query defaults."""

    @pytest.mark.asyncio
    async def test_stats_before_and_after_seed(self, knowledge_base, knowledge_dir):
        assert await knowledge_base.stats() is None

        (knowledge_dir / "a.md").write_text("alpha beta gamma", encoding="utf-8")
        report = await knowledge_base.seed_if_needed()

        assert report.state is SeedState.SEEDED
        stats = await knowledge_base.stats()
        assert stats.name == "test-kb"
        assert stats.count == 1

    @pytest.mark.asyncio
    async def test_reset_allows_reseed(self, knowledge_base, knowledge_dir, stub_embedder):
        (knowledge_dir / "a.md").write_text("alpha beta gamma", encoding="utf-8")
        await knowledge_base.seed_if_needed()

        assert await knowledge_base.reset() is True
        assert await knowledge_base.stats() is None

        report = await knowledge_base.seed_if_needed()

        assert report.state is SeedState.SEEDED
        assert not report.skipped
        assert len(stub_embedder.calls) == 2

    @pytest.mark.asyncio
    async def test_query_uses_defaults(self, knowledge_base):
        for n in range(4):
            await knowledge_base.add_record("shared", f"shared words entry {n}")

        results = await knowledge_base.query("shared words")

        assert len(results) == 2
