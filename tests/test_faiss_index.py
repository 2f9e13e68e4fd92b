"""
FAISS Vector Index Tests

- create_index idempotence and conflict detection
- Upsert-by-id, dimension checks and atomicity
- Ranking, top_k, min_score and metadata filters
- Persistence across instances
"""

import pytest

from knowledge_pipeline.core.errors import (
    DimensionMismatchError,
    IndexConfigurationError,
    IndexNotFoundError,
    MetricMismatchError,
    VectorIndexError,
)
from knowledge_pipeline.embeddings.index import FaissVectorIndex
from knowledge_pipeline.embeddings.models import EmbeddingRecord


def _record(id, vector, **metadata):
    return EmbeddingRecord(id=id, vector=vector, metadata=metadata)


class _FailingAdd:
    """Wraps a FAISS index and fails the first add_with_ids call."""

    def __init__(self, inner):
        self.inner = inner
        self.failed = False

    def add_with_ids(self, vectors, ids):
        if not self.failed:
            self.failed = True
            raise RuntimeError("simulated FAISS failure")
        return self.inner.add_with_ids(vectors, ids)

    def __getattr__(self, name):
        return getattr(self.inner, name)


@pytest.fixture
def index(tmp_path):
    return FaissVectorIndex(tmp_path / "vectors")


class TestCreateIndex:
    """Tests for create_index."""

    @pytest.mark.asyncio
    async def test_create_is_idempotent(self, index):
        await index.create_index("kb", 3)
        await index.create_index("kb", 3)

        assert await index.exists("kb")
        assert await index.count("kb") == 0

    @pytest.mark.asyncio
    async def test_dimension_conflict(self, index):
        await index.create_index("kb", 3)

        with pytest.raises(DimensionMismatchError) as excinfo:
            await index.create_index("kb", 4)

        assert excinfo.value.expected == 3
        assert excinfo.value.actual == 4

    @pytest.mark.asyncio
    async def test_metric_conflict(self, index):
        await index.create_index("kb", 3, metric="cosine")

        with pytest.raises(MetricMismatchError):
            await index.create_index("kb", 3, metric="euclidean")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["", "has space", "../escape", "x" * 65])
    async def test_invalid_name(self, index, name):
        with pytest.raises(IndexConfigurationError):
            await index.create_index(name, 3)

    @pytest.mark.asyncio
    async def test_unsupported_metric(self, index):
        with pytest.raises(IndexConfigurationError):
            await index.create_index("kb", 3, metric="manhattan")

    @pytest.mark.asyncio
    async def test_non_positive_dimension(self, index):
        with pytest.raises(ValueError):
            await index.create_index("kb", 0)


class TestUpsert:
    """Tests for upsert."""

    @pytest.mark.asyncio
    async def test_unknown_index(self, index):
        with pytest.raises(IndexNotFoundError):
            await index.upsert("missing", [_record("a", [1.0, 0.0, 0.0])])

    @pytest.mark.asyncio
    async def test_wrong_dimension_writes_nothing(self, index):
        """Verify one bad vector rejects the whole batch."""
        await index.create_index("kb", 3)

        with pytest.raises(DimensionMismatchError):
            await index.upsert(
                "kb",
                [_record("a", [1.0, 0.0, 0.0]), _record("b", [1.0, 0.0])],
            )

        assert await index.count("kb") == 0

    @pytest.mark.asyncio
    async def test_upsert_replaces_by_id(self, index):
        await index.create_index("kb", 3)
        await index.upsert("kb", [_record("a", [1.0, 0.0, 0.0], text="old")])

        written = await index.upsert("kb", [_record("a", [0.0, 1.0, 0.0], text="new")])

        assert written == 1
        assert await index.count("kb") == 1
        results = await index.query("kb", [0.0, 1.0, 0.0], top_k=5)
        assert [r.id for r in results] == ["a"]
        assert results[0].text == "new"
        assert results[0].score == pytest.approx(1.0, abs=1e-5)

    @pytest.mark.asyncio
    async def test_duplicate_ids_in_batch_last_wins(self, index):
        await index.create_index("kb", 3)

        written = await index.upsert(
            "kb",
            [
                _record("a", [1.0, 0.0, 0.0], text="first"),
                _record("a", [0.0, 0.0, 1.0], text="second"),
            ],
        )

        assert written == 1
        results = await index.query("kb", [0.0, 0.0, 1.0], top_k=1)
        assert results[0].text == "second"

    @pytest.mark.asyncio
    async def test_empty_batch(self, index):
        await index.create_index("kb", 3)

        assert await index.upsert("kb", []) == 0

    @pytest.mark.asyncio
    async def test_failed_add_keeps_previous_vectors(self, index):
        """Verify a FAISS failure mid-upsert leaves the old record searchable."""
        await index.create_index("kb", 3)
        await index.upsert("kb", [_record("a", [1.0, 0.0, 0.0], text="old")])

        state = index._get_state("kb")
        healthy = state.index
        state.index = _FailingAdd(healthy)

        with pytest.raises(VectorIndexError):
            await index.upsert(
                "kb",
                [
                    _record("a", [0.0, 1.0, 0.0], text="new"),
                    _record("b", [0.0, 0.0, 1.0], text="added"),
                ],
            )

        state.index = healthy
        assert await index.count("kb") == 1
        results = await index.query("kb", [1.0, 0.0, 0.0], top_k=5)
        assert [r.id for r in results] == ["a"]
        assert results[0].text == "old"
        assert results[0].score == pytest.approx(1.0, abs=1e-5)

        await index.upsert("kb", [_record("b", [0.0, 0.0, 1.0])])
        assert await index.count("kb") == 2


class TestQuery:
    """Tests for query ranking and filtering."""

    @staticmethod
    async def _populate(index):
        await index.create_index("kb", 3)
        await index.upsert(
            "kb",
            [
                _record("x", [1.0, 0.0, 0.0], text="x-axis", group="a"),
                _record("xy", [1.0, 1.0, 0.0], text="diagonal", group="b"),
                _record("y", [0.0, 1.0, 0.0], text="y-axis", group="a"),
                _record("z", [0.0, 0.0, 1.0], text="z-axis", group="b"),
            ],
        )
        return index

    @pytest.mark.asyncio
    async def test_results_ordered_by_score(self, index):
        populated = await self._populate(index)

        results = await populated.query("kb", [1.0, 0.2, 0.0], top_k=4)

        assert [r.id for r in results][:3] == ["x", "xy", "y"]
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_top_k_limits_results(self, index):
        populated = await self._populate(index)

        results = await populated.query("kb", [1.0, 0.0, 0.0], top_k=2)

        assert len(results) == 2
        assert results[0].id == "x"

    @pytest.mark.asyncio
    async def test_min_score_filters_and_is_monotonic(self, index):
        """Verify raising min_score only ever removes results."""
        populated = await self._populate(index)

        vector = [1.0, 0.2, 0.0]
        loose = await populated.query("kb", vector, top_k=4, min_score=0.0)
        strict = await populated.query("kb", vector, top_k=4, min_score=0.9)

        assert {r.id for r in strict} <= {r.id for r in loose}
        assert all(r.score >= 0.9 for r in strict)
        assert [r.id for r in strict] == ["x"]

    @pytest.mark.asyncio
    async def test_metadata_filter(self, index):
        populated = await self._populate(index)

        results = await populated.query(
            "kb", [1.0, 0.0, 0.0], top_k=4, filter={"group": "b"}
        )

        assert [r.id for r in results] == ["xy", "z"]

    @pytest.mark.asyncio
    async def test_query_dimension_mismatch(self, index):
        populated = await self._populate(index)

        with pytest.raises(DimensionMismatchError):
            await populated.query("kb", [1.0, 0.0], top_k=1)

    @pytest.mark.asyncio
    async def test_unknown_index(self, index):
        with pytest.raises(IndexNotFoundError):
            await index.query("missing", [1.0, 0.0, 0.0])

    @pytest.mark.asyncio
    async def test_empty_index_returns_nothing(self, index):
        await index.create_index("kb", 3)

        assert await index.query("kb", [1.0, 0.0, 0.0]) == []

    @pytest.mark.asyncio
    async def test_euclidean_score(self, index):
        """Verify euclidean scores are 1 / (1 + distance)."""
        await index.create_index("kb", 2, metric="euclidean")
        await index.upsert(
            "kb",
            [_record("origin", [0.0, 0.0]), _record("far", [3.0, 4.0])],
        )

        results = await index.query("kb", [0.0, 0.0], top_k=2)

        assert [r.id for r in results] == ["origin", "far"]
        assert results[0].score == pytest.approx(1.0)
        assert results[1].score == pytest.approx(1.0 / 6.0)

    @pytest.mark.asyncio
    async def test_dotproduct_score(self, index):
        await index.create_index("kb", 2, metric="dotproduct")
        await index.upsert("kb", [_record("a", [2.0, 0.0])])

        results = await index.query("kb", [3.0, 0.0], top_k=1)

        assert results[0].score == pytest.approx(6.0)


class TestLifecycle:
    """Tests for persistence, stats and deletion."""

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path):
        root = tmp_path / "vectors"
        first = FaissVectorIndex(root)
        await first.create_index("kb", 3, metric="euclidean")
        await first.upsert("kb", [_record("a", [1.0, 2.0, 3.0], text="kept")])

        second = FaissVectorIndex(root)

        assert await second.exists("kb")
        stats = await second.describe_index("kb")
        assert (stats.dimension, stats.metric, stats.count) == (3, "euclidean", 1)
        results = await second.query("kb", [1.0, 2.0, 3.0], top_k=1)
        assert results[0].id == "a"
        assert results[0].text == "kept"

    @pytest.mark.asyncio
    async def test_slots_survive_reload(self, tmp_path):
        """Verify upsert after reload still replaces instead of duplicating."""
        root = tmp_path / "vectors"
        first = FaissVectorIndex(root)
        await first.create_index("kb", 3)
        await first.upsert("kb", [_record("a", [1.0, 0.0, 0.0])])

        second = FaissVectorIndex(root)
        await second.upsert(
            "kb", [_record("a", [0.0, 1.0, 0.0]), _record("b", [0.0, 0.0, 1.0])]
        )

        assert await second.count("kb") == 2

    @pytest.mark.asyncio
    async def test_describe_missing(self, index):
        with pytest.raises(IndexNotFoundError):
            await index.describe_index("missing")

    @pytest.mark.asyncio
    async def test_delete_index(self, index, tmp_path):
        await index.create_index("kb", 3)
        await index.upsert("kb", [_record("a", [1.0, 0.0, 0.0])])

        assert await index.delete_index("kb") is True
        assert not await index.exists("kb")
        assert await index.count("kb") == 0
        assert not (tmp_path / "vectors" / "kb").exists()
        assert await index.delete_index("kb") is False
