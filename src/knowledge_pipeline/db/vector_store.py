"""
Vector Store

PostgreSQL + pgvector backed implementation of the `VectorIndex` contract.
Each public call runs in its own session and transaction, so concurrent
readers see either the pre- or post-upsert state of a record.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from .models import VectorIndexEntry, VectorRecord
from .session import create_schema, create_sessionmaker
from ..config import Metric
from ..core.errors import (
    DimensionMismatchError,
    IndexNotFoundError,
    MetricMismatchError,
    VectorIndexError,
)
from ..embeddings.base import (
    VectorIndex,
    check_dimensions,
    dedupe_records,
    validate_index_name,
    validate_metric,
)
from ..embeddings.models import EmbeddingRecord, IndexStats, MetadataValue, QueryResult

logger = logging.getLogger("kb.pg")

# Connection failures surface from asyncpg as OSError or TimeoutError, not
# wrapped by SQLAlchemy.
DRIVER_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)


def _score_expression(metric: Metric, query_vector: Sequence[float]) -> Tuple[Any, Any]:
    """
    Return (distance, score) SQL expressions for a metric.

    pgvector operators: ``<=>`` cosine distance, ``<#>`` negative inner
    product, ``<->`` L2 distance. Ordering by distance ascending is
    equivalent to ordering by score descending for all three.
    """
    column = VectorRecord.embedding
    if metric == "cosine":
        distance = column.cosine_distance(query_vector)
        return distance, 1 - distance
    if metric == "dotproduct":
        distance = column.max_inner_product(query_vector)
        return distance, -distance
    distance = column.l2_distance(query_vector)
    return distance, 1.0 / (1.0 + distance)


class PgVectorIndex(VectorIndex):
    """
    PostgreSQL-backed vector index using pgvector for similarity search.

    This class provides the same interface as `FaissVectorIndex` but
    uses the database for persistence.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        """
        Parameters
        ----------
        engine : AsyncEngine
            SQLAlchemy async engine; schema is created lazily on first use.
        """
        self._engine = engine
        self._sessionmaker = create_sessionmaker(engine)
        self._schema_ready = False
        self._schema_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    async def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        async with self._schema_lock:
            if self._schema_ready:
                return
            try:
                await create_schema(self._engine)
            except DRIVER_ERRORS as exc:
                raise VectorIndexError(
                    f"Failed to initialize vector schema: {type(exc).__name__}"
                ) from exc
            self._schema_ready = True

    @staticmethod
    async def _get_entry(session: AsyncSession, name: str) -> Optional[VectorIndexEntry]:
        result = await session.execute(
            select(VectorIndexEntry).where(VectorIndexEntry.name == name)
        )
        return result.scalar_one_or_none()

    async def _require_entry(self, session: AsyncSession, name: str) -> VectorIndexEntry:
        entry = await self._get_entry(session, name)
        if entry is None:
            raise IndexNotFoundError(name)
        return entry

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create_index(
        self,
        name: str,
        dimension: int,
        metric: Metric = "cosine",
    ) -> None:
        validate_index_name(name)
        validate_metric(metric)
        if dimension <= 0:
            raise ValueError("dimension must be positive")

        await self._ensure_schema()

        try:
            async with self._sessionmaker() as session, session.begin():
                # Insert-if-absent, then compare: safe against concurrent creators.
                await session.execute(
                    pg_insert(VectorIndexEntry)
                    .values(name=name, dimension=dimension, metric=metric)
                    .on_conflict_do_nothing(index_elements=["name"])
                )
                entry = await self._require_entry(session, name)
        except DRIVER_ERRORS as exc:
            raise VectorIndexError(
                f"Failed to create index '{name}': {type(exc).__name__}"
            ) from exc

        if entry.dimension != dimension:
            raise DimensionMismatchError(name, entry.dimension, dimension)
        if entry.metric != metric:
            raise MetricMismatchError(
                f"Index '{name}' already uses metric '{entry.metric}', not '{metric}'."
            )

    async def upsert(self, name: str, records: Sequence[EmbeddingRecord]) -> int:
        """
        Insert or replace records by id.

        Uses PostgreSQL upsert so re-running a partially completed seed is safe.
        """
        validate_index_name(name)
        await self._ensure_schema()

        try:
            async with self._sessionmaker() as session, session.begin():
                entry = await self._require_entry(session, name)
                if not records:
                    return 0

                batch = dedupe_records(records)
                check_dimensions(name, entry.dimension, (r.vector for r in batch))

                table = VectorRecord.__table__
                stmt = pg_insert(table).values(
                    [
                        {
                            "index_name": name,
                            "id": record.id,
                            "embedding": record.vector,
                            "metadata": dict(record.metadata),
                        }
                        for record in batch
                    ]
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[table.c.index_name, table.c.id],
                    set_={
                        "embedding": stmt.excluded["embedding"],
                        "metadata": stmt.excluded["metadata"],
                        "updated_at": func.now(),
                    },
                )
                await session.execute(stmt)
        except DRIVER_ERRORS as exc:
            raise VectorIndexError(
                f"Failed to upsert into '{name}': {type(exc).__name__}"
            ) from exc

        logger.debug("Upserted %d records into '%s'", len(batch), name)
        return len(batch)

    async def query(
        self,
        name: str,
        vector: Sequence[float],
        top_k: int = 5,
        min_score: Optional[float] = None,
        filter: Optional[Mapping[str, MetadataValue]] = None,
    ) -> List[QueryResult]:
        """
        Search for similar records.

        Parameters
        ----------
        name : str
            Index name.
        vector : Sequence[float]
            Query vector.
        top_k : int
            Number of results to return.
        min_score : Optional[float]
            If provided, only return results scoring at least this much.
        filter : Optional[Mapping]
            If provided, only return records whose metadata contains
            every given key/value pair (JSONB containment).
        """
        validate_index_name(name)
        await self._ensure_schema()

        if top_k < 1:
            return []

        try:
            async with self._sessionmaker() as session:
                entry = await self._require_entry(session, name)
                check_dimensions(name, entry.dimension, [vector])

                distance, score = _score_expression(entry.metric, list(vector))

                stmt = (
                    select(
                        VectorRecord.id,
                        VectorRecord.metadata_,
                        score.label("score"),
                    )
                    .where(VectorRecord.index_name == name)
                    .order_by(distance)
                    .limit(top_k)
                )

                if min_score is not None:
                    stmt = stmt.where(score >= min_score)

                if filter:
                    stmt = stmt.where(VectorRecord.metadata_.contains(dict(filter)))

                result = await session.execute(stmt)
                rows = result.all()
        except DRIVER_ERRORS as exc:
            raise VectorIndexError(
                f"Failed to query '{name}': {type(exc).__name__}"
            ) from exc

        return [
            QueryResult(id=row.id, score=float(row.score), metadata=row.metadata_ or {})
            for row in rows
        ]

    async def exists(self, name: str) -> bool:
        validate_index_name(name)
        await self._ensure_schema()
        try:
            async with self._sessionmaker() as session:
                return await self._get_entry(session, name) is not None
        except DRIVER_ERRORS as exc:
            raise VectorIndexError(f"Failed to look up '{name}'") from exc

    async def count(self, name: str) -> int:
        validate_index_name(name)
        await self._ensure_schema()
        try:
            async with self._sessionmaker() as session:
                result = await session.execute(
                    select(func.count())
                    .select_from(VectorRecord)
                    .where(VectorRecord.index_name == name)
                )
                return result.scalar() or 0
        except DRIVER_ERRORS as exc:
            raise VectorIndexError(f"Failed to count '{name}'") from exc

    async def describe_index(self, name: str) -> IndexStats:
        validate_index_name(name)
        await self._ensure_schema()
        try:
            async with self._sessionmaker() as session:
                entry = await self._require_entry(session, name)
                result = await session.execute(
                    select(func.count())
                    .select_from(VectorRecord)
                    .where(VectorRecord.index_name == name)
                )
                total = result.scalar() or 0
        except DRIVER_ERRORS as exc:
            raise VectorIndexError(f"Failed to describe '{name}'") from exc

        return IndexStats(
            name=name,
            dimension=entry.dimension,
            metric=entry.metric,
            count=total,
        )

    async def delete_index(self, name: str) -> bool:
        validate_index_name(name)
        await self._ensure_schema()
        try:
            async with self._sessionmaker() as session, session.begin():
                await session.execute(
                    delete(VectorRecord).where(VectorRecord.index_name == name)
                )
                result = await session.execute(
                    delete(VectorIndexEntry).where(VectorIndexEntry.name == name)
                )
                deleted = result.rowcount > 0
        except DRIVER_ERRORS as exc:
            raise VectorIndexError(f"Failed to delete '{name}'") from exc

        if deleted:
            logger.info("Deleted vector index '%s'", name)
        return deleted

    async def close(self) -> None:
        await self._engine.dispose()
