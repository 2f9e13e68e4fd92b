"""
Knowledge Base Facade

The operations an agent, tool, HTTP or CLI layer calls into:

- seed_if_needed()            startup seeding, idempotent
- query(text, top_k, ...)     semantic search with score-floor fallback
- add_record(topic, content)  append new knowledge at runtime
- reset() / stats()           manual re-seed path and diagnostics
"""

from __future__ import annotations

import logging
import uuid
from typing import List, Mapping, Optional

from .query import KnowledgeQuery
from .seeder import KnowledgeSeeder, SeedReport, build_records
from ..config import Metric
from ..embeddings.base import VectorIndex
from ..embeddings.embedder import Embedder
from ..embeddings.models import IndexStats, MetadataValue, QueryResult
from ..ingestion.chunker import Chunker
from ..ingestion.models import Document

logger = logging.getLogger("kb.service")


class KnowledgeBase:
    """
    Composition of seeder, query and the runtime "add knowledge" path over
    one shared embedder and vector index.
    """

    def __init__(
        self,
        seeder: KnowledgeSeeder,
        searcher: KnowledgeQuery,
        chunker: Chunker,
        embedder: Embedder,
        index: VectorIndex,
        index_name: str = "knowledgeBase",
        metric: Metric = "cosine",
        default_top_k: int = 5,
        default_min_score: float = 0.3,
    ) -> None:
        self._seeder = seeder
        self._searcher = searcher
        self._chunker = chunker
        self._embedder = embedder
        self._index = index
        self.index_name = index_name
        self._metric = metric
        self._default_top_k = default_top_k
        self._default_min_score = default_min_score

    @property
    def seeder(self) -> KnowledgeSeeder:
        return self._seeder

    async def seed_if_needed(self) -> SeedReport:
        return await self._seeder.seed_if_needed()

    async def query(
        self,
        text: str,
        top_k: Optional[int] = None,
        min_score: Optional[float] = None,
        filter: Optional[Mapping[str, MetadataValue]] = None,
    ) -> List[QueryResult]:
        return await self._searcher.query(
            text,
            top_k=self._default_top_k if top_k is None else top_k,
            min_score=self._default_min_score if min_score is None else min_score,
            filter=filter,
        )

    async def add_record(self, topic: str, content: str) -> int:
        """
        Add a piece of knowledge under a topic.

        The text is chunked, embedded and upserted. Record ids derive from
        the topic and content, so new knowledge never replaces existing
        records and adding the same content twice is a no-op.

        Returns
        -------
        int
            Number of records written.

        Raises
        ------
        ValueError
            If topic or content is blank.
        EmbeddingServiceError, VectorIndexError
            On embedding or storage failure.
        """
        if not topic.strip() or not content.strip():
            raise ValueError("topic and content must be non-empty")

        document = Document(
            text=f"Topic: {topic}\n\n{content}",
            source=f"topic:{topic}",
        )
        chunks = self._chunker.chunk(document)
        vectors = await self._embedder.embed([c.text for c in chunks])

        await self._index.create_index(
            self.index_name,
            dimension=len(vectors[0]),
            metric=self._metric,
        )

        key = uuid.uuid5(uuid.NAMESPACE_URL, f"knowledge:{topic}\n{content}")
        ids = [f"knowledge/{key}#{c.sequence_index}" for c in chunks]
        records = build_records(chunks, vectors, ids, extra_metadata={"topic": topic})

        written = await self._index.upsert(self.index_name, records)
        logger.info("Added knowledge about '%s' (%d records)", topic, written)
        return written

    async def reset(self) -> bool:
        """
        Drop the knowledge index so the next `seed_if_needed` re-seeds it.
        """
        return await self._index.delete_index(self.index_name)

    async def stats(self) -> Optional[IndexStats]:
        if not await self._index.exists(self.index_name):
            return None
        return await self._index.describe_index(self.index_name)

    async def close(self) -> None:
        await self._index.close()
