"""
Knowledge Base Seeder

Runs the ingestion pipeline once per empty index:

    guard (index non-empty?) -> load -> chunk -> embed -> create index -> upsert

State Machine
-------------
NOT_SEEDED -> SEEDING -> SEEDED
              SEEDING -> FAILED   (retried on the next process start)

No "seeded" flag is stored anywhere; the state is inferred from the index
being non-empty. Every chunk is embedded before anything is written, so a
failed attempt leaves the index empty and the guard lets the next start
retry.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

from ..config import Metric
from ..core.errors import KnowledgeBaseError
from ..embeddings.base import VectorIndex
from ..embeddings.embedder import Embedder
from ..embeddings.models import EmbeddingRecord, Metadata
from ..ingestion.chunker import Chunker
from ..ingestion.loader import DocumentLoader
from ..ingestion.models import Chunk

logger = logging.getLogger("kb.seeder")


class SeedState(str, enum.Enum):
    NOT_SEEDED = "not_seeded"
    SEEDING = "seeding"
    SEEDED = "seeded"
    FAILED = "failed"


@dataclass
class SeedReport:
    """Outcome of one `seed_if_needed` call."""

    state: SeedState
    index_name: str
    skipped: bool = False
    documents: int = 0
    chunks: int = 0
    records: int = 0
    error: Optional[KnowledgeBaseError] = None

    @property
    def succeeded(self) -> bool:
        return self.state is SeedState.SEEDED


def chunk_record_id(chunk: Chunk, root: Path) -> str:
    """
    Stable id for a seeded chunk: `<path relative to root>#<sequence>`.

    Re-seeding the same directory reproduces the same ids, so an upsert
    after a partial failure overwrites rather than duplicates.
    """
    source = Path(chunk.source)
    try:
        source = source.relative_to(root)
    except ValueError:
        pass
    return f"{source.as_posix()}#{chunk.sequence_index}"


def build_records(
    chunks: Sequence[Chunk],
    vectors: Sequence[Sequence[float]],
    ids: Sequence[str],
    extra_metadata: Optional[Metadata] = None,
) -> List[EmbeddingRecord]:
    return [
        EmbeddingRecord(
            id=record_id,
            vector=list(vector),
            metadata={
                "text": chunk.text,
                "source": chunk.source,
                "chunk_index": chunk.sequence_index,
                "start_index": chunk.start_index,
                **(extra_metadata or {}),
            },
        )
        for chunk, vector, record_id in zip(chunks, vectors, ids)
    ]


class KnowledgeSeeder:
    """
    Seeding orchestrator.

    Collaborators are injected; the seeder owns only the transient documents
    and chunks of a single run.
    """

    def __init__(
        self,
        loader: DocumentLoader,
        chunker: Chunker,
        embedder: Embedder,
        index: VectorIndex,
        knowledge_dir: Union[str, Path],
        index_name: str = "knowledgeBase",
        metric: Metric = "cosine",
    ) -> None:
        self._loader = loader
        self._chunker = chunker
        self._embedder = embedder
        self._index = index
        self._knowledge_dir = Path(knowledge_dir)
        self._index_name = index_name
        self._metric = metric
        self._lock = asyncio.Lock()
        self._state = SeedState.NOT_SEEDED

    @property
    def state(self) -> SeedState:
        return self._state

    async def is_seeded(self) -> bool:
        """
        Idempotence guard: the index exists and holds at least one record.
        """
        if not await self._index.exists(self._index_name):
            return False
        return await self._index.count(self._index_name) > 0

    async def seed_if_needed(self) -> SeedReport:
        """
        Seed the index unless it already holds data.

        Never raises for pipeline failures: they are logged and returned in
        the report with state FAILED.
        """
        async with self._lock:
            try:
                if await self.is_seeded():
                    logger.info(
                        "Vector knowledge base already seeded (index '%s')",
                        self._index_name,
                    )
                    self._state = SeedState.SEEDED
                    return SeedReport(
                        state=SeedState.SEEDED,
                        index_name=self._index_name,
                        skipped=True,
                    )

                self._state = SeedState.SEEDING
                report = await self._seed()
            except KnowledgeBaseError as exc:
                logger.exception("Failed to seed vector knowledge base")
                report = SeedReport(
                    state=SeedState.FAILED,
                    index_name=self._index_name,
                    error=exc,
                )

            self._state = report.state
            return report

    async def _seed(self) -> SeedReport:
        logger.info("Seeding vector knowledge base from %s", self._knowledge_dir)

        documents = await asyncio.to_thread(self._loader.load, self._knowledge_dir)
        if not documents:
            logger.warning("No knowledge documents found to seed")
            return SeedReport(state=SeedState.NOT_SEEDED, index_name=self._index_name)

        chunks = self._chunker.chunk_many(documents)
        if not chunks:
            logger.warning("Knowledge documents produced no chunks")
            return SeedReport(
                state=SeedState.NOT_SEEDED,
                index_name=self._index_name,
                documents=len(documents),
            )

        logger.info(
            "Processing %d chunks from %d documents",
            len(chunks),
            len(documents),
        )

        vectors = await self._embedder.embed([c.text for c in chunks])

        await self._index.create_index(
            self._index_name,
            dimension=len(vectors[0]),
            metric=self._metric,
        )

        ids = [chunk_record_id(c, self._knowledge_dir) for c in chunks]
        records = build_records(chunks, vectors, ids)
        written = await self._index.upsert(self._index_name, records)

        logger.info(
            "Vector knowledge base seeded successfully: %d chunks indexed",
            written,
        )
        return SeedReport(
            state=SeedState.SEEDED,
            index_name=self._index_name,
            documents=len(documents),
            chunks=len(chunks),
            records=written,
        )
