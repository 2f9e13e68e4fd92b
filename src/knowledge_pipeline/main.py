"""
Knowledge Pipeline Entry Point

This module wires the pipeline together and provides the process entry
point that seeds the knowledge base on startup.

Design Goals
------------
- Deterministic startup: seeding is awaited, never fired in the background
- Explicit dependency construction in one place (create_knowledge_base)
- Test-friendly: every collaborator can be overridden
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Optional

from .config import Settings, get_settings, validate_settings
from .core.errors import ConfigurationError
from .embeddings.base import VectorIndex
from .embeddings.embedder import Embedder
from .embeddings.factory import create_vector_index
from .ingestion.chunker import Chunker
from .ingestion.loader import DocumentLoader
from .knowledge.query import KnowledgeQuery
from .knowledge.seeder import KnowledgeSeeder, SeedState
from .knowledge.service import KnowledgeBase

logger = logging.getLogger("kb.app")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_knowledge_base(
    settings: Optional[Settings] = None,
    *,
    embedder: Optional[Embedder] = None,
    index: Optional[VectorIndex] = None,
) -> KnowledgeBase:
    """
    Build every pipeline component once and inject them into the facade.

    Parameters
    ----------
    settings : Optional[Settings]
        Configuration; defaults to the environment-backed settings.

    embedder, index : optional overrides
        Pre-built collaborators, e.g. stubs in tests.

    Returns
    -------
    KnowledgeBase
        Fully wired knowledge base.
    """
    settings = settings or get_settings()

    if embedder is None:
        embedder = Embedder(
            api_key=settings.openai_api_key.get_secret_value(),
            model=settings.embedding_model,
            dimension=settings.embedding_dimension,
            base_url=settings.embedding_api_url,
            batch_size=settings.embedding_batch_size,
            timeout=settings.embedding_timeout,
        )

    if index is None:
        index = create_vector_index(settings.vector_store)

    loader = DocumentLoader(pattern=settings.knowledge_glob)
    chunker = Chunker(
        max_size=settings.chunk_max_size,
        overlap=settings.chunk_overlap,
    )

    seeder = KnowledgeSeeder(
        loader=loader,
        chunker=chunker,
        embedder=embedder,
        index=index,
        knowledge_dir=settings.knowledge_base_path,
        index_name=settings.index_name,
        metric=settings.index_metric,
    )
    searcher = KnowledgeQuery(
        embedder=embedder,
        index=index,
        index_name=settings.index_name,
    )

    return KnowledgeBase(
        seeder=seeder,
        searcher=searcher,
        chunker=chunker,
        embedder=embedder,
        index=index,
        index_name=settings.index_name,
        metric=settings.index_metric,
        default_top_k=settings.query_top_k,
        default_min_score=settings.query_min_score,
    )


# ---------------------------------------------------------------------
# Process Entry Point
# ---------------------------------------------------------------------

async def main(settings: Optional[Settings] = None) -> int:
    """
    Seed the knowledge base if needed and return a process exit code.
    """
    settings = settings or get_settings()

    try:
        validate_settings(settings)
    except ConfigurationError as exc:
        logger.error("Configuration validation failed: %s", exc)
        return 2

    knowledge_base = create_knowledge_base(settings)
    try:
        report = await knowledge_base.seed_if_needed()
    finally:
        await knowledge_base.close()

    if report.state is SeedState.FAILED:
        logger.error("Seeding failed: %s", report.error)
        return 1

    logger.info(
        "Knowledge base ready: state=%s documents=%d chunks=%d records=%d",
        report.state.value,
        report.documents,
        report.chunks,
        report.records,
    )
    return 0


def run() -> None:
    """Console script entry point (`knowledge-seed`)."""
    settings = get_settings()
    configure_logging(settings.log_level)
    sys.exit(asyncio.run(main(settings)))


if __name__ == "__main__":
    run()
