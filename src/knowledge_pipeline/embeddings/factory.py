"""
Vector index factory: resolves the configured backend once at startup.

Both backends implement `VectorIndex`, so callers never branch on the
storage type after this point.
"""

from __future__ import annotations

import logging

from .base import VectorIndex
from .index import FaissVectorIndex
from ..config import EmbeddedStore, RemoteStore, VectorStoreConfig
from ..db import PgVectorIndex, create_engine

logger = logging.getLogger("kb.index")


def create_vector_index(store: VectorStoreConfig) -> VectorIndex:
    """
    Build the vector index for a backend configuration.

    Raises
    ------
    ValueError
        If the configuration is not a known backend variant.
    """
    if isinstance(store, EmbeddedStore):
        logger.info("Vector storage initialized: embedded FAISS at %s", store.path)
        return FaissVectorIndex(store.path)

    if isinstance(store, RemoteStore):
        engine = create_engine(
            store.database_url.get_secret_value(),
            pool_size=store.pool_size,
            max_overflow=store.max_overflow,
        )
        logger.info("Vector storage initialized: PostgreSQL + pgvector")
        return PgVectorIndex(engine)

    raise ValueError(f"Unknown vector store configuration: {store!r}")
