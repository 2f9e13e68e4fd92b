"""
Knowledge Query

Embeds a natural-language query and runs a similarity search against the
knowledge index.

Responsibilities
----------------
- Skip the embedding call entirely when no index exists
- Retry once without a score floor when the strict query finds nothing
- Degrade index failures to "no results" so conversations keep flowing
"""

from __future__ import annotations

import logging
from typing import List, Mapping, Optional

from ..core.errors import VectorIndexError
from ..embeddings.base import VectorIndex
from ..embeddings.embedder import Embedder
from ..embeddings.models import MetadataValue, QueryResult

logger = logging.getLogger("kb.query")


class KnowledgeQuery:
    def __init__(
        self,
        embedder: Embedder,
        index: VectorIndex,
        index_name: str = "knowledgeBase",
    ) -> None:
        self._embedder = embedder
        self._index = index
        self._index_name = index_name

    async def query(
        self,
        text: str,
        top_k: int = 5,
        min_score: float = 0.3,
        filter: Optional[Mapping[str, MetadataValue]] = None,
    ) -> List[QueryResult]:
        """
        Semantic search over the knowledge base.

        Parameters
        ----------
        text : str
            Natural-language query.
        top_k : int
            Maximum number of results.
        min_score : float
            Score floor for the first attempt. When it yields nothing, the
            query is repeated once with a floor of 0 so the caller still
            gets best-effort context.
        filter : Optional[Mapping]
            Metadata equality filter, e.g. ``{"source": "knowledge/faq.md"}``.

        Returns
        -------
        List[QueryResult]
            Ranked results; empty when the knowledge base is missing.

        Raises
        ------
        EmbeddingServiceError
            If the query text cannot be embedded.
        """
        try:
            if not await self._index.exists(self._index_name):
                logger.info(
                    "Knowledge index '%s' does not exist; returning no results",
                    self._index_name,
                )
                return []
        except VectorIndexError:
            logger.exception("Knowledge index lookup failed")
            return []

        vector = await self._embedder.embed_query(text)

        try:
            results = await self._index.query(
                self._index_name,
                vector,
                top_k=top_k,
                min_score=min_score,
                filter=filter,
            )

            if not results and min_score > 0:
                logger.debug(
                    "No results above min_score=%.2f; retrying without a floor",
                    min_score,
                )
                results = await self._index.query(
                    self._index_name,
                    vector,
                    top_k=top_k,
                    min_score=0.0,
                    filter=filter,
                )
        except VectorIndexError:
            logger.exception("Knowledge query against '%s' failed", self._index_name)
            return []

        return results
