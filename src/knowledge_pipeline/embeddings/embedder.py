"""
Embedder

Turns chunk and query text into vectors through an OpenAI-compatible
`/v1/embeddings` endpoint.

Guarantees
----------
- One vector per input, in input order (the provider's `index` field wins)
- Every vector has the configured width
- All or nothing: a failure in any batch discards the batches before it
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence
import logging
import httpx

from ..core.errors import EmbeddingServiceError

logger = logging.getLogger("kb.embedder")


class Embedder:
    """
    Async client for a text embedding service.

    Holds no connection between calls; each `embed` opens one
    `httpx.AsyncClient` and reuses it for all of its batches.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimension: Optional[int] = 1536,
        base_url: str = "https://api.openai.com/v1/embeddings",
        batch_size: int = 20,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Parameters
        ----------
        api_key : str
            Sent as a bearer token.

        model : str
            Embedding model name, e.g. ``text-embedding-3-small``.

        dimension : Optional[int]
            Width every returned vector must have; None accepts any width.

        base_url : str
            Embeddings endpoint URL.

        batch_size : int
            Texts per request.

        timeout : float
            Per-request timeout in seconds.

        transport : Optional[httpx.AsyncBaseTransport]
            Replaces the network transport (tests pass `httpx.MockTransport`).
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        self.api_key = api_key
        self.model = model
        self.dimension = dimension
        self.base_url = base_url
        self.batch_size = batch_size
        self.timeout = timeout
        self._transport = transport

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed texts in batches of `batch_size`.

        Parameters
        ----------
        texts : Sequence[str]
            Chunk or query texts.

        Returns
        -------
        List[List[float]]
            Vectors aligned with `texts`.

        Raises
        ------
        EmbeddingServiceError
            On transport errors, non-2xx responses or malformed payloads.
        """
        if not texts:
            return []

        vectors: List[List[float]] = []
        requests = 0

        async with httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            headers={"Authorization": f"Bearer {self.api_key}"},
        ) as client:
            for offset in range(0, len(texts), self.batch_size):
                batch = list(texts[offset : offset + self.batch_size])
                data = await self._request_batch(client, batch)
                vectors.extend(self._extract_embeddings(data, expected=len(batch)))
                requests += 1

        logger.debug(
            "Embedded %d texts in %d requests (model=%s)",
            len(vectors),
            requests,
            self.model,
        )
        return vectors

    async def embed_query(self, text: str) -> List[float]:
        """Embed one query string."""
        [vector] = await self.embed([text])
        return vector

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request_batch(
        self,
        client: httpx.AsyncClient,
        batch: List[str],
    ) -> Dict[str, Any]:
        try:
            response = await client.post(
                self.base_url,
                json={"model": self.model, "input": batch},
            )
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.error(
                "Embedding service call failed for %d texts: %s: %s",
                len(batch),
                type(exc).__name__,
                exc,
            )
            raise EmbeddingServiceError(
                f"Embedding service call failed: {type(exc).__name__}"
            ) from exc

        try:
            return response.json()
        except ValueError as exc:
            raise EmbeddingServiceError(
                "Embedding service returned a non-JSON body."
            ) from exc

    def _extract_embeddings(self, data: Any, expected: int) -> List[List[float]]:
        """
        Validate a response body and pull out its vectors.

        Expected shape::

            {"data": [{"index": 0, "embedding": [0.1, ...]}, ...]}
        """
        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise EmbeddingServiceError("Embedding response has no 'data' list.")

        if len(items) != expected:
            raise EmbeddingServiceError(
                f"Embedding service returned {len(items)} vectors for {expected} texts."
            )

        if not all(isinstance(item, dict) and "embedding" in item for item in items):
            raise EmbeddingServiceError("Embedding response contains malformed items.")

        if all(isinstance(item.get("index"), int) for item in items):
            items = sorted(items, key=lambda item: item["index"])

        vectors: List[List[float]] = []
        for position, item in enumerate(items):
            values = item["embedding"]
            if (
                not isinstance(values, list)
                or not values
                or any(
                    isinstance(v, bool) or not isinstance(v, (int, float))
                    for v in values
                )
            ):
                raise EmbeddingServiceError(
                    f"Vector {position} is not a non-empty list of numbers."
                )

            if self.dimension is not None and len(values) != self.dimension:
                raise EmbeddingServiceError(
                    f"Vector {position} has width {len(values)}, "
                    f"expected {self.dimension}."
                )

            vectors.append([float(v) for v in values])

        return vectors
