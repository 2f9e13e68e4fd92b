"""
Vector Index Contract

Both storage backends (embedded FAISS files and PostgreSQL + pgvector)
implement `VectorIndex`, so the seeder and query layers never know which
one they are talking to.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .models import EmbeddingRecord, IndexStats, MetadataValue, QueryResult
from ..config import Metric
from ..core.errors import DimensionMismatchError, IndexConfigurationError


# ---------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------

INDEX_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")

SUPPORTED_METRICS = ("cosine", "euclidean", "dotproduct")


# ---------------------------------------------------------------------
# Validation Helpers
# ---------------------------------------------------------------------

def validate_index_name(name: str) -> str:
    """
    Validate an index name.

    Names become directory names for the embedded store, so only
    alphanumerics, hyphens and underscores are allowed (max 64 chars).
    """
    if not isinstance(name, str) or not INDEX_NAME_PATTERN.match(name):
        raise IndexConfigurationError(
            f"Invalid index name '{name}': must be 1-64 alphanumeric chars, "
            "hyphens, or underscores"
        )
    return name


def validate_metric(metric: str) -> Metric:
    if metric not in SUPPORTED_METRICS:
        raise IndexConfigurationError(
            f"Unsupported metric '{metric}'. Expected one of {SUPPORTED_METRICS}."
        )
    return metric  # type: ignore[return-value]


def check_dimensions(
    name: str,
    dimension: int,
    vectors: Iterable[Sequence[float]],
) -> None:
    """
    Raise DimensionMismatchError on the first vector whose width differs.
    """
    for vector in vectors:
        if len(vector) != dimension:
            raise DimensionMismatchError(name, dimension, len(vector))


def dedupe_records(records: Sequence[EmbeddingRecord]) -> List[EmbeddingRecord]:
    """
    Collapse duplicate ids within one upsert batch; the last occurrence wins.
    """
    by_id: Dict[str, EmbeddingRecord] = {}
    for record in records:
        by_id.pop(record.id, None)
        by_id[record.id] = record
    return list(by_id.values())


def matches_filter(
    metadata: Mapping[str, MetadataValue],
    filter: Optional[Mapping[str, MetadataValue]],
) -> bool:
    """
    Equality match on every key of `filter`.
    """
    if not filter:
        return True
    return all(key in metadata and metadata[key] == value for key, value in filter.items())


def distance_to_score(metric: Metric, raw: float) -> float:
    """
    Convert a backend's raw similarity/distance into a "higher is better" score.

    cosine, dotproduct -> raw inner product (vectors pre-normalized for cosine)
    euclidean          -> 1 / (1 + L2 distance), raw being the unsquared distance
    """
    if metric == "euclidean":
        return 1.0 / (1.0 + max(raw, 0.0))
    return float(raw)


# ---------------------------------------------------------------------
# Abstract Interface
# ---------------------------------------------------------------------

class VectorIndex(ABC):
    """
    Named collections of embedding records with similarity search.
    """

    @abstractmethod
    async def create_index(
        self,
        name: str,
        dimension: int,
        metric: Metric = "cosine",
    ) -> None:
        """
        Create an index. Idempotent for an identical definition.

        Raises
        ------
        DimensionMismatchError
            If the index exists with another dimension.
        MetricMismatchError
            If the index exists with another metric.
        """

    @abstractmethod
    async def upsert(self, name: str, records: Sequence[EmbeddingRecord]) -> int:
        """
        Insert or replace records by id. Returns the number written.

        Raises
        ------
        IndexNotFoundError
            If the index was never created.
        DimensionMismatchError
            If any vector width differs from the index dimension.
        """

    @abstractmethod
    async def query(
        self,
        name: str,
        vector: Sequence[float],
        top_k: int = 5,
        min_score: Optional[float] = None,
        filter: Optional[Mapping[str, MetadataValue]] = None,
    ) -> List[QueryResult]:
        """
        Return up to `top_k` results by descending score.

        An empty list (not an error) is returned when nothing qualifies.
        """

    @abstractmethod
    async def exists(self, name: str) -> bool:
        ...

    @abstractmethod
    async def count(self, name: str) -> int:
        """Number of records in the index, 0 when it does not exist."""

    @abstractmethod
    async def describe_index(self, name: str) -> IndexStats:
        ...

    @abstractmethod
    async def delete_index(self, name: str) -> bool:
        """Drop an index and its records. Returns False if it did not exist."""

    async def close(self) -> None:
        """Release backend resources."""
