"""
Error Taxonomy

This module defines every exception raised by the knowledge pipeline.

Design Goals
------------
- One root class so boundary layers can catch pipeline failures as a group
- Typed leaves so callers can map failures to exit codes or HTTP statuses
- Driver exceptions (faiss, SQLAlchemy, httpx) are always chained, never leaked
"""

from __future__ import annotations


class KnowledgeBaseError(Exception):
    """Base error for all knowledge pipeline failures."""


class ConfigurationError(KnowledgeBaseError):
    """Raised when required configuration is missing or invalid."""


# ---------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------

class DocumentLoadError(KnowledgeBaseError, OSError):
    """Raised when the knowledge directory or one of its files cannot be read."""


class EmbeddingServiceError(KnowledgeBaseError):
    """Raised when the embedding service call fails or returns malformed data."""


# ---------------------------------------------------------------------
# Vector Index
# ---------------------------------------------------------------------

class VectorIndexError(KnowledgeBaseError):
    """Base error for vector index failures."""


class IndexNotFoundError(VectorIndexError):
    """Raised when an operation targets an index that was never created."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Vector index '{name}' does not exist.")
        self.name = name


class IndexConfigurationError(VectorIndexError):
    """Raised when an index definition conflicts with an existing one."""


class DimensionMismatchError(IndexConfigurationError):
    """Raised when a vector or index dimension disagrees with the declared one."""

    def __init__(self, name: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Dimension mismatch for index '{name}': expected {expected}, got {actual}."
        )
        self.name = name
        self.expected = expected
        self.actual = actual


class MetricMismatchError(IndexConfigurationError):
    """Raised when an index is re-created with a different similarity metric."""
