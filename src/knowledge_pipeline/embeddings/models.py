"""
Embedding Data Models

This module defines the canonical records stored in, and returned from,
a vector index. Each `EmbeddingRecord` corresponds to ONE embedding vector
and ONE chunk of text.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
)

from ..config import Metric

MetadataValue = Optional[Union[StrictStr, StrictBool, StrictInt, StrictFloat]]
Metadata = Dict[str, MetadataValue]


class EmbeddingRecord(BaseModel):
    """
    A single persisted embedding.

    This model is the authoritative schema for:
    - Vector index upserts (both backends)
    - Metadata persistence to JSON / JSONB
    """

    id: str = Field(
        ...,
        min_length=1,
        description="Identifier, unique within an index.",
    )

    vector: List[float] = Field(
        ...,
        min_length=1,
        description="Embedding vector; width must equal the index dimension.",
    )

    metadata: Metadata = Field(
        default_factory=dict,
        description="Scalar metadata; seeded records carry 'text' and 'source'.",
    )

    model_config = ConfigDict(extra="forbid", frozen=True)


class QueryResult(BaseModel):
    """
    One ranked similarity-search hit.
    """

    id: str
    score: float
    metadata: Metadata = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @property
    def text(self) -> Optional[str]:
        value = self.metadata.get("text")
        return value if isinstance(value, str) else None


class IndexStats(BaseModel):
    """Index statistics for diagnostics."""

    name: str
    dimension: int = Field(..., gt=0)
    metric: Metric
    count: int = Field(..., ge=0)

    model_config = ConfigDict(extra="forbid", frozen=True)
