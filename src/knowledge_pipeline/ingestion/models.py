"""
Ingestion Data Models

Transient values that exist only during a seeding run or an `add_record`
call. Neither documents nor chunks are persisted; only the embeddings built
from chunks are.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class Document(BaseModel):
    """
    A unit of source content loaded from the knowledge directory.
    """

    text: str = Field(..., description="Full decoded file content.")
    source: str = Field(..., min_length=1, description="Origin path or identifier.")

    model_config = ConfigDict(extra="forbid", frozen=True)


class Chunk(BaseModel):
    """
    A contiguous slice of a document's text, the unit fed to the embedder.
    """

    text: str = Field(..., min_length=1)
    source: str = Field(..., min_length=1)
    sequence_index: int = Field(
        ...,
        ge=0,
        description="Position of this chunk within its document.",
    )
    start_index: int = Field(
        ...,
        ge=0,
        description="Character offset of the chunk inside the document text.",
    )

    model_config = ConfigDict(extra="forbid", frozen=True)

    @property
    def end_index(self) -> int:
        return self.start_index + len(self.text)
