"""
SQLAlchemy Models

Defines the database schema for the remote vector store:
- A catalog of named indexes (dimension + metric)
- Embedding records keyed by (index name, record id), stored with pgvector
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from pgvector.sqlalchemy import Vector


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ---------------------------------------------------------------------
# Index Catalog
# ---------------------------------------------------------------------

class VectorIndexEntry(Base):
    """
    One named index. The dimension declared here is enforced on every
    upsert and query, since the record column itself is dimensionless.
    """
    __tablename__ = "vector_index"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    dimension: Mapped[int] = mapped_column(Integer, nullable=False)
    metric: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
    )


# ---------------------------------------------------------------------
# Embedding Records
# ---------------------------------------------------------------------

class VectorRecord(Base):
    """
    A persisted embedding with its scalar metadata.
    """
    __tablename__ = "vector_record"

    index_name: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("vector_index.name", ondelete="CASCADE"),
        primary_key=True,
    )
    id: Mapped[str] = mapped_column(Text, primary_key=True)

    embedding = Column(Vector(), nullable=False)

    metadata_: Mapped[dict] = mapped_column(
        "metadata",
        JSONB,
        nullable=False,
        default=dict,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
