"""
Database Package

Provides SQLAlchemy async engine management and model definitions
for the PostgreSQL + pgvector vector store.
"""

from .session import create_engine, create_sessionmaker, create_schema
from .models import Base, VectorIndexEntry, VectorRecord
from .vector_store import PgVectorIndex

__all__ = [
    "create_engine",
    "create_sessionmaker",
    "create_schema",
    "Base",
    "VectorIndexEntry",
    "VectorRecord",
    "PgVectorIndex",
]
