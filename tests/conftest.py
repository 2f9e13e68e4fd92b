import hashlib
import re
from typing import List, Sequence

import pytest

from knowledge_pipeline.embeddings.index import FaissVectorIndex
from knowledge_pipeline.ingestion.chunker import Chunker
from knowledge_pipeline.ingestion.loader import DocumentLoader
from knowledge_pipeline.knowledge.seeder import KnowledgeSeeder

TOKEN_PATTERN = re.compile(r"[a-z0-9]+")


class HashingEmbedder:
    """
    Deterministic bag-of-words stand-in for the embedding service.

    Texts sharing words get a positive cosine similarity; all components
    are non-negative so no score is ever below zero.
    """

    def __init__(self, dimension: int = 64) -> None:
        self.dimension = dimension
        self.calls: List[List[str]] = []

    def vector(self, text: str) -> List[float]:
        vec = [0.0] * self.dimension
        for token in TOKEN_PATTERN.findall(text.lower()):
            digest = hashlib.md5(token.encode("utf-8")).hexdigest()
            vec[int(digest, 16) % self.dimension] += 1.0
        if not any(vec):
            vec[0] = 1.0
        return vec

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        return [self.vector(t) for t in texts]

    async def embed_query(self, text: str) -> List[float]:
        return (await self.embed([text]))[0]


class RecordingIndex(FaissVectorIndex):
    """FAISS index that remembers every upsert batch."""

    def __init__(self, root_dir) -> None:
        super().__init__(root_dir)
        self.upserts = []

    async def upsert(self, name, records):
        self.upserts.append(list(records))
        return await super().upsert(name, records)


@pytest.fixture
def stub_embedder():
    return HashingEmbedder()


@pytest.fixture
def knowledge_dir(tmp_path):
    path = tmp_path / "knowledge"
    path.mkdir()
    return path


@pytest.fixture
def vector_index(tmp_path):
    return RecordingIndex(tmp_path / "vectors")


@pytest.fixture
def make_seeder(stub_embedder, vector_index, knowledge_dir):
    def _make(max_size: int = 200, overlap: int = 20, embedder=None, index=None):
        return KnowledgeSeeder(
            loader=DocumentLoader(),
            chunker=Chunker(max_size=max_size, overlap=overlap),
            embedder=embedder or stub_embedder,
            index=index or vector_index,
            knowledge_dir=knowledge_dir,
            index_name="test-kb",
        )

    return _make
