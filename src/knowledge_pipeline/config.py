from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.errors import ConfigurationError

Metric = Literal["cosine", "euclidean", "dotproduct"]


# ---------------------------------------------------------------------
# Vector Store Backends
# ---------------------------------------------------------------------

class EmbeddedStore(BaseModel):
    """File-backed FAISS store rooted at a local directory."""

    kind: Literal["embedded"] = "embedded"
    path: str = "data/vectors"


class RemoteStore(BaseModel):
    """PostgreSQL + pgvector store reached through an async SQLAlchemy URL."""

    kind: Literal["remote"] = "remote"
    database_url: SecretStr
    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=10, ge=0)


VectorStoreConfig = Annotated[
    Union[EmbeddedStore, RemoteStore],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------

class Settings(BaseSettings):
    openai_api_key: SecretStr = SecretStr("")
    embedding_model: str = "text-embedding-3-small"
    embedding_dimension: int = Field(default=1536, gt=0)
    embedding_api_url: str = "https://api.openai.com/v1/embeddings"
    embedding_batch_size: int = Field(default=20, ge=1, le=2048)
    embedding_timeout: float = Field(default=60.0, gt=0)

    knowledge_base_path: str = "knowledge"
    knowledge_glob: str = "**/*.md"

    index_name: str = Field(default="knowledgeBase", pattern=r"^[a-zA-Z0-9_-]{1,64}$")
    index_metric: Metric = "cosine"

    chunk_max_size: int = Field(default=2048, gt=0)
    chunk_overlap: int = Field(default=50, ge=0)

    query_top_k: int = Field(default=5, ge=1)
    query_min_score: float = 0.3

    log_level: str = "INFO"

    vector_store: VectorStoreConfig = Field(default_factory=EmbeddedStore)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_chunking(self) -> "Settings":
        if self.chunk_overlap >= self.chunk_max_size:
            raise ValueError("chunk_overlap must be smaller than chunk_max_size")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()


def validate_settings(settings: Settings) -> None:
    """
    Fail-fast validation for values that only matter once the pipeline runs.

    Raises
    ------
    ConfigurationError
        If the embedding API key is missing.
    """
    if not settings.openai_api_key.get_secret_value():
        raise ConfigurationError("OPENAI_API_KEY is required")
