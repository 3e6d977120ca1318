"""Configuration models, optionally populated from the environment."""

import os
import re
from typing import Literal

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, field_validator

EMBEDDING_MODEL = "text-embedding-3-small"
EMBEDDING_DIM = 1536
BATCH_SIZE = 50

DEFAULT_DB_PATH = "content.duckdb"

ENV_PREFIX = "CONTENT_RETRIEVAL_"

SimilarityMetric = Literal["cosine", "dotProduct", "euclidean"]

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class EmbeddingConfig(BaseModel):
    model: str = EMBEDDING_MODEL
    # Passed to the provider only when set; text-embedding-3-* can shorten vectors.
    dimensions: int | None = None
    batch_size: int = Field(default=BATCH_SIZE, gt=0)


class VectorStoreConfig(BaseModel):
    """Connection and index settings for a vector store backend.

    ``connection_string`` is the DuckDB database path (or ``:memory:``),
    ``collection_name`` the table holding the chunks.
    """

    connection_string: str = DEFAULT_DB_PATH
    database_name: str = "main"
    collection_name: str = "chunks"
    index_name: str = "vector_index"
    dimensions: int = Field(default=EMBEDDING_DIM, gt=0)
    similarity_metric: SimilarityMetric = "cosine"
    backend: str = "duckdb"

    @field_validator("database_name", "collection_name", "index_name")
    @classmethod
    def _check_identifier(cls, value: str) -> str:
        # These end up inside SQL text, so only plain identifiers are allowed.
        if not _IDENTIFIER.match(value):
            raise ValueError(f"not a valid SQL identifier: {value!r}")
        return value


class HybridWeights(BaseModel):
    """Fusion weights for :meth:`HybridRetriever.search`."""

    vector_weight: float = Field(default=0.7, ge=0)
    text_weight: float = Field(default=0.3, ge=0)
    min_score: float = 0.5


class RetrievalSettings(BaseModel):
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    vector_store: VectorStoreConfig = Field(default_factory=VectorStoreConfig)
    weights: HybridWeights = Field(default_factory=HybridWeights)

    @classmethod
    def from_env(cls) -> "RetrievalSettings":
        """Build settings from ``CONTENT_RETRIEVAL_*`` variables (and a .env file)."""
        load_dotenv(find_dotenv(usecwd=True))

        def env(name: str) -> str | None:
            return os.environ.get(ENV_PREFIX + name)

        store: dict = {}
        for name, field in (
            ("DB_PATH", "connection_string"),
            ("DATABASE", "database_name"),
            ("COLLECTION", "collection_name"),
            ("INDEX_NAME", "index_name"),
            ("DIMENSIONS", "dimensions"),
            ("METRIC", "similarity_metric"),
            ("BACKEND", "backend"),
        ):
            if env(name) is not None:
                store[field] = env(name)

        embedding: dict = {}
        if env("EMBEDDING_MODEL") is not None:
            embedding["model"] = env("EMBEDDING_MODEL")
        if env("EMBEDDING_BATCH_SIZE") is not None:
            embedding["batch_size"] = env("EMBEDDING_BATCH_SIZE")
        if env("DIMENSIONS") is not None:
            # Ask the provider for vectors as wide as the index.
            embedding["dimensions"] = env("DIMENSIONS")

        weights: dict = {}
        for name, field in (
            ("VECTOR_WEIGHT", "vector_weight"),
            ("TEXT_WEIGHT", "text_weight"),
            ("MIN_SCORE", "min_score"),
        ):
            if env(name) is not None:
                weights[field] = env(name)

        return cls(
            embedding=EmbeddingConfig(**embedding),
            vector_store=VectorStoreConfig(**store),
            weights=HybridWeights(**weights),
        )
