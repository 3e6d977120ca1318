"""Hybrid retrieval over video transcript and blog chunks: DuckDB vector
similarity plus full-text search, fused into one ranking."""

from .config import EmbeddingConfig, HybridWeights, RetrievalSettings, VectorStoreConfig
from .embeddings import EmbeddingService
from .errors import (
    ConfigurationError,
    DimensionMismatchError,
    IndexCreationError,
    InvalidQueryError,
    RetrievalError,
)
from .models import (
    HybridSearchResult,
    QueryMatch,
    RetrievalFilters,
    SearchResult,
    VectorRecord,
    VectorStoreStats,
)
from .retriever import HybridRetriever, combine_results
from .text_search import DuckDBTextSearch, TextSearch
from .vector_store import DuckDBVectorStore, VectorStore, create_vector_store

__all__ = [
    "ConfigurationError",
    "DimensionMismatchError",
    "DuckDBTextSearch",
    "DuckDBVectorStore",
    "EmbeddingConfig",
    "EmbeddingService",
    "HybridRetriever",
    "HybridSearchResult",
    "HybridWeights",
    "IndexCreationError",
    "InvalidQueryError",
    "QueryMatch",
    "RetrievalError",
    "RetrievalFilters",
    "RetrievalSettings",
    "SearchResult",
    "TextSearch",
    "VectorRecord",
    "VectorStore",
    "VectorStoreConfig",
    "VectorStoreStats",
    "combine_results",
    "create_vector_store",
]
