"""Shared fixtures for content_retrieval tests."""

import asyncio
import random

import pytest

from content_retrieval.config import VectorStoreConfig
from content_retrieval.models import SearchResult, VectorRecord
from content_retrieval.text_search import DuckDBTextSearch
from content_retrieval.vector_store import DuckDBVectorStore

TEST_DIM = 8

SAMPLE_CHUNKS = [
    {
        "id": "vid1#0",
        "content": "Database indexing speeds up queries by avoiding full table scans",
        "metadata": {
            "videoId": "vid1",
            "playlistId": "pl1",
            "title": "Intro to Databases",
            "publishedAt": "2024-01-10T12:00:00Z",
            "startTime": 0.0,
            "url": "https://youtu.be/vid1?t=0",
        },
    },
    {
        "id": "vid1#1",
        "content": "B-tree indexes keep keys sorted so range lookups stay fast",
        "metadata": {
            "videoId": "vid1",
            "playlistId": "pl1",
            "title": "Intro to Databases",
            "publishedAt": "2024-01-10T12:00:00Z",
            "startTime": 42.5,
            "url": "https://youtu.be/vid1?t=42",
        },
    },
    {
        "id": "vid2#0",
        "content": "Python async functions let a single thread juggle many sockets",
        "metadata": {
            "videoId": "vid2",
            "playlistId": "pl2",
            "title": "Async Python",
            "publishedAt": "2024-06-01T00:00:00Z",
            "startTime": 0.0,
            "url": "https://youtu.be/vid2?t=0",
        },
    },
    {
        "id": "blog1#0",
        "content": "Choosing a vector database for semantic search",
        "metadata": {
            "title": "Vector Search Notes",
            "publishedAt": "2025-03-15T08:30:00Z",
            "url": "https://example.com/blog/vector-search",
            "source": "blog",
        },
    },
]


def run(coro):
    return asyncio.run(coro)


def _make_fake_embedding(seed: int, dim: int = TEST_DIM) -> list[float]:
    """Deterministic random vector from a seed."""
    rng = random.Random(seed)
    return [rng.gauss(0, 1) for _ in range(dim)]


def make_result(id: str, score: float, **kwargs) -> SearchResult:
    return SearchResult(id=id, score=score, content=f"content of {id}", **kwargs)


@pytest.fixture
def sample_chunks():
    return SAMPLE_CHUNKS


@pytest.fixture
def fake_embeddings(sample_chunks):
    """Dict mapping chunk id -> deterministic fake embedding vector."""
    return {c["id"]: _make_fake_embedding(i + 1) for i, c in enumerate(sample_chunks)}


@pytest.fixture
def sample_records(sample_chunks, fake_embeddings):
    return [
        VectorRecord(
            id=c["id"],
            values=fake_embeddings[c["id"]],
            metadata={**c["metadata"], "content": c["content"]},
        )
        for c in sample_chunks
    ]


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test.duckdb"


@pytest.fixture
def store_config(db_path):
    return VectorStoreConfig(connection_string=str(db_path), dimensions=TEST_DIM)


@pytest.fixture
def store(store_config):
    """Connected DuckDBVectorStore on an empty database."""
    vector_store = DuckDBVectorStore(store_config)
    run(vector_store.connect())
    yield vector_store
    run(vector_store.disconnect())


@pytest.fixture
def populated_store(store, sample_records):
    """store + sample chunks upserted."""
    run(store.upsert(sample_records))
    return store


@pytest.fixture
def text_search(populated_store):
    """DuckDBTextSearch over populated_store with the FTS index built."""
    search = DuckDBTextSearch.from_store(populated_store)
    run(search.rebuild_index())
    return search
