"""Load pre-chunked content from JSON and index it for hybrid search."""

import json
from pathlib import Path
from typing import List

from pydantic import TypeAdapter

from .embeddings import EmbeddingService
from .logging_config import get_logger
from .models import ChunkIn
from .text_search import DuckDBTextSearch
from .vector_store import VectorStore

logger = get_logger(__name__)


def load_chunks(chunks_path: Path) -> List[ChunkIn]:
    """Load and validate chunks from a JSON array file.

    Each element needs ``id`` and ``content``; ``metadata`` is optional and
    may carry videoId, playlistId, title, publishedAt, startTime, url and
    any other fields.
    """
    with open(chunks_path) as f:
        chunks_data = json.load(f)

    adapter = TypeAdapter(list[ChunkIn])
    return adapter.validate_python(chunks_data)


async def index_chunks(
    chunks: List[ChunkIn],
    store: VectorStore,
    text_search: DuckDBTextSearch,
    embeddings: EmbeddingService,
    batch_size: int | None = None,
) -> int:
    """Embed, upsert and full-text index *chunks*. Returns how many were indexed."""
    if not chunks:
        return 0

    logger.info("Generating embeddings for %d chunks", len(chunks))
    vectors = await embeddings.generate_embeddings(
        [chunk.content for chunk in chunks], batch_size=batch_size
    )

    records = [chunk.to_record(values) for chunk, values in zip(chunks, vectors)]
    await store.upsert(records)

    await text_search.rebuild_index()
    return len(records)
