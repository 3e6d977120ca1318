"""Full-text (BM25) search over the chunk table."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from sqlalchemy import text
from sqlalchemy.engine import Engine

from .config import VectorStoreConfig
from .db import create_fts_index, fts_index_exists, fts_schema, qualified_table
from .filters import build_filter_clause
from .logging_config import get_logger
from .models import ChunkMetadata, RetrievalFilters, SearchResult

logger = get_logger(__name__)


class TextSearch(ABC):
    """Lexical search over the same corpus as the vector index."""

    @abstractmethod
    async def search_text(
        self,
        query: str,
        k: int,
        filters: RetrievalFilters | Dict[str, Any] | None = None,
    ) -> List[SearchResult]:
        """Return up to *k* matches, best first. Never raises."""


class DuckDBTextSearch(TextSearch):
    """BM25 search through the DuckDB ``fts`` extension.

    The FTS index is a snapshot: call :meth:`rebuild_index` after writes.
    """

    def __init__(self, engine: Engine, config: VectorStoreConfig):
        self.engine = engine
        self.config = config

    @classmethod
    def from_store(cls, store) -> "DuckDBTextSearch":
        """Share a connected :class:`DuckDBVectorStore`'s engine and table."""
        return cls(store.engine, store.config)

    async def rebuild_index(self) -> None:
        await asyncio.to_thread(create_fts_index, self.engine, self.config)
        logger.info("Rebuilt full-text index on %s", qualified_table(self.config))

    async def ensure_index(self) -> None:
        """Build the FTS index if it has never been built."""
        exists = await asyncio.to_thread(fts_index_exists, self.engine, self.config)
        if not exists:
            await self.rebuild_index()

    async def search_text(
        self,
        query: str,
        k: int,
        filters: RetrievalFilters | Dict[str, Any] | None = None,
    ) -> List[SearchResult]:
        try:
            filters = RetrievalFilters.coerce(filters)
            return await asyncio.to_thread(self._search_sync, query, k, filters)
        except Exception:
            logger.warning("Text search failed for %r", query, exc_info=True)
            return []

    def _search_sync(
        self,
        query: str,
        k: int,
        filters: RetrievalFilters | None,
    ) -> List[SearchResult]:
        where, params = build_filter_clause(filters)
        columns = (
            "id, content, video_id, playlist_id, title, published_at, "
            "start_time, url, raw_metadata"
        )
        with self.engine.connect() as conn:
            rows = conn.execute(
                text(
                    f"SELECT {columns}, score FROM ("
                    f"  SELECT {columns}, "
                    f"         {fts_schema(self.config)}.match_bm25(id, :query) AS score"
                    f"  FROM {qualified_table(self.config)}"
                    ") sq "
                    f"WHERE score IS NOT NULL AND {where} "
                    "ORDER BY score DESC, id ASC "
                    "LIMIT :top_k"
                ),
                {**params, "query": query, "top_k": k},
            ).fetchall()

        results = []
        for row in rows:
            meta = ChunkMetadata.from_row(row)
            results.append(
                SearchResult(
                    id=row.id,
                    content=meta.content,
                    score=float(row.score),
                    video_id=meta.video_id,
                    video_title=meta.title,
                    timestamp=meta.start_time,
                    url=meta.url,
                    playlist_id=meta.playlist_id,
                    published_at=meta.published_at,
                )
            )
        return results
