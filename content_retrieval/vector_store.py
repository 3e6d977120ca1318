"""Vector index interface and its DuckDB (vss/HNSW) implementation."""

import asyncio
import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import duckdb
from sqlalchemy import bindparam, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .config import VectorStoreConfig
from .db import (
    METRICS,
    create_filter_indexes,
    create_vector_index,
    get_engine,
    init_db,
    qualified_table,
)
from .errors import ConfigurationError, DimensionMismatchError, InvalidQueryError
from .filters import build_filter_clause
from .logging_config import get_logger
from .models import (
    ChunkMetadata,
    QueryMatch,
    RetrievalFilters,
    VectorRecord,
    VectorStoreStats,
)

logger = get_logger(__name__)

# Candidates fetched from the ANN index before filtering and truncation.
MIN_CANDIDATES = 100
CANDIDATE_FACTOR = 10

_COLUMNS = (
    "id, content, video_id, playlist_id, title, published_at, "
    "start_time, url, raw_metadata"
)


def candidate_count(k: int) -> int:
    return max(k * CANDIDATE_FACTOR, MIN_CANDIDATES)


class VectorStore(ABC):
    """Abstract interface for a persistent vector index."""

    async def connect(self) -> None:
        """Open the backend and ensure its indexes exist."""

    async def disconnect(self) -> None:
        """Release backend resources."""

    async def __aenter__(self) -> "VectorStore":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect()

    @abstractmethod
    async def upsert(self, records: List[VectorRecord]) -> None:
        """Insert or fully replace records by id."""

    @abstractmethod
    async def query(
        self,
        vector: List[float],
        k: int,
        filters: RetrievalFilters | Dict[str, Any] | None = None,
    ) -> List[QueryMatch]:
        """Return at most *k* matches, best first."""

    @abstractmethod
    async def delete(self, ids: List[str]) -> None:
        """Delete records by id; unknown ids are ignored."""

    @abstractmethod
    async def get_stats(self) -> VectorStoreStats:
        ...

    async def search_similar(
        self,
        text: str,
        embedding: List[float],
        k: int = 10,
        filters: RetrievalFilters | Dict[str, Any] | None = None,
    ) -> List[QueryMatch]:
        return await self.query(embedding, k, filters)


class DuckDBVectorStore(VectorStore):
    """Vector store on a DuckDB table with an HNSW index.

    Well-known metadata fields (videoId, playlistId, title, publishedAt,
    startTime, url) are stored in their own indexed columns; the full
    metadata bag is kept as JSON alongside them.

    Usage:
        store = DuckDBVectorStore(VectorStoreConfig(connection_string="chunks.duckdb"))
        await store.connect()
        await store.upsert([VectorRecord(id="v1#0", values=[...], metadata={...})])
        matches = await store.query(embedding, k=5, filters={"videoId": "v1"})
    """

    def __init__(self, config: VectorStoreConfig):
        self.config = config
        self._engine: Optional[Engine] = None
        _, self._distance_fn = METRICS[config.similarity_metric]

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("DuckDBVectorStore is not connected; call connect() first")
        return self._engine

    @property
    def table(self) -> str:
        return qualified_table(self.config)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        if self._engine is not None:
            return
        await asyncio.to_thread(self._connect_sync)

    def _connect_sync(self) -> None:
        engine = get_engine(self.config)
        try:
            init_db(engine, self.config)
            create_filter_indexes(engine, self.config)
            create_vector_index(engine, self.config)
        except Exception:
            engine.dispose()
            raise
        self._engine = engine
        logger.info(
            "Connected to DuckDB %s (table %s)",
            self.config.connection_string,
            self.table,
        )

    async def disconnect(self) -> None:
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        logger.info("Disconnected from DuckDB %s", self.config.connection_string)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _check_dimensions(self, values: List[float], record_id: str | None = None):
        if len(values) != self.config.dimensions:
            raise DimensionMismatchError(self.config.dimensions, len(values), record_id)

    async def upsert(self, records: List[VectorRecord]) -> None:
        if not records:
            return
        # Validate the whole batch before touching the database.
        latest: Dict[str, VectorRecord] = {}
        for record in records:
            self._check_dimensions(record.values, record.id)
            latest[record.id] = record
        rows = [self._to_row(record) for record in latest.values()]

        try:
            await asyncio.to_thread(self._upsert_sync, rows)
        except (SQLAlchemyError, duckdb.Error):
            logger.error("Error upserting %d vectors", len(rows), exc_info=True)
            raise
        logger.info("Upserted %d vectors into %s", len(rows), self.table)

    def _to_row(self, record: VectorRecord) -> Dict[str, Any]:
        meta = ChunkMetadata.from_dict(record.metadata)
        raw = {k: v for k, v in record.metadata.items() if k != "content"}
        return {
            "id": record.id,
            "content": meta.content,
            "video_id": meta.video_id,
            "playlist_id": meta.playlist_id,
            "title": meta.title,
            "published_at": meta.published_at,
            "start_time": meta.start_time,
            "url": meta.url,
            "raw_metadata": json.dumps(raw, default=str),
            "embedding": [float(x) for x in record.values],
        }

    def _upsert_sync(self, rows: List[Dict[str, Any]]) -> None:
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        ids = [row["id"] for row in rows]
        with self.engine.begin() as conn:
            created = dict(
                conn.execute(
                    text(f"SELECT id, created_at FROM {self.table} WHERE id IN :ids")
                    .bindparams(bindparam("ids", expanding=True)),
                    {"ids": ids},
                ).fetchall()
            )
            # Delete + insert replaces the whole row, metadata included.
            conn.execute(
                text(f"DELETE FROM {self.table} WHERE id IN :ids")
                .bindparams(bindparam("ids", expanding=True)),
                {"ids": ids},
            )
            conn.execute(
                text(
                    f"INSERT INTO {self.table} "
                    "(id, content, video_id, playlist_id, title, published_at, "
                    " start_time, url, raw_metadata, created_at, updated_at, embedding) "
                    "VALUES (:id, :content, :video_id, :playlist_id, :title, "
                    " :published_at, :start_time, :url, :raw_metadata, "
                    " :created_at, :updated_at, "
                    f" CAST(:embedding AS FLOAT[{self.config.dimensions}]))"
                ),
                [
                    {**row, "created_at": created.get(row["id"]) or now, "updated_at": now}
                    for row in rows
                ],
            )

    async def delete(self, ids: List[str]) -> None:
        if not ids:
            return
        try:
            deleted = await asyncio.to_thread(self._delete_sync, list(ids))
        except (SQLAlchemyError, duckdb.Error):
            logger.error("Error deleting %d vectors", len(ids), exc_info=True)
            raise
        logger.info("Deleted %d vectors from %s", deleted, self.table)

    def _delete_sync(self, ids: List[str]) -> int:
        ids_param = bindparam("ids", expanding=True)
        with self.engine.begin() as conn:
            existing = conn.execute(
                text(f"SELECT count(*) FROM {self.table} WHERE id IN :ids")
                .bindparams(ids_param),
                {"ids": ids},
            ).scalar_one()
            conn.execute(
                text(f"DELETE FROM {self.table} WHERE id IN :ids").bindparams(ids_param),
                {"ids": ids},
            )
        return int(existing)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _score(self, distance: float) -> float:
        metric = self.config.similarity_metric
        if metric == "cosine":
            return 1.0 - distance
        if metric == "dotProduct":
            return -distance
        return 1.0 / (1.0 + distance)

    async def query(
        self,
        vector: List[float],
        k: int,
        filters: RetrievalFilters | Dict[str, Any] | None = None,
    ) -> List[QueryMatch]:
        if k < 1:
            raise InvalidQueryError(f"k must be >= 1, got {k}")
        self._check_dimensions(vector)
        filters = RetrievalFilters.coerce(filters)
        try:
            return await asyncio.to_thread(self._query_sync, vector, k, filters)
        except (SQLAlchemyError, duckdb.Error):
            logger.error("Error querying vectors", exc_info=True)
            raise

    def _query_sync(
        self,
        vector: List[float],
        k: int,
        filters: RetrievalFilters | None,
    ) -> List[QueryMatch]:
        where, params = build_filter_clause(filters)
        # Constant vector and limit so the optimizer can use the HNSW index.
        # Filters apply before the candidate cut so matches outside the
        # table-wide nearest neighbours are not lost.
        emb_literal = "[" + ",".join(str(float(x)) for x in vector) + "]"
        sql = text(
            f"SELECT {_COLUMNS}, distance FROM ("
            f"  SELECT {_COLUMNS}, "
            f"         {self._distance_fn}(embedding, "
            f"{emb_literal}::FLOAT[{self.config.dimensions}]) AS distance "
            f"  FROM {self.table} "
            f"  WHERE {where} "
            f"  ORDER BY distance ASC "
            f"  LIMIT {candidate_count(int(k))}"
            f") candidates "
            f"WHERE distance IS NOT NULL "
            f"ORDER BY distance ASC, id ASC "
            f"LIMIT {int(k)}"
        )
        with self.engine.connect() as conn:
            rows = conn.execute(sql, params).fetchall()

        return [
            QueryMatch(
                id=row.id,
                score=self._score(float(row.distance)),
                metadata=ChunkMetadata.from_row(row).to_dict(),
            )
            for row in rows
        ]

    async def get_stats(self) -> VectorStoreStats:
        return await asyncio.to_thread(self._stats_sync)

    def _stats_sync(self) -> VectorStoreStats:
        with self.engine.connect() as conn:
            total = conn.execute(text(f"SELECT count(*) FROM {self.table}")).scalar_one()
            size = conn.execute(
                text(
                    "SELECT used_blocks * block_size FROM pragma_database_size() "
                    "WHERE database_name = current_database()"
                )
            ).scalar()
        return VectorStoreStats(
            total_vectors=int(total),
            dimensions=self.config.dimensions,
            index_size=int(size) if size is not None else None,
        )

    async def get_video_chunks(self, video_id: str) -> List[VectorRecord]:
        """All records of one video, in transcript order."""
        return await asyncio.to_thread(self._video_chunks_sync, video_id)

    def _video_chunks_sync(self, video_id: str) -> List[VectorRecord]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                text(
                    f"SELECT {_COLUMNS}, embedding FROM {self.table} "
                    "WHERE video_id = :video_id "
                    "ORDER BY start_time ASC NULLS LAST, id ASC"
                ),
                {"video_id": video_id},
            ).fetchall()
        return [
            VectorRecord(
                id=row.id,
                values=list(row.embedding or []),
                metadata=ChunkMetadata.from_row(row).to_dict(),
            )
            for row in rows
        ]

    async def get_unique_video_ids(self) -> List[str]:
        return await asyncio.to_thread(self._unique_video_ids_sync)

    def _unique_video_ids_sync(self) -> List[str]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                text(
                    f"SELECT DISTINCT video_id FROM {self.table} "
                    "WHERE video_id IS NOT NULL ORDER BY video_id"
                )
            ).fetchall()
        return [row[0] for row in rows]


BACKENDS = {
    "duckdb": DuckDBVectorStore,
}


def create_vector_store(config: VectorStoreConfig) -> VectorStore:
    """Instantiate the backend named by ``config.backend`` (not yet connected)."""
    try:
        backend = BACKENDS[config.backend]
    except KeyError:
        raise ConfigurationError(
            f"Unknown vector store backend {config.backend!r}; "
            f"expected one of {sorted(BACKENDS)}"
        ) from None
    return backend(config)
