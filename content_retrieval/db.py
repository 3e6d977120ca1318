"""Database engine, initialization, and index creation for DuckDB."""

from pathlib import Path

import duckdb
from sqlalchemy import MetaData, Table, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .config import VectorStoreConfig
from .errors import ConfigurationError, IndexCreationError
from .logging_config import get_logger
from .models import Chunk

logger = get_logger(__name__)

# similarity metric -> (HNSW metric, distance function the index accelerates)
METRICS = {
    "cosine": ("cosine", "array_cosine_distance"),
    "dotProduct": ("ip", "array_negative_inner_product"),
    "euclidean": ("l2sq", "array_distance"),
}

FILTER_COLUMNS = ("video_id", "playlist_id", "published_at", "start_time")


def qualified_table(config: VectorStoreConfig) -> str:
    return f"{config.database_name}.{config.collection_name}"


def fts_schema(config: VectorStoreConfig) -> str:
    """Schema the DuckDB FTS extension creates for the chunk table."""
    return f"fts_{config.database_name}_{config.collection_name}"


def chunk_table(config: VectorStoreConfig) -> Table:
    """The ``Chunk`` table copied under the configured schema and name."""
    return Chunk.__table__.to_metadata(  # type: ignore[attr-defined]
        MetaData(),
        schema=config.database_name,
        name=config.collection_name,
    )


def get_engine(config: VectorStoreConfig) -> Engine:
    """Create a SQLAlchemy engine backed by DuckDB with fts and vss loaded."""
    database = config.connection_string
    if database == ":memory:":
        # Per-thread connections must see the same in-memory database.
        database = f":memory:{config.collection_name}"
    else:
        Path(database).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(f"duckdb:///{database}")

    @event.listens_for(engine, "connect")
    def _load_extensions(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("INSTALL fts; LOAD fts;")
        cursor.execute("INSTALL vss; LOAD vss;")
        cursor.execute("SET hnsw_enable_experimental_persistence = true;")
        cursor.close()

    return engine


def init_db(engine: Engine, config: VectorStoreConfig) -> None:
    """Create the chunk table and its fixed-size embedding column."""
    with engine.begin() as conn:
        conn.exec_driver_sql(f"CREATE SCHEMA IF NOT EXISTS {config.database_name}")
    chunk_table(config).metadata.create_all(engine)

    expected = f"FLOAT[{config.dimensions}]"
    with engine.begin() as conn:
        row = conn.execute(
            text(
                "SELECT data_type FROM information_schema.columns "
                "WHERE table_schema = :schema AND table_name = :table "
                "AND column_name = 'embedding'"
            ),
            {"schema": config.database_name, "table": config.collection_name},
        ).fetchone()
        if row is None:
            # Fixed-size arrays can't be declared through SQLModel
            conn.exec_driver_sql(
                f"ALTER TABLE {qualified_table(config)} ADD COLUMN embedding {expected}"
            )
        elif expected not in row[0]:
            raise ConfigurationError(
                f"{qualified_table(config)}.embedding is {row[0]}, "
                f"but the store is configured for {expected}"
            )


def existing_indexes(engine: Engine, config: VectorStoreConfig) -> set[str]:
    with engine.connect() as conn:
        rows = conn.execute(
            text(
                "SELECT index_name FROM duckdb_indexes() "
                "WHERE schema_name = :schema AND table_name = :table"
            ),
            {"schema": config.database_name, "table": config.collection_name},
        ).fetchall()
    return {row[0] for row in rows}


def create_vector_index(engine: Engine, config: VectorStoreConfig) -> bool:
    """Create the HNSW index once. Returns True if it was created."""
    if config.index_name in existing_indexes(engine, config):
        return False
    metric, _ = METRICS[config.similarity_metric]
    logger.info(
        "Creating vector search index %s (metric=%s, dimensions=%d)",
        config.index_name,
        metric,
        config.dimensions,
    )
    try:
        with engine.begin() as conn:
            conn.exec_driver_sql(
                f"CREATE INDEX {config.index_name} ON {qualified_table(config)} "
                f"USING HNSW (embedding) WITH (metric = '{metric}')"
            )
    except (SQLAlchemyError, duckdb.Error) as exc:
        raise IndexCreationError(
            f"Could not create vector index {config.index_name}: {exc}"
        ) from exc
    return True


def create_filter_indexes(engine: Engine, config: VectorStoreConfig) -> None:
    """Create ART indexes on the metadata columns used by filters."""
    try:
        with engine.begin() as conn:
            for column in FILTER_COLUMNS:
                conn.exec_driver_sql(
                    f"CREATE INDEX IF NOT EXISTS "
                    f"idx_{config.collection_name}_{column} "
                    f"ON {qualified_table(config)} ({column})"
                )
    except (SQLAlchemyError, duckdb.Error) as exc:
        raise IndexCreationError(f"Could not create filter indexes: {exc}") from exc


def create_fts_index(engine: Engine, config: VectorStoreConfig) -> None:
    """(Re)build the full-text index on content and title."""
    with engine.begin() as conn:
        conn.exec_driver_sql(
            "PRAGMA create_fts_index("
            f"  '{qualified_table(config)}', 'id', 'content', 'title',"
            "  stemmer='porter', overwrite=1"
            ")"
        )


def fts_index_exists(engine: Engine, config: VectorStoreConfig) -> bool:
    with engine.connect() as conn:
        row = conn.execute(
            text("SELECT count(*) FROM duckdb_schemas() WHERE schema_name = :schema"),
            {"schema": fts_schema(config)},
        ).fetchone()
    return bool(row and row[0])
