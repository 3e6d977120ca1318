"""Table definition and value types shared by the vector and lexical paths."""
import json
from datetime import datetime, timezone
from typing import Any, Optional

import sqlalchemy as sa
from pydantic import BaseModel, ConfigDict, Field as PydanticField, field_validator
from pydantic.alias_generators import to_camel
from sqlmodel import Field, SQLModel

# Metadata keys folded into first-class columns, mapped to their column names.
WELL_KNOWN_FIELDS = {
    "videoId": "video_id",
    "playlistId": "playlist_id",
    "title": "title",
    "publishedAt": "published_at",
    "startTime": "start_time",
    "url": "url",
}


def to_utc_naive(value: datetime) -> datetime:
    """Timestamps are stored as naive UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class ChunkBase(SQLModel, table=False):
    id: str
    content: str = Field(default="", sa_column=sa.Column(sa.Text))
    video_id: Optional[str] = Field(default=None)
    playlist_id: Optional[str] = Field(default=None)
    title: Optional[str] = Field(default=None)
    published_at: Optional[datetime] = Field(default=None)
    start_time: Optional[float] = Field(default=None, sa_column=sa.Column(sa.Double))
    url: Optional[str] = Field(default=None)
    raw_metadata: Optional[dict] = Field(default=None, sa_column=sa.Column(sa.JSON))


class Chunk(ChunkBase, table=True):
    """Chunk table. The ``embedding FLOAT[D]`` column is added at connect time."""

    __tablename__ = "chunks"
    __table_args__ = {"extend_existing": True}

    id: str = Field(sa_column=sa.Column(sa.String, primary_key=True))
    created_at: Optional[datetime] = Field(default=None)
    updated_at: Optional[datetime] = Field(default=None)


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


class ChunkMetadata(CamelModel):
    """Typed core metadata plus an open side channel for everything else."""

    video_id: Optional[str] = None
    playlist_id: Optional[str] = None
    title: Optional[str] = None
    published_at: Optional[datetime] = None
    start_time: Optional[float] = None
    url: Optional[str] = None
    content: str = ""
    extra: dict[str, Any] = PydanticField(default_factory=dict)

    @field_validator("published_at")
    @classmethod
    def _normalize_published_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_utc_naive(value) if value is not None else None

    @classmethod
    def from_dict(cls, metadata: dict[str, Any]) -> "ChunkMetadata":
        core: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in metadata.items():
            if key in WELL_KNOWN_FIELDS or key == "content":
                core[key] = value
            else:
                extra[key] = value
        return cls.model_validate({**core, "extra": extra})

    @classmethod
    def from_row(cls, row: Any) -> "ChunkMetadata":
        """Build from a chunk table row (anything with the column attributes)."""
        raw = row.raw_metadata
        if isinstance(raw, str):
            raw = json.loads(raw)
        extra = {
            key: value
            for key, value in (raw or {}).items()
            if key not in WELL_KNOWN_FIELDS and key != "content"
        }
        return cls(
            video_id=row.video_id,
            playlist_id=row.playlist_id,
            title=row.title,
            published_at=row.published_at,
            start_time=row.start_time,
            url=row.url,
            content=row.content or "",
            extra=extra,
        )

    def to_dict(self) -> dict[str, Any]:
        """Rebuild the flat metadata bag (core fields use their camelCase keys)."""
        data = self.model_dump(by_alias=True, exclude={"extra"}, exclude_none=True)
        if isinstance(data.get("publishedAt"), datetime):
            data["publishedAt"] = data["publishedAt"].isoformat()
        return {**self.extra, **data}


# ---------------------------------------------------------------------------
# Vector index values
# ---------------------------------------------------------------------------


class VectorRecord(CamelModel):
    id: str
    values: list[float]
    metadata: dict[str, Any] = PydanticField(default_factory=dict)


class QueryMatch(CamelModel):
    id: str
    score: float
    metadata: dict[str, Any] = PydanticField(default_factory=dict)


class VectorStoreStats(CamelModel):
    total_vectors: int
    dimensions: int
    index_size: Optional[int] = None


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


class StartTimeRange(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None


class RetrievalFilters(CamelModel):
    """Conjunctive metadata filters.

    Keys other than the named ones are kept as extras and become raw
    equality filters on ``metadata.<key>``.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    video_id: Optional[str] = None
    playlist_id: Optional[str] = None
    published_after: Optional[datetime] = None
    published_before: Optional[datetime] = None
    start_time_range: Optional[StartTimeRange] = None

    @field_validator("published_after", "published_before")
    @classmethod
    def _normalize_bounds(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_utc_naive(value) if value is not None else None

    @classmethod
    def coerce(
        cls, filters: "RetrievalFilters | dict[str, Any] | None"
    ) -> "RetrievalFilters | None":
        if filters is None or isinstance(filters, cls):
            return filters
        return cls.model_validate(filters)

    @property
    def extra_filters(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


# ---------------------------------------------------------------------------
# Search results
# ---------------------------------------------------------------------------


class SearchResult(CamelModel):
    id: str
    content: str = ""
    score: float
    video_id: Optional[str] = None
    video_title: Optional[str] = None
    timestamp: Optional[float] = None
    url: Optional[str] = None
    playlist_id: Optional[str] = None
    published_at: Optional[datetime] = None

    @classmethod
    def from_match(cls, match: QueryMatch) -> "SearchResult":
        meta = match.metadata
        return cls(
            id=match.id,
            content=meta.get("content") or "",
            score=match.score,
            video_id=meta.get("videoId"),
            video_title=meta.get("title"),
            timestamp=meta.get("startTime"),
            url=meta.get("url"),
            playlist_id=meta.get("playlistId"),
            published_at=meta.get("publishedAt"),
        )


class HybridSearchResult(CamelModel):
    vector_results: list[SearchResult] = PydanticField(default_factory=list)
    text_results: list[SearchResult] = PydanticField(default_factory=list)
    combined_results: list[SearchResult] = PydanticField(default_factory=list)


# ---------------------------------------------------------------------------
# Ingestion input
# ---------------------------------------------------------------------------


class ChunkIn(CamelModel):
    """A chunk as produced by an upstream ingestion job."""

    id: str
    content: str
    metadata: dict[str, Any] = PydanticField(default_factory=dict)

    def to_record(self, values: list[float]) -> VectorRecord:
        return VectorRecord(
            id=self.id, values=values, metadata={**self.metadata, "content": self.content}
        )
