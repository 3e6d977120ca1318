"""Vector, text, and hybrid search with the HybridRetriever class."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from pydantic import ValidationError

from .config import HybridWeights, RetrievalSettings
from .embeddings import EmbeddingService
from .errors import ConfigurationError, InvalidQueryError
from .logging_config import get_logger
from .models import HybridSearchResult, RetrievalFilters, SearchResult
from .text_search import DuckDBTextSearch, TextSearch
from .vector_store import VectorStore, create_vector_store

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Weighted score fusion
# ---------------------------------------------------------------------------


def combine_results(
    vector_results: List[SearchResult],
    text_results: List[SearchResult],
    weights: HybridWeights,
) -> List[SearchResult]:
    """Merge both legs by id with weighted, accumulated scores.

    ``min_score`` gates each leg's native score before weighting. An id
    found by both legs gets the sum of its two weighted scores. Returns all
    merged results sorted by score descending, ties broken by id.
    """
    merged: Dict[str, SearchResult] = {}

    for result in vector_results:
        if result.score >= weights.min_score:
            merged[result.id] = result.model_copy(
                update={"score": result.score * weights.vector_weight}
            )

    for result in text_results:
        if result.score < weights.min_score:
            continue
        existing = merged.get(result.id)
        if existing is not None:
            existing.score += result.score * weights.text_weight
        else:
            merged[result.id] = result.model_copy(
                update={"score": result.score * weights.text_weight}
            )

    return sorted(merged.values(), key=lambda r: (-r.score, r.id))


# ---------------------------------------------------------------------------
# HybridRetriever
# ---------------------------------------------------------------------------


class HybridRetriever:
    """Runs vector and text search concurrently and fuses the rankings.

    Each leg fails soft: an error in one leg is logged and that leg
    contributes no results, so a partial backend outage degrades to
    single-signal search instead of failing the request.
    """

    def __init__(
        self,
        vector_store: VectorStore,
        text_search: TextSearch,
        embeddings: EmbeddingService,
        weights: HybridWeights | None = None,
    ):
        self.vector_store = vector_store
        self.text_search = text_search
        self.embeddings = embeddings
        self.weights = weights or HybridWeights()

    @classmethod
    async def create(cls, settings: RetrievalSettings | None = None) -> "HybridRetriever":
        """Connect the configured backends and wire up a retriever."""
        settings = settings or RetrievalSettings.from_env()
        store = create_vector_store(settings.vector_store)
        await store.connect()
        text_search = DuckDBTextSearch.from_store(store)
        await text_search.ensure_index()
        return cls(
            store,
            text_search,
            EmbeddingService(settings.embedding),
            weights=settings.weights,
        )

    # ------------------------------------------------------------------
    # Legs
    # ------------------------------------------------------------------

    async def _vector_leg(
        self, query: str, top_k: int, filters: RetrievalFilters | None
    ) -> List[SearchResult]:
        try:
            embedding = await self.embeddings.embed(query)
            matches = await self.vector_store.query(embedding, top_k, filters)
        except ConfigurationError:
            # e.g. the embedding model and the index disagree on dimensions
            logger.error("Vector search misconfigured for %r", query, exc_info=True)
            return []
        except Exception:
            logger.warning("Vector search failed for %r", query, exc_info=True)
            return []
        return [SearchResult.from_match(match) for match in matches]

    async def _text_leg(
        self, query: str, top_k: int, filters: RetrievalFilters | None
    ) -> List[SearchResult]:
        try:
            return await self.text_search.search_text(query, top_k, filters)
        except Exception:
            logger.warning("Text search failed for %r", query, exc_info=True)
            return []

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        top_k: int = 10,
        filters: RetrievalFilters | Dict[str, Any] | None = None,
        weights: HybridWeights | None = None,
    ) -> HybridSearchResult:
        """Hybrid search returning both raw legs and the fused top-k."""
        if not isinstance(query, str) or not query.strip():
            raise InvalidQueryError("Query must be a non-empty string")
        if top_k < 1:
            raise InvalidQueryError(f"top_k must be >= 1, got {top_k}")
        try:
            filters = RetrievalFilters.coerce(filters)
        except ValidationError as exc:
            raise InvalidQueryError(f"Invalid filters: {exc}") from exc
        weights = weights or self.weights

        vector_results, text_results = await asyncio.gather(
            self._vector_leg(query, top_k, filters),
            self._text_leg(query, top_k, filters),
        )
        combined = combine_results(vector_results, text_results, weights)

        return HybridSearchResult(
            vector_results=vector_results,
            text_results=text_results,
            combined_results=combined[:top_k],
        )

    async def find_similar_in_video(
        self, query: str, video_id: str, top_k: int = 5
    ) -> List[SearchResult]:
        """Most relevant chunks within a single video."""
        results = await self.search(query, top_k, RetrievalFilters(video_id=video_id))
        return results.combined_results

    async def find_recent_relevant(
        self, query: str, days_back: int = 30, top_k: int = 10
    ) -> List[SearchResult]:
        """Relevant chunks published in the last *days_back* days."""
        if days_back < 0:
            raise InvalidQueryError(f"days_back must be >= 0, got {days_back}")
        published_after = datetime.now(timezone.utc) - timedelta(days=days_back)
        results = await self.search(
            query, top_k, RetrievalFilters(published_after=published_after)
        )
        return results.combined_results
