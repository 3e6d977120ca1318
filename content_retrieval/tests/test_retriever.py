"""Tests for score fusion and the HybridRetriever."""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from content_retrieval.config import HybridWeights
from content_retrieval.errors import DimensionMismatchError, InvalidQueryError
from content_retrieval.models import QueryMatch, RetrievalFilters
from content_retrieval.retriever import HybridRetriever, combine_results
from content_retrieval.tests.conftest import make_result, run


class FakeEmbeddings:
    def __init__(self, fail: bool = False, wait_for: asyncio.Event | None = None):
        self.fail = fail
        self.wait_for = wait_for
        self.calls = []

    async def embed(self, text):
        self.calls.append(text)
        if self.wait_for is not None:
            await self.wait_for.wait()
        if self.fail:
            raise ConnectionError("embedding provider unreachable")
        return [0.1, 0.2, 0.3]


class FakeVectorStore:
    def __init__(self, matches=None, fail: bool = False):
        self.matches = matches or []
        self.fail = fail
        self.calls = []

    async def query(self, vector, k, filters=None):
        self.calls.append((vector, k, filters))
        if self.fail:
            raise ConnectionError("vector backend unreachable")
        return self.matches[:k]


class FakeTextSearch:
    def __init__(self, results=None, fail: bool = False, started: asyncio.Event | None = None):
        self.results = results or []
        self.fail = fail
        self.started = started
        self.calls = []

    async def search_text(self, query, k, filters=None):
        self.calls.append((query, k, filters))
        if self.started is not None:
            self.started.set()
        if self.fail:
            raise ConnectionError("text backend unreachable")
        return self.results[:k]


def _match(id: str, score: float, **metadata) -> QueryMatch:
    return QueryMatch(id=id, score=score, metadata={"content": f"content of {id}", **metadata})


def _retriever(matches=None, texts=None, **kwargs) -> HybridRetriever:
    return HybridRetriever(
        kwargs.pop("store", FakeVectorStore(matches)),
        kwargs.pop("text_search", FakeTextSearch(texts)),
        kwargs.pop("embeddings", FakeEmbeddings()),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Weighted fusion (pure logic)
# ---------------------------------------------------------------------------


class TestCombineResults:
    def test_overlap_accumulates_scores(self):
        weights = HybridWeights(vector_weight=0.7, text_weight=0.3, min_score=0.5)
        vector = [make_result("a", 0.9), make_result("b", 0.6)]
        text = [make_result("b", 0.8), make_result("c", 0.7)]

        combined = combine_results(vector, text, weights)

        assert [r.id for r in combined] == ["b", "a", "c"]
        assert combined[0].score == pytest.approx(0.6 * 0.7 + 0.8 * 0.3)
        assert combined[1].score == pytest.approx(0.63)
        assert combined[2].score == pytest.approx(0.21)

    def test_disjoint_legs_are_weighted_union(self):
        weights = HybridWeights(vector_weight=0.7, text_weight=0.3, min_score=0.0)
        vector = [make_result("a", 0.9)]
        text = [make_result("b", 2.5)]

        combined = combine_results(vector, text, weights)

        scores = {r.id: r.score for r in combined}
        assert scores == {"a": pytest.approx(0.63), "b": pytest.approx(0.75)}
        assert [r.id for r in combined] == ["b", "a"]

    def test_min_score_gates_native_scores(self):
        weights = HybridWeights(vector_weight=0.7, text_weight=0.3, min_score=0.5)
        vector = [make_result("a", 0.49), make_result("b", 0.9)]
        text = [make_result("b", 0.2), make_result("c", 0.4)]

        combined = combine_results(vector, text, weights)

        assert [r.id for r in combined] == ["b"]
        # b's text score is below the gate, so only its vector term counts
        assert combined[0].score == pytest.approx(0.9 * 0.7)

    def test_gate_applies_before_weighting(self):
        # 0.6 * 0.3 = 0.18 is below min_score, but the native 0.6 passes
        weights = HybridWeights(vector_weight=0.7, text_weight=0.3, min_score=0.5)
        combined = combine_results([], [make_result("c", 0.6)], weights)
        assert [r.id for r in combined] == ["c"]

    def test_ties_break_by_id(self):
        weights = HybridWeights(vector_weight=1.0, text_weight=1.0, min_score=0.0)
        vector = [make_result("z", 0.5), make_result("m", 0.5)]
        text = [make_result("a", 0.5)]

        combined = combine_results(vector, text, weights)
        assert [r.id for r in combined] == ["a", "m", "z"]

    def test_inputs_not_mutated(self):
        weights = HybridWeights()
        vector = [make_result("a", 0.9)]
        text = [make_result("a", 0.8)]

        combine_results(vector, text, weights)

        assert vector[0].score == 0.9
        assert text[0].score == 0.8

    def test_empty_legs(self):
        assert combine_results([], [], HybridWeights()) == []


# ---------------------------------------------------------------------------
# HybridRetriever.search
# ---------------------------------------------------------------------------


class TestHybridSearch:
    def test_worked_example(self):
        retriever = _retriever(
            matches=[_match("a", 0.9), _match("b", 0.6)],
            texts=[make_result("b", 0.8), make_result("c", 0.7)],
        )

        result = run(retriever.search("database indexing", top_k=2))

        assert [r.id for r in result.combined_results] == ["b", "a"]
        assert result.combined_results[0].score == pytest.approx(0.66)
        assert result.combined_results[1].score == pytest.approx(0.63)
        assert [r.id for r in result.vector_results] == ["a", "b"]
        assert [r.id for r in result.text_results] == ["b", "c"]

    def test_raw_legs_keep_native_scores(self):
        retriever = _retriever(matches=[_match("a", 0.9)], texts=[make_result("c", 0.7)])
        result = run(retriever.search("query"))
        assert result.vector_results[0].score == 0.9
        assert result.text_results[0].score == 0.7

    def test_combined_never_exceeds_top_k(self):
        matches = [_match(f"v{i}", 0.9 - i * 0.01) for i in range(10)]
        texts = [make_result(f"t{i}", 0.9 - i * 0.01) for i in range(10)]
        retriever = _retriever(matches=matches, texts=texts)

        for top_k in (1, 3, 7):
            result = run(retriever.search("query", top_k=top_k))
            assert len(result.combined_results) <= top_k

    def test_vector_match_metadata_mapped(self):
        retriever = _retriever(
            matches=[
                _match(
                    "vid1#0",
                    0.9,
                    videoId="vid1",
                    title="Intro",
                    startTime=12.0,
                    url="https://youtu.be/vid1",
                    playlistId="pl1",
                    publishedAt="2024-01-10T12:00:00",
                )
            ]
        )
        result = run(retriever.search("query"))
        hit = result.combined_results[0]
        assert hit.video_id == "vid1"
        assert hit.video_title == "Intro"
        assert hit.timestamp == 12.0
        assert hit.playlist_id == "pl1"
        assert hit.published_at == datetime(2024, 1, 10, 12, 0)
        assert hit.content == "content of vid1#0"

    def test_custom_weights(self):
        retriever = _retriever(matches=[_match("a", 0.9)], texts=[make_result("a", 0.9)])
        weights = HybridWeights(vector_weight=0.5, text_weight=0.5, min_score=0.0)
        result = run(retriever.search("query", weights=weights))
        assert result.combined_results[0].score == pytest.approx(0.9)

    def test_filters_passed_to_both_legs(self):
        store = FakeVectorStore([_match("a", 0.9)])
        text_search = FakeTextSearch()
        retriever = _retriever(store=store, text_search=text_search)

        run(retriever.search("query", top_k=4, filters={"videoId": "vid1"}))

        _, k, filters = store.calls[0]
        assert k == 4
        assert isinstance(filters, RetrievalFilters)
        assert filters.video_id == "vid1"
        assert text_search.calls[0] == ("query", 4, filters)

    def test_legs_run_concurrently(self):
        async def scenario():
            text_started = asyncio.Event()
            retriever = _retriever(
                matches=[_match("a", 0.9)],
                embeddings=FakeEmbeddings(wait_for=text_started),
                text_search=FakeTextSearch([make_result("b", 0.8)], started=text_started),
            )
            # The vector leg blocks until the text leg has started.
            return await asyncio.wait_for(retriever.search("query"), timeout=5)

        result = run(scenario())
        assert {r.id for r in result.combined_results} == {"a", "b"}


# ---------------------------------------------------------------------------
# Soft failure per leg
# ---------------------------------------------------------------------------


class TestLegFailures:
    def test_text_leg_failure_keeps_vector_results(self):
        retriever = _retriever(
            matches=[_match("a", 0.9), _match("b", 0.6)],
            text_search=FakeTextSearch(fail=True),
        )
        result = run(retriever.search("query"))

        assert result.text_results == []
        assert [r.id for r in result.combined_results] == ["a", "b"]

    def test_vector_leg_failure_keeps_text_results(self):
        retriever = _retriever(
            texts=[make_result("c", 0.7)],
            store=FakeVectorStore(fail=True),
        )
        result = run(retriever.search("query"))

        assert result.vector_results == []
        assert [r.id for r in result.combined_results] == ["c"]

    def test_embedding_failure_is_vector_leg_failure(self):
        store = FakeVectorStore([_match("a", 0.9)])
        retriever = _retriever(
            store=store,
            texts=[make_result("c", 0.7)],
            embeddings=FakeEmbeddings(fail=True),
        )
        result = run(retriever.search("query"))

        assert store.calls == []
        assert result.vector_results == []
        assert [r.id for r in result.combined_results] == ["c"]

    def test_both_legs_fail(self):
        retriever = _retriever(
            store=FakeVectorStore(fail=True),
            text_search=FakeTextSearch(fail=True),
        )
        result = run(retriever.search("query"))
        assert result.combined_results == []

    def test_dimension_mismatch_keeps_text_results(self, caplog):
        class MismatchedStore(FakeVectorStore):
            async def query(self, vector, k, filters=None):
                raise DimensionMismatchError(1536, len(vector))

        retriever = _retriever(store=MismatchedStore(), texts=[make_result("c", 0.9)])
        with caplog.at_level("ERROR", logger="content_retrieval"):
            result = run(retriever.search("query"))
        assert result.vector_results == []
        assert [r.id for r in result.combined_results] == ["c"]
        assert "Vector search misconfigured" in caplog.text

    def test_failure_is_logged(self, caplog):
        retriever = _retriever(text_search=FakeTextSearch(fail=True))
        with caplog.at_level("WARNING", logger="content_retrieval"):
            run(retriever.search("query"))
        assert "Text search failed" in caplog.text


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class TestInputValidation:
    @pytest.mark.parametrize("query", ["", "   "])
    def test_empty_query_rejected_before_io(self, query):
        store = FakeVectorStore()
        text_search = FakeTextSearch()
        embeddings = FakeEmbeddings()
        retriever = _retriever(store=store, text_search=text_search, embeddings=embeddings)

        with pytest.raises(InvalidQueryError):
            run(retriever.search(query))
        assert embeddings.calls == [] and text_search.calls == []

    @pytest.mark.parametrize("top_k", [0, -3])
    def test_non_positive_top_k_rejected(self, top_k):
        text_search = FakeTextSearch()
        retriever = _retriever(text_search=text_search)
        with pytest.raises(InvalidQueryError):
            run(retriever.search("query", top_k=top_k))
        assert text_search.calls == []

    def test_malformed_filters_rejected(self):
        retriever = _retriever()
        with pytest.raises(InvalidQueryError):
            run(retriever.search("query", filters={"publishedAfter": "not a date"}))


# ---------------------------------------------------------------------------
# Convenience helpers
# ---------------------------------------------------------------------------


class TestConvenienceHelpers:
    def test_find_similar_in_video(self):
        store = FakeVectorStore([_match("a", 0.9, videoId="vid1")])
        retriever = _retriever(store=store)

        results = run(retriever.find_similar_in_video("query", "vid1"))

        assert [r.id for r in results] == ["a"]
        _, k, filters = store.calls[0]
        assert k == 5
        assert filters.video_id == "vid1"

    def test_find_recent_relevant(self):
        text_search = FakeTextSearch([make_result("c", 0.7)])
        retriever = _retriever(text_search=text_search)

        results = run(retriever.find_recent_relevant("query", days_back=7))

        assert [r.id for r in results] == ["c"]
        _, k, filters = text_search.calls[0]
        assert k == 10
        expected = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=7)
        assert abs(filters.published_after - expected) < timedelta(minutes=1)

    def test_negative_days_back_rejected(self):
        with pytest.raises(InvalidQueryError):
            run(_retriever().find_recent_relevant("query", days_back=-1))
