"""Unit tests for the Reranker and the embedding-similarity scorer."""

from __future__ import annotations

import pytest

from vecsearch.interfaces.scorer_provider import IPairwiseScorer
from vecsearch.models.search import SearchHit
from vecsearch.providers.embedding.hash_embedding_provider import HashEmbeddingProvider
from vecsearch.providers.scoring.embedding_similarity_scorer import EmbeddingSimilarityScorer
from vecsearch.services.reranker import Reranker
from vecsearch.utils.errors import InvalidArgumentError, VecSearchError


class _LengthScorer(IPairwiseScorer):
    """Scores a passage by its length; records what it was asked."""

    def __init__(self, drop_one: bool = False) -> None:
        self.passages: list[str] = []
        self.drop_one = drop_one

    async def score(self, query: str, passages: list[str]) -> list[float]:
        self.passages = list(passages)
        scores = [float(len(p)) for p in passages]
        return scores[:-1] if self.drop_one else scores

    def get_provider_name(self) -> str:
        return "length"

    def is_available(self) -> bool:
        return True


def _hit(doc_id: str, content: str | None, distance: float = 0.0) -> SearchHit:
    return SearchHit(id=doc_id, distance=distance, content=content)


class TestReranker:
    @pytest.mark.asyncio
    async def test_reorders_by_score(self) -> None:
        reranker = Reranker(_LengthScorer())
        ranked = await reranker.rerank(
            "q", [_hit("a", "x"), _hit("b", "xxx"), _hit("c", "xx")]
        )
        assert [h.id for h in ranked] == ["b", "c", "a"]
        assert [h.rerank_score for h in ranked] == [3.0, 2.0, 1.0]

    @pytest.mark.asyncio
    async def test_truncates_to_top_n(self) -> None:
        reranker = Reranker(_LengthScorer(), default_top_n=2)
        ranked = await reranker.rerank("q", [_hit("a", "x"), _hit("b", "xxx"), _hit("c", "xx")])
        assert [h.id for h in ranked] == ["b", "c"]
        ranked = await reranker.rerank(
            "q", [_hit("a", "x"), _hit("b", "xxx"), _hit("c", "xx")], top_n=1
        )
        assert [h.id for h in ranked] == ["b"]

    @pytest.mark.asyncio
    async def test_equal_scores_keep_first_stage_order(self) -> None:
        reranker = Reranker(_LengthScorer())
        ranked = await reranker.rerank("q", [_hit("z", "ab"), _hit("a", "cd"), _hit("m", "ef")])
        assert [h.id for h in ranked] == ["z", "a", "m"]

    @pytest.mark.asyncio
    async def test_duplicates_keep_first_occurrence(self) -> None:
        scorer = _LengthScorer()
        ranked = await Reranker(scorer).rerank(
            "q", [_hit("a", "x", 0.1), _hit("a", "xxxx", 0.5), _hit("b", "xx")]
        )
        assert [h.id for h in ranked] == ["b", "a"]
        assert scorer.passages == ["x", "xx"]
        assert ranked[1].distance == 0.1

    @pytest.mark.asyncio
    async def test_missing_content_scored_as_empty(self) -> None:
        scorer = _LengthScorer()
        ranked = await Reranker(scorer).rerank("q", [_hit("a", None), _hit("b", "x")])
        assert scorer.passages == ["", "x"]
        assert [h.id for h in ranked] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_never_adds_candidates(self) -> None:
        assert await Reranker(_LengthScorer()).rerank("q", []) == []

    @pytest.mark.asyncio
    async def test_score_count_mismatch(self) -> None:
        reranker = Reranker(_LengthScorer(drop_one=True))
        with pytest.raises(VecSearchError, match="scores"):
            await reranker.rerank("q", [_hit("a", "x"), _hit("b", "xx")])

    @pytest.mark.asyncio
    async def test_top_n_validated(self) -> None:
        with pytest.raises(InvalidArgumentError):
            await Reranker(_LengthScorer()).rerank("q", [_hit("a", "x")], top_n=0)
        with pytest.raises(InvalidArgumentError):
            Reranker(_LengthScorer(), default_top_n=0)

    def test_scorer_name(self) -> None:
        assert Reranker(_LengthScorer()).scorer_name == "length"


class TestEmbeddingSimilarityScorer:
    @pytest.mark.asyncio
    async def test_identical_text_scores_highest(self) -> None:
        scorer = EmbeddingSimilarityScorer(HashEmbeddingProvider(dimension=128))
        scores = await scorer.score(
            "acid house in manchester",
            ["baroque chamber music", "acid house in manchester", "house music"],
        )
        assert len(scores) == 3
        assert scores[1] == pytest.approx(1.0)
        assert max(scores) == scores[1]

    @pytest.mark.asyncio
    async def test_empty_passages(self) -> None:
        scorer = EmbeddingSimilarityScorer(HashEmbeddingProvider(dimension=16))
        assert await scorer.score("q", []) == []

    def test_name_and_availability(self) -> None:
        scorer = EmbeddingSimilarityScorer(HashEmbeddingProvider(dimension=16))
        assert scorer.get_provider_name() == "embedding_similarity_hash_embedding_16"
        assert scorer.is_available()
