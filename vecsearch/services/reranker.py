"""Second-stage reranking of search candidates.

A first-stage k-NN search is cheap but coarse.  The :class:`Reranker` takes
its candidates and reorders them with a pairwise relevance model
(:class:`~vecsearch.interfaces.scorer_provider.IPairwiseScorer`) that reads
the query text and each candidate's content together.

The reranker only reorders and truncates.  It never adds candidates.
"""

from __future__ import annotations

import structlog

from vecsearch.interfaces.scorer_provider import IPairwiseScorer
from vecsearch.models.search import SearchHit
from vecsearch.utils.errors import InvalidArgumentError, VecSearchError

logger = structlog.get_logger(logger_name=__name__)


class Reranker:
    """Reorders candidate hits by pairwise relevance to a query.

    Parameters
    ----------
    scorer:
        Model scoring ``(query, passage)`` pairs; larger is more relevant.
    default_top_n:
        Result size when :meth:`rerank` is called without ``top_n``.
    """

    def __init__(self, scorer: IPairwiseScorer, default_top_n: int = 10) -> None:
        if default_top_n < 1:
            raise InvalidArgumentError("default_top_n must be >= 1")
        self._scorer = scorer
        self._default_top_n = default_top_n

    @property
    def scorer_name(self) -> str:
        return self._scorer.get_provider_name()

    async def rerank(
        self,
        query: str,
        candidates: list[SearchHit],
        top_n: int | None = None,
    ) -> list[SearchHit]:
        """Return the *top_n* most relevant candidates with ``rerank_score`` set.

        Duplicate ids keep their first occurrence.  Equal scores keep the
        incoming order.  Candidates without content are scored against an
        empty passage.

        Raises
        ------
        InvalidArgumentError
            If ``top_n < 1``.
        VecSearchError
            If the scorer fails or returns the wrong number of scores.
        """
        top_n = self._default_top_n if top_n is None else top_n
        if top_n < 1:
            raise InvalidArgumentError(f"top_n must be >= 1, got {top_n}")

        seen: set[str] = set()
        unique: list[SearchHit] = []
        for hit in candidates:
            if hit.id not in seen:
                seen.add(hit.id)
                unique.append(hit)
        if not unique:
            return []

        without_content = [hit.id for hit in unique if hit.content is None]
        if without_content:
            logger.warning(
                "rerank_missing_content",
                count=len(without_content),
                sample=without_content[:5],
            )

        scores = await self._scorer.score(query, [hit.content or "" for hit in unique])
        if len(scores) != len(unique):
            raise VecSearchError(
                f"Scorer returned {len(scores)} scores for {len(unique)} passages",
                provider_name=self.scorer_name,
            )

        # sorted() is stable, so ties keep first-stage order.
        ranked = sorted(zip(unique, scores), key=lambda pair: -pair[1])[:top_n]
        logger.debug(
            "rerank_complete",
            scorer=self.scorer_name,
            candidates=len(unique),
            returned=len(ranked),
        )
        return [hit.model_copy(update={"rerank_score": float(score)}) for hit, score in ranked]
