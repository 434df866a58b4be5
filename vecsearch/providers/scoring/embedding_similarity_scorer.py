"""Relevance scorer that reuses an embedding provider.

Embeds the query and all passages in a single batch call and scores each
passage by cosine similarity to the query.  Cheaper than a cross-encoder
and always available when an embedding provider is configured.
"""

from __future__ import annotations

import numpy as np
import structlog

from vecsearch.interfaces.embedding_provider import IEmbeddingProvider
from vecsearch.interfaces.scorer_provider import IPairwiseScorer
from vecsearch.utils.errors import EmbeddingError

logger = structlog.get_logger(logger_name=__name__)


class EmbeddingSimilarityScorer(IPairwiseScorer):
    def __init__(self, embedding_provider: IEmbeddingProvider) -> None:
        self._provider = embedding_provider

    async def score(self, query: str, passages: list[str]) -> list[float]:
        if not passages:
            return []
        vectors = await self._provider.embed([query, *passages])
        if len(vectors) != len(passages) + 1:
            raise EmbeddingError(
                f"Expected {len(passages) + 1} embeddings, got {len(vectors)}",
                provider_name=self._provider.get_provider_name(),
            )
        matrix = np.asarray(vectors, dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1)
        norms[norms == 0.0] = 1.0
        unit = matrix / norms[:, None]
        return (unit[1:] @ unit[0]).tolist()

    def get_provider_name(self) -> str:
        return f"embedding_similarity_{self._provider.get_provider_name()}"

    def is_available(self) -> bool:
        return self._provider.is_available()
