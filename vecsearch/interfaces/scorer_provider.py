"""Abstract base class for pairwise relevance scorers used by the reranker."""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations (vecsearch/providers/scoring/):
#   CrossEncoderScorer          -- sentence-transformers cross-encoder
#   EmbeddingSimilarityScorer   -- cosine similarity via an embedding provider
class IPairwiseScorer(ABC):
    """Scores how relevant each passage is to a query.  Larger is more relevant."""

    @abstractmethod
    async def score(self, query: str, passages: list[str]) -> list[float]:
        """Return one relevance score per passage, positionally aligned."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this scorer."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the scorer's model or provider can be used."""
