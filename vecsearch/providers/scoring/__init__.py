"""Pairwise relevance scorers used by the reranker.

CrossEncoderScorer is imported directly where needed because
sentence-transformers is an optional extra.
"""

from vecsearch.providers.scoring.embedding_similarity_scorer import EmbeddingSimilarityScorer

__all__ = ["EmbeddingSimilarityScorer"]
