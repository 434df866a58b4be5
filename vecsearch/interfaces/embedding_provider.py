"""Abstract base class for text-embedding service providers.

Defines the contract for generating embedding vectors from text.
Implementations may wrap OpenAI ``text-embedding-3-small``, Nomic
``nomic-embed-text`` (local via Ollama), Sentence Transformers, or the
deterministic hashing provider used offline and in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   OpenAIEmbeddingProvider              -- text-embedding-3-small (requires API key)
#   NomicEmbeddingProvider               -- nomic-embed-text via Ollama (local)
#   SentenceTransformerEmbeddingProvider -- all-MiniLM-L6-v2 (local, needs PyTorch)
#   HashEmbeddingProvider                -- feature hashing, no network, deterministic
# Located in: vecsearch/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services.

    Consumed by the ingestion pipeline (chunk embeddings), the query engine
    (text queries) and the embedding-similarity reranker.
    """

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            One or more text strings to embed.  Implementations should
            handle batching internally if the underlying API has a per-call
            limit.

        Returns
        -------
        list[list[float]]
            Embedding vectors corresponding positionally to *texts*.  Each
            inner list has length equal to :meth:`get_dimension`.

        Raises
        ------
        vecsearch.utils.errors.EmbeddingError
            If the embedding call fails (``transient=True`` for retryable
            failures).
        vecsearch.utils.errors.RateLimitError
            If the provider rejected the call for rate-limit reasons.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string.

        A convenience wrapper around :meth:`embed` for the common
        single-text case (e.g. embedding a search query).
        """

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the embedding vectors.

        This value must remain constant for the lifetime of the provider
        instance and must match the dimension of the vector store.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"openai-text-embedding-3-small"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured and reachable."""
