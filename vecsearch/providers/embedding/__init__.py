"""Embedding provider implementations.

Four implementations of IEmbeddingProvider (in ``auto`` priority order):
    1. OpenAIEmbeddingProvider   -- text-embedding-3-small (1536 dims).
       Requires an API key; also drives OpenAI-compatible endpoints.
    2. NomicEmbeddingProvider    -- nomic-embed-text via Ollama (768 dims).
       Free and local, but requires a running Ollama server.
    3. SentenceTransformerEmbeddingProvider -- local PyTorch model.
       Imported directly where needed because sentence-transformers is an
       optional extra.
    4. HashEmbeddingProvider     -- deterministic feature hashing, no model.
"""

from vecsearch.providers.embedding.hash_embedding_provider import HashEmbeddingProvider
from vecsearch.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from vecsearch.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["HashEmbeddingProvider", "NomicEmbeddingProvider", "OpenAIEmbeddingProvider"]
