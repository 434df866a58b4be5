"""Public interface definitions for index structures and external providers.

Business logic depends only on the abstract base classes defined here;
concrete adapters under ``vecsearch.providers`` implement them and are
injected at startup by ``vecsearch.main``.  Swapping OpenAI for a local
model, or SQLite for another database, touches only the adapter.
"""

from vecsearch.interfaces.ann_index import BuildCancelled, IAnnIndex
from vecsearch.interfaces.cache_provider import ICacheProvider
from vecsearch.interfaces.document_backend import IDocumentBackend
from vecsearch.interfaces.embedding_provider import IEmbeddingProvider
from vecsearch.interfaces.scorer_provider import IPairwiseScorer

__all__ = [
    "BuildCancelled",
    "IAnnIndex",
    "ICacheProvider",
    "IDocumentBackend",
    "IEmbeddingProvider",
    "IPairwiseScorer",
]
