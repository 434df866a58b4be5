"""Engine services: the document store, the index lifecycle, querying,
reranking and ingestion.

Every service receives its collaborators through its constructor; the
wiring lives in :mod:`vecsearch.main` (and the CLI).
"""

from vecsearch.services.index_manager import IndexManager
from vecsearch.services.index_snapshot import IndexSnapshot
from vecsearch.services.query_engine import QueryEngine
from vecsearch.services.rebuild_tracker import RebuildTracker
from vecsearch.services.reranker import Reranker
from vecsearch.services.vector_store import VectorStore

__all__ = [
    "IndexManager",
    "IndexSnapshot",
    "QueryEngine",
    "RebuildTracker",
    "Reranker",
    "VectorStore",
]
