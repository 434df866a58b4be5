"""Source ingestion for the vecsearch store.

1. **Chunk** (chunker.py / TextChunker) -- splits a source into overlapping
   character windows with stable ``"{source_id}#{index}"`` ids.

2. **Embed** (via IEmbeddingProvider) -- batched, with retry and backoff on
   transient provider failures.

3. **Store** (via VectorStore) -- one document per chunk; stale chunks of a
   re-ingested source are deleted.

The IngestionPipeline class orchestrates all three stages.
"""

from vecsearch.services.ingestion.chunker import (
    TextChunker,
    chunk_text,
    make_chunk_id,
    parse_chunk_id,
)
from vecsearch.services.ingestion.ingestion_pipeline import IngestionPipeline

__all__ = [
    "IngestionPipeline",
    "TextChunker",
    "chunk_text",
    "make_chunk_id",
    "parse_chunk_id",
]
