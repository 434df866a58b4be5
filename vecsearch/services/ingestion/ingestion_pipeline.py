"""Orchestrator for source ingestion: **chunk -> embed -> store**.

The :class:`IngestionPipeline` coordinates three collaborators that know
nothing about each other:

    1. :class:`TextChunker`        -- splits the source into overlapping windows
    2. :class:`IEmbeddingProvider` -- embeds chunk texts in batches
    3. :class:`VectorStore`        -- stores one document per chunk

Re-ingesting a source is idempotent.  Chunk ids are ``"{source_id}#{index}"``,
so the same chunks are addressed again: unchanged chunks are skipped without
an embedding call, changed chunks are replaced, and chunks beyond the new
chunk count are deleted.

Embedding calls are retried with exponential backoff on transient provider
failures.  Caller errors (dimension mismatch, bad chunk window) surface
immediately.
"""

from __future__ import annotations

import time

import structlog

from vecsearch.config.settings import Settings
from vecsearch.interfaces.embedding_provider import IEmbeddingProvider
from vecsearch.models.document import Document
from vecsearch.models.filters import Eq
from vecsearch.models.ingestion import IngestionResult, SourceDocument, TextChunk
from vecsearch.services.ingestion.chunker import TextChunker, make_chunk_id
from vecsearch.services.vector_store import VectorStore
from vecsearch.utils.concurrency import retry_with_backoff, throttled_gather
from vecsearch.utils.errors import ConfigurationError, EmbeddingError, VecSearchError

logger = structlog.get_logger(logger_name=__name__)

SOURCE_ID_KEY = "source_id"
CHUNK_INDEX_KEY = "chunk_index"


class IngestionPipeline:
    """Turns raw sources into stored, embedded chunk documents.

    Parameters
    ----------
    store:
        Destination for chunk documents.
    embedding_provider:
        Embeds chunk texts.  Its dimension must equal the store's.
    chunker:
        Window settings; defaults to ``TextChunker()``.
    batch_size:
        Chunk texts per embedding call.
    max_retries / retry_backoff:
        Retry policy for transient embedding failures.
    concurrency:
        Sources embedded at once by :meth:`ingest_many`.
    """

    def __init__(
        self,
        store: VectorStore,
        embedding_provider: IEmbeddingProvider,
        chunker: TextChunker | None = None,
        batch_size: int = 64,
        max_retries: int = 3,
        retry_backoff: float = 0.5,
        concurrency: int = 4,
    ) -> None:
        provider_dimension = embedding_provider.get_dimension()
        if provider_dimension != store.dimension:
            raise ConfigurationError(
                f"Embedding provider produces {provider_dimension}-dimensional vectors "
                f"but the store dimension is {store.dimension}",
                provider_name=embedding_provider.get_provider_name(),
            )
        self._store = store
        self._embedding_provider = embedding_provider
        self._chunker = chunker or TextChunker()
        self._batch_size = max(1, batch_size)
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff
        self._concurrency = max(1, concurrency)

    @classmethod
    def from_settings(
        cls,
        store: VectorStore,
        embedding_provider: IEmbeddingProvider,
        settings: Settings,
    ) -> IngestionPipeline:
        return cls(
            store,
            embedding_provider,
            chunker=TextChunker(settings.ingest_chunk_size, settings.ingest_overlap),
            batch_size=settings.ingest_batch_size,
            max_retries=settings.ingest_max_retries,
            retry_backoff=settings.ingest_retry_backoff,
            concurrency=settings.ingest_concurrency,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ingest(self, source: SourceDocument) -> IngestionResult:
        """Chunk, embed and store *source*, replacing any earlier ingestion of it.

        Raises
        ------
        InvalidArgumentError
            If the source's chunk window is invalid.
        EmbeddingError / RateLimitError / ProviderUnavailableError
            If embedding still fails after the retries are spent.
        StorageError
            If the persistence backend rejected a write.
        """
        start = time.monotonic()
        chunks = self._chunker.chunk(source.content, source.chunk_size, source.overlap)
        existing = {
            doc.id: doc for doc in self._store.scan(Eq(SOURCE_ID_KEY, source.source_id))
        }

        pending: list[tuple[TextChunk, dict]] = []
        unchanged = 0
        chunk_ids: list[str] = []
        for chunk in chunks:
            doc_id = make_chunk_id(source.source_id, chunk.index)
            chunk_ids.append(doc_id)
            metadata = {
                **source.metadata,
                SOURCE_ID_KEY: source.source_id,
                CHUNK_INDEX_KEY: chunk.index,
            }
            current = existing.get(doc_id)
            if current is not None and current.content == chunk.text and current.metadata == metadata:
                unchanged += 1
                continue
            pending.append((chunk, metadata))

        created = 0
        updated = 0
        for offset in range(0, len(pending), self._batch_size):
            batch = pending[offset : offset + self._batch_size]
            embeddings = await self._embed([chunk.text for chunk, _ in batch], source.source_id)
            for (chunk, metadata), embedding in zip(batch, embeddings):
                doc_id = make_chunk_id(source.source_id, chunk.index)
                replacing = doc_id in self._store
                await self._store.upsert(
                    Document(id=doc_id, content=chunk.text, embedding=embedding, metadata=metadata)
                )
                if replacing:
                    updated += 1
                else:
                    created += 1

        keep = set(chunk_ids)
        deleted = 0
        for stale_id in sorted(set(existing) - keep):
            if await self._store.delete(stale_id):
                deleted += 1

        result = IngestionResult(
            source_id=source.source_id,
            chunk_ids=chunk_ids,
            chunks_created=created,
            chunks_updated=updated,
            chunks_unchanged=unchanged,
            chunks_deleted=deleted,
            total_characters=len(source.content),
            ingestion_time=round(time.monotonic() - start, 3),
        )
        logger.info(
            "ingestion_complete",
            source_id=source.source_id,
            chunks=len(chunk_ids),
            created=created,
            updated=updated,
            unchanged=unchanged,
            deleted=deleted,
            time_s=result.ingestion_time,
        )
        return result

    async def ingest_text(
        self,
        source_id: str,
        content: str,
        metadata: dict | None = None,
    ) -> IngestionResult:
        return await self.ingest(
            SourceDocument(source_id=source_id, content=content, metadata=metadata or {})
        )

    async def ingest_many(self, sources: list[SourceDocument]) -> list[IngestionResult]:
        """Ingest several sources with bounded concurrency.

        A source that fails with a :class:`VecSearchError` yields a result
        with ``error`` set; the others still complete.  Any other exception
        propagates.
        """
        outcomes = await throttled_gather(
            [self.ingest(source) for source in sources],
            limit=self._concurrency,
            return_exceptions=True,
        )
        results: list[IngestionResult] = []
        for source, outcome in zip(sources, outcomes):
            if isinstance(outcome, VecSearchError):
                logger.error("ingestion_failed", source_id=source.source_id, error=str(outcome))
                results.append(IngestionResult(source_id=source.source_id, error=str(outcome)))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results.append(outcome)
        return results

    async def delete_source(self, source_id: str) -> int:
        """Delete every chunk of *source_id*; returns how many were removed."""
        removed = 0
        for doc in list(self._store.scan(Eq(SOURCE_ID_KEY, source_id))):
            if await self._store.delete(doc.id):
                removed += 1
        logger.info("source_deleted", source_id=source_id, chunks_deleted=removed)
        return removed

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _embed(self, texts: list[str], source_id: str) -> list[list[float]]:
        provider = self._embedding_provider
        embeddings = await retry_with_backoff(
            lambda: provider.embed(texts),
            max_retries=self._max_retries,
            base_delay=self._retry_backoff,
            logger=logger,
            event="embedding_retry",
            source_id=source_id,
            provider=provider.get_provider_name(),
        )
        if len(embeddings) != len(texts):
            raise EmbeddingError(
                f"Expected {len(texts)} embeddings, got {len(embeddings)}",
                provider_name=provider.get_provider_name(),
            )
        return embeddings
