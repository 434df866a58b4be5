"""FastAPI routes for the vecsearch service.

Endpoint                              Method  Description
-------------------------------------------------------------------------
/api/v1/vectors                       POST    Insert a document (201)
/api/v1/vectors/{id}                  GET     Fetch a document
/api/v1/vectors/{id}                  PATCH   Partial update
/api/v1/vectors/{id}                  DELETE  Idempotent delete
/api/v1/vectors/search                POST    k-NN search (+ filter, rerank)
/api/v1/ingest                        POST    Chunk, embed and store a source
/api/v1/sources/{source_id}           DELETE  Remove every chunk of a source
/api/v1/index/rebuild                 POST    Start a rebuild job (202)
/api/v1/index/rebuild/{job_id}        GET     Poll a rebuild job
/api/v1/index/rebuild/{job_id}/cancel POST    Cancel a rebuild job
/api/v1/index/compact                 POST    Fold delta and tombstones now
/api/v1/index/stats                   GET     Index and store statistics
/api/v1/index/recall                  GET     Sampled recall estimate
/api/v1/health                        GET     Health check

Services are resolved from ``app.state`` (populated by ``main.py``) through
``Annotated[..., Depends(...)]`` aliases.  Engine errors are turned into
HTTP status codes by ``ErrorHandlingMiddleware``.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Query, Request

from vecsearch import __version__
from vecsearch.api.schemas import (
    DeleteResponse,
    DocumentResponse,
    ErrorResponse,
    HealthResponse,
    IndexStatsResponse,
    IngestRequest,
    InsertVectorRequest,
    InsertVectorResponse,
    SearchRequest,
    SearchResponse,
    UpdateVectorRequest,
)
from vecsearch.interfaces.embedding_provider import IEmbeddingProvider
from vecsearch.models.document import Document, DocumentPatch
from vecsearch.models.index import IndexStats, RebuildJobInfo, RecallReport
from vecsearch.models.ingestion import IngestionResult, SourceDocument
from vecsearch.services.index_manager import IndexManager
from vecsearch.services.ingestion.ingestion_pipeline import IngestionPipeline
from vecsearch.services.query_engine import QueryEngine
from vecsearch.services.rebuild_tracker import RebuildTracker
from vecsearch.services.reranker import Reranker
from vecsearch.services.vector_store import VectorStore
from vecsearch.utils.errors import InvalidArgumentError, ProviderUnavailableError
from vecsearch.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")

_ERRORS: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


# ---------------------------------------------------------------------------
# Dependency injection helpers
# ---------------------------------------------------------------------------


def _get_store(request: Request) -> VectorStore:
    return request.app.state.store


def _get_index_manager(request: Request) -> IndexManager:
    return request.app.state.index_manager


def _get_query_engine(request: Request) -> QueryEngine:
    return request.app.state.query_engine


def _get_rebuild_tracker(request: Request) -> RebuildTracker:
    return request.app.state.rebuild_tracker


def _get_embedding_provider(request: Request) -> IEmbeddingProvider | None:
    return getattr(request.app.state, "embedding_provider", None)


def _get_ingestion(request: Request) -> IngestionPipeline | None:
    return getattr(request.app.state, "ingestion", None)


def _get_reranker(request: Request) -> Reranker | None:
    return getattr(request.app.state, "reranker", None)


StoreDep = Annotated[VectorStore, Depends(_get_store)]
IndexManagerDep = Annotated[IndexManager, Depends(_get_index_manager)]
QueryEngineDep = Annotated[QueryEngine, Depends(_get_query_engine)]
RebuildTrackerDep = Annotated[RebuildTracker, Depends(_get_rebuild_tracker)]
EmbeddingDep = Annotated[IEmbeddingProvider | None, Depends(_get_embedding_provider)]
IngestionDep = Annotated[IngestionPipeline | None, Depends(_get_ingestion)]
RerankerDep = Annotated[Reranker | None, Depends(_get_reranker)]


async def _embed(provider: IEmbeddingProvider | None, text: str) -> list[float]:
    if provider is None:
        raise ProviderUnavailableError("No embedding provider configured")
    return await provider.embed_single(text)


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


@router.post(
    "/vectors",
    status_code=201,
    response_model=InsertVectorResponse,
    responses=_ERRORS,
    summary="Insert a document",
)
async def insert_vector(
    body: InsertVectorRequest,
    store: StoreDep,
    provider: EmbeddingDep,
) -> InsertVectorResponse:
    if body.embedding is not None:
        embedding = body.embedding
    else:
        source_text = body.text if body.text is not None else body.content
        if not source_text:
            raise InvalidArgumentError("Provide `embedding`, `text` or non-empty `content`")
        embedding = await _embed(provider, source_text)

    doc = await store.insert(
        Document(
            id=body.id or uuid.uuid4().hex,
            content=body.content,
            embedding=embedding,
            metadata=body.metadata,
        )
    )
    return InsertVectorResponse(id=doc.id, created_at=doc.created_at, store_version=store.version)


@router.get(
    "/vectors/{doc_id}",
    response_model=DocumentResponse,
    responses=_ERRORS,
    summary="Fetch a document",
)
async def get_vector(
    doc_id: str,
    store: StoreDep,
    include_embedding: bool = Query(default=True),
) -> DocumentResponse:
    return DocumentResponse.from_document(store.get(doc_id), include_embedding)


@router.patch(
    "/vectors/{doc_id}",
    response_model=DocumentResponse,
    responses=_ERRORS,
    summary="Partially update a document",
)
async def update_vector(
    doc_id: str,
    body: UpdateVectorRequest,
    store: StoreDep,
    provider: EmbeddingDep,
) -> DocumentResponse:
    embedding = body.embedding
    if body.text is not None:
        embedding = await _embed(provider, body.text)
    patch = DocumentPatch(
        content=body.content,
        embedding=embedding,
        metadata=body.metadata,
        replace_metadata=body.replace_metadata,
    )
    return DocumentResponse.from_document(await store.update(doc_id, patch))


@router.delete(
    "/vectors/{doc_id}",
    response_model=DeleteResponse,
    summary="Delete a document (idempotent)",
)
async def delete_vector(doc_id: str, store: StoreDep) -> DeleteResponse:
    return DeleteResponse(id=doc_id, deleted=await store.delete(doc_id))


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


@router.post(
    "/vectors/search",
    response_model=SearchResponse,
    responses=_ERRORS,
    summary="k-nearest-neighbour search",
)
async def search_vectors(
    body: SearchRequest,
    request: Request,
    engine: QueryEngineDep,
    reranker: RerankerDep,
) -> SearchResponse:
    """Search by vector(s) or text(s), optionally filtered and reranked.

    With ``rerank``, a single ``text`` query is required; the first stage
    fetches ``max(k, query_rerank_top)`` candidates and the reranker keeps
    ``rerank_top_n`` (default ``k``).
    """
    if body.rerank:
        if body.text is None:
            raise InvalidArgumentError("Reranking requires a single `text` query")
        if reranker is None:
            raise ProviderUnavailableError("No reranker configured")

    k = body.k
    if body.rerank:
        k = max(body.k, request.app.state.settings.query_rerank_top)
    options: dict[str, Any] = {
        "metric": body.metric,
        "filter": body.filter,
        "threshold": body.threshold,
        "strategy": body.strategy,
        "over_fetch_factor": body.over_fetch_factor,
        "include_content": body.include_content or body.rerank,
    }

    texts = body.query_texts
    if body.vector is not None:
        results = engine.search(body.vector, k, **options)
    elif body.vectors is not None:
        results = engine.search_many(body.vectors, k, **options)
    elif len(texts) == 1:
        results = await engine.search_text(texts[0], k, **options)
    else:
        results = await engine.search_texts(texts, k, **options)

    hits = results.hits
    if body.rerank:
        hits = await reranker.rerank(body.text, hits, body.rerank_top_n or body.k)
        if not body.include_content:
            hits = [hit.model_copy(update={"content": None}) for hit in hits]

    return SearchResponse(
        hits=hits,
        k=body.k,
        metric=results.metric.value,
        strategy=results.strategy,
        underfilled=results.underfilled,
        candidates_examined=results.candidates_examined,
        snapshot_version=results.snapshot_version,
        reranked=body.rerank,
    )


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


def _require_ingestion(ingestion: IngestionPipeline | None) -> IngestionPipeline:
    if ingestion is None:
        raise ProviderUnavailableError("Ingestion needs an embedding provider")
    return ingestion


@router.post(
    "/ingest",
    status_code=201,
    response_model=IngestionResult,
    responses=_ERRORS,
    summary="Chunk, embed and store a source document",
)
async def ingest_source(body: IngestRequest, ingestion: IngestionDep) -> IngestionResult:
    return await _require_ingestion(ingestion).ingest(
        SourceDocument(
            source_id=body.source_id,
            content=body.content,
            metadata=body.metadata,
            chunk_size=body.chunk_size,
            overlap=body.overlap,
        )
    )


@router.delete("/sources/{source_id}", summary="Delete every chunk of a source")
async def delete_source(source_id: str, ingestion: IngestionDep) -> dict[str, Any]:
    removed = await _require_ingestion(ingestion).delete_source(source_id)
    return {"source_id": source_id, "chunks_deleted": removed}


# ---------------------------------------------------------------------------
# Index lifecycle
# ---------------------------------------------------------------------------


@router.post(
    "/index/rebuild",
    status_code=202,
    response_model=RebuildJobInfo,
    summary="Start a background index rebuild",
)
async def start_rebuild(tracker: RebuildTrackerDep) -> RebuildJobInfo:
    job = tracker.start()
    _logger.info("rebuild_requested", job_id=job.job_id, status=job.status.value)
    return job


@router.get(
    "/index/rebuild/{job_id}",
    response_model=RebuildJobInfo,
    responses=_ERRORS,
    summary="Poll a rebuild job",
)
async def get_rebuild(job_id: str, tracker: RebuildTrackerDep) -> RebuildJobInfo:
    return tracker.get(job_id)


@router.post(
    "/index/rebuild/{job_id}/cancel",
    response_model=RebuildJobInfo,
    responses=_ERRORS,
    summary="Cancel a rebuild job",
)
async def cancel_rebuild(job_id: str, tracker: RebuildTrackerDep) -> RebuildJobInfo:
    return tracker.cancel(job_id)


@router.post("/index/compact", response_model=IndexStats, summary="Compact the index now")
async def compact_index(manager: IndexManagerDep) -> IndexStats:
    await manager.compact()
    return manager.stats()


@router.get("/index/stats", response_model=IndexStatsResponse, summary="Index statistics")
async def index_stats(
    manager: IndexManagerDep,
    store: StoreDep,
    tracker: RebuildTrackerDep,
) -> IndexStatsResponse:
    active = tracker.active_job
    return IndexStatsResponse(
        index=manager.stats(),
        store=store.stats(),
        active_rebuild=active.job_id if active is not None else None,
    )


@router.get(
    "/index/recall",
    response_model=RecallReport,
    responses=_ERRORS,
    summary="Estimate recall@k against exact search",
)
async def index_recall(
    request: Request,
    manager: IndexManagerDep,
    k: int = Query(default=10),
    sample_size: int | None = Query(default=None),
) -> RecallReport:
    size = sample_size or request.app.state.settings.recall_sample_size
    return await asyncio.to_thread(manager.estimate_recall, size, k)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get("/health", response_model=HealthResponse, summary="Application health check")
async def health_check(request: Request, store: StoreDep, manager: IndexManagerDep) -> HealthResponse:
    providers: dict[str, Any] = dict(getattr(request.app.state, "provider_registry", {}))
    return HealthResponse(
        status="healthy",
        version=__version__,
        providers=providers,
        documents=len(store),
        index_version=manager.snapshot.version,
    )
