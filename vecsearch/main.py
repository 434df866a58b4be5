"""vecsearch FastAPI application entry point.

Wires providers and services together via constructor injection.  Settings
come from ``config/config.yaml`` layered under ``.env`` and environment
variables (see :mod:`vecsearch.config.loader`).

Startup order matters: the document store is hydrated from its backend
before the index manager is created, and the saved index snapshot (if any)
is restored against that store.  On shutdown the snapshot is saved again.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI

from vecsearch import __version__
from vecsearch.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from vecsearch.api.routes import router as api_router
from vecsearch.config.loader import load_settings
from vecsearch.config.settings import Settings
from vecsearch.interfaces.embedding_provider import IEmbeddingProvider
from vecsearch.interfaces.scorer_provider import IPairwiseScorer
from vecsearch.providers.cache.memory_cache import MemoryCacheProvider
from vecsearch.providers.embedding.hash_embedding_provider import HashEmbeddingProvider
from vecsearch.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from vecsearch.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from vecsearch.providers.scoring.embedding_similarity_scorer import EmbeddingSimilarityScorer
from vecsearch.providers.storage.sqlite_document_backend import SQLiteDocumentBackend
from vecsearch.services.index_manager import IndexManager
from vecsearch.services.ingestion.ingestion_pipeline import IngestionPipeline
from vecsearch.services.query_engine import QueryEngine
from vecsearch.services.rebuild_tracker import RebuildTracker
from vecsearch.services.reranker import Reranker
from vecsearch.services.vector_store import VectorStore
from vecsearch.utils.errors import ConfigurationError, IndexBuildError
from vecsearch.utils.logging import configure_logging, get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

_EMBEDDING_CHOICES = ("auto", "openai", "nomic", "sentence_transformer", "hash", "none")
_RERANKER_CHOICES = ("none", "cross_encoder", "embedding")


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def _sentence_transformer(app_settings: Settings) -> IEmbeddingProvider:
    # Optional extra: imported only when selected.
    from vecsearch.providers.embedding.sentence_transformer_embedding_provider import (
        SentenceTransformerEmbeddingProvider,
    )

    return SentenceTransformerEmbeddingProvider(app_settings.sentence_transformer_model or None)


def _hash_provider(app_settings: Settings) -> IEmbeddingProvider:
    dimension = app_settings.vector_dimension or app_settings.hash_embedding_dimension
    return HashEmbeddingProvider(dimension=dimension)


_EMBEDDING_FACTORIES: dict[str, Callable[[Settings], IEmbeddingProvider]] = {
    "openai": lambda s: OpenAIEmbeddingProvider(settings=s),
    "nomic": lambda s: NomicEmbeddingProvider(settings=s),
    "sentence_transformer": _sentence_transformer,
    "hash": _hash_provider,
}


def build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider | None:
    """Select the embedding provider named by ``embedding_provider``.

    ``auto`` walks :meth:`Settings.get_available_embedding_providers`:
    OpenAI (if an API key is set), then Nomic via Ollama (if reachable),
    then sentence-transformers (if installed), and finally the hashing
    provider.  Providers whose dimension disagrees with an explicit
    ``vector_dimension`` are skipped.  ``none`` disables text embedding.
    """
    choice = app_settings.embedding_provider
    if choice not in _EMBEDDING_CHOICES:
        raise ConfigurationError(
            f"embedding_provider must be one of {', '.join(_EMBEDDING_CHOICES)}, got {choice!r}"
        )
    if choice == "none":
        return None
    if choice != "auto":
        return _EMBEDDING_FACTORIES[choice](app_settings)

    wanted = app_settings.vector_dimension
    for name in app_settings.get_available_embedding_providers():
        provider = _EMBEDDING_FACTORIES[name](app_settings)
        if name == "hash":
            return provider
        if not provider.is_available():
            continue
        if wanted and provider.get_dimension() != wanted:
            _logger.info(
                "embedding_provider_skipped",
                provider=provider.get_provider_name(),
                dimension=provider.get_dimension(),
                vector_dimension=wanted,
            )
            continue
        return provider
    return _hash_provider(app_settings)


def build_reranker(
    app_settings: Settings, embedding_provider: IEmbeddingProvider | None
) -> Reranker | None:
    choice = app_settings.reranker_provider
    if choice not in _RERANKER_CHOICES:
        raise ConfigurationError(
            f"reranker_provider must be one of {', '.join(_RERANKER_CHOICES)}, got {choice!r}"
        )
    scorer: IPairwiseScorer | None = None
    if choice == "cross_encoder":
        from vecsearch.providers.scoring.cross_encoder_scorer import CrossEncoderScorer

        scorer = CrossEncoderScorer(app_settings.reranker_model)
        if not scorer.is_available():
            _logger.warning("cross_encoder_unavailable", fallback="embedding")
            scorer = None
            choice = "embedding"
    if choice == "embedding" and embedding_provider is not None:
        scorer = EmbeddingSimilarityScorer(embedding_provider)
    return Reranker(scorer) if scorer is not None else None


# ---------------------------------------------------------------------------
# Full DI assembly
# ---------------------------------------------------------------------------


async def build_components(app_settings: Settings) -> dict[str, Any]:
    """Construct and start every provider and service.

    Returns a flat dict of named components to be stored on ``app.state``.
    """
    embedding_provider = build_embedding_provider(app_settings)
    dimension = app_settings.vector_dimension
    if embedding_provider is not None:
        provider_dimension = embedding_provider.get_dimension()
        if dimension and provider_dimension != dimension:
            raise ConfigurationError(
                f"vector_dimension={dimension} but {embedding_provider.get_provider_name()} "
                f"produces {provider_dimension}-dimensional embeddings"
            )
        dimension = provider_dimension
    if not dimension:
        raise ConfigurationError("vector_dimension must be set when embedding_provider is 'none'")

    # -- Store --
    backend = (
        SQLiteDocumentBackend(app_settings.storage_sqlite_path)
        if app_settings.storage_sqlite_path
        else None
    )
    store = VectorStore(dimension, backend)
    await store.load()

    # -- Index --
    snapshot_path = app_settings.storage_snapshot_path
    restore = bool(snapshot_path) and Path(snapshot_path).exists()
    index_manager = IndexManager.from_settings(store, app_settings, build=not restore)
    if restore:
        try:
            await asyncio.to_thread(index_manager.load, snapshot_path)
        except IndexBuildError as exc:
            _logger.warning("index_snapshot_unusable", path=snapshot_path, error=str(exc))
            await index_manager.rebuild()

    # -- Query side --
    cache = MemoryCacheProvider(
        max_size=app_settings.query_cache_size, ttl=app_settings.query_cache_ttl
    )
    query_engine = QueryEngine.from_settings(
        store, index_manager, app_settings, embedding_provider=embedding_provider, cache=cache
    )
    reranker = build_reranker(app_settings, embedding_provider)
    ingestion = (
        IngestionPipeline.from_settings(store, embedding_provider, app_settings)
        if embedding_provider is not None
        else None
    )

    provider_registry: dict[str, Any] = {
        "embedding": embedding_provider.get_provider_name() if embedding_provider else None,
        "reranker": reranker.scorer_name if reranker else None,
        "storage": backend.get_provider_name() if backend else "memory",
        "index": index_manager.snapshot.kind.value,
    }
    return {
        "settings": app_settings,
        "embedding_provider": embedding_provider,
        "store": store,
        "index_manager": index_manager,
        "cache": cache,
        "query_engine": query_engine,
        "reranker": reranker,
        "ingestion": ingestion,
        "rebuild_tracker": RebuildTracker(index_manager),
        "provider_registry": provider_registry,
    }


async def shutdown_components(components: dict[str, Any]) -> None:
    """Stop background work, save the index snapshot and close the store."""
    tracker: RebuildTracker = components["rebuild_tracker"]
    manager: IndexManager = components["index_manager"]
    store: VectorStore = components["store"]
    app_settings: Settings = components["settings"]

    active = tracker.active_job
    if active is not None:
        tracker.cancel(active.job_id)
        await tracker.wait(active.job_id)
    await manager.wait_for_compaction()
    if app_settings.storage_snapshot_path:
        await asyncio.to_thread(manager.save, app_settings.storage_snapshot_path)
    manager.detach()
    await store.close()


# ---------------------------------------------------------------------------
# Application lifespan (startup / shutdown)
# ---------------------------------------------------------------------------


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """Build and configure the FastAPI application."""
    resolved = app_settings or load_settings()
    configure_logging(
        log_level=resolved.log_level,
        json_output=(resolved.app_env == "production"),
    )

    @asynccontextmanager
    async def _lifespan(application: FastAPI):  # noqa: ANN202
        components = await build_components(resolved)
        for key, value in components.items():
            setattr(application.state, key, value)

        _logger.info(
            "app_startup",
            version=__version__,
            environment=resolved.app_env,
            documents=len(components["store"]),
            dimension=components["store"].dimension,
            providers=components["provider_registry"],
        )

        yield

        await shutdown_components(components)
        _logger.info("app_shutdown")

    application = FastAPI(
        title="vecsearch API",
        version=__version__,
        description=(
            "Store embedding vectors alongside documents and retrieve the k most "
            "similar ones, optionally filtered by metadata and reranked."
        ),
        lifespan=_lifespan,
    )

    # -- Middleware (order matters: last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application)

    application.include_router(api_router)
    return application


app = create_app()

# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    settings = load_settings()
    uvicorn.run(
        "vecsearch.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=(settings.app_env == "development"),
    )
