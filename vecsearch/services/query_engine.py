"""k-NN query execution with metadata filtering.

The query engine answers ``search(query_embedding, k, filter=...)`` against
one captured :class:`~vecsearch.services.index_snapshot.IndexSnapshot`, so a
single query never mixes two index versions even while writers publish.

Filter strategies
-----------------
``pre``
    Evaluate the predicate over the store first, then run an exact search
    over the matching subset.  Always returns the true top-k of the subset.
``post``
    Ask the ANN snapshot for ``k * over_fetch_factor`` candidates, drop the
    ones the predicate rejects, truncate to k.  If too few survive, the
    result is *underfilled*: it is returned short (never padded) with
    ``underfilled=True`` and a ``post_filter_underfilled`` log event.
``auto``
    ``pre`` when the published structure is exact (flat) or the store is
    smaller than the index manager's flat threshold, ``post`` otherwise.

Text queries are embedded through the configured
:class:`~vecsearch.interfaces.embedding_provider.IEmbeddingProvider`; query
embeddings are cached in an :class:`~vecsearch.interfaces.cache_provider.ICacheProvider`.
"""

from __future__ import annotations

import hashlib
from typing import Any

import numpy as np
import structlog

from vecsearch.config.settings import Settings
from vecsearch.interfaces.cache_provider import ICacheProvider
from vecsearch.interfaces.embedding_provider import IEmbeddingProvider
from vecsearch.models.filters import Predicate, coerce_predicate
from vecsearch.models.index import DistanceMetric, IndexKind
from vecsearch.models.search import FilterStrategy, SearchHit, SearchResults
from vecsearch.services.index_manager import IndexManager
from vecsearch.services.index_snapshot import IndexSnapshot
from vecsearch.services.vector_store import VectorStore
from vecsearch.utils.distance import (
    check_threshold,
    coerce_embedding,
    distances,
    merge_ranked,
    prepare,
    top_k,
)
from vecsearch.utils.errors import (
    InvalidArgumentError,
    MetricMismatchError,
    ProviderUnavailableError,
)

logger = structlog.get_logger(logger_name=__name__)

FilterLike = Predicate | dict[str, Any] | None


class QueryEngine:
    """Runs similarity queries against the published index snapshot.

    Parameters
    ----------
    store:
        Source of document content and metadata for hits.
    index_manager:
        Owner of the published snapshot.
    embedding_provider:
        Needed only for :meth:`search_text` / :meth:`search_texts`.
    cache:
        Optional cache for query-text embeddings.
    """

    def __init__(
        self,
        store: VectorStore,
        index_manager: IndexManager,
        embedding_provider: IEmbeddingProvider | None = None,
        cache: ICacheProvider | None = None,
        default_strategy: FilterStrategy = FilterStrategy.AUTO,
        over_fetch_factor: int = 4,
        cache_ttl: int = 3600,
    ) -> None:
        if over_fetch_factor < 1:
            raise InvalidArgumentError("over_fetch_factor must be >= 1")
        self._store = store
        self._manager = index_manager
        self._embedding_provider = embedding_provider
        self._cache = cache
        self._default_strategy = FilterStrategy(default_strategy)
        self._over_fetch_factor = over_fetch_factor
        self._cache_ttl = cache_ttl

    @classmethod
    def from_settings(
        cls,
        store: VectorStore,
        index_manager: IndexManager,
        settings: Settings,
        embedding_provider: IEmbeddingProvider | None = None,
        cache: ICacheProvider | None = None,
    ) -> QueryEngine:
        return cls(
            store,
            index_manager,
            embedding_provider=embedding_provider,
            cache=cache,
            default_strategy=settings.query_filter_strategy,
            over_fetch_factor=settings.query_over_fetch_factor,
            cache_ttl=settings.query_cache_ttl,
        )

    @property
    def metric(self) -> DistanceMetric:
        return self._manager.metric

    @property
    def dimension(self) -> int:
        return self._manager.dimension

    # ------------------------------------------------------------------
    # Vector queries
    # ------------------------------------------------------------------

    def search(
        self,
        query_embedding: Any,
        k: int,
        metric: DistanceMetric | str | None = None,
        filter: FilterLike = None,
        threshold: float | None = None,
        strategy: FilterStrategy | str | None = None,
        over_fetch_factor: int | None = None,
        include_content: bool = True,
    ) -> SearchResults:
        """Return up to *k* documents nearest to *query_embedding*.

        Hits are ordered by increasing distance, ties by ascending id.  With
        a *threshold*, hits farther than it are dropped (so fewer than *k*
        may come back).

        Raises
        ------
        InvalidArgumentError
            ``k < 1``, a NaN threshold, an unknown strategy or a bad
            over-fetch factor.
        MetricMismatchError
            *metric* differs from the index metric.
        DimensionMismatchError
            The query length differs from the index dimension.
        """
        vector = self._validate(query_embedding, k, metric, threshold)
        snapshot = self._manager.snapshot
        return self._search_snapshot(
            snapshot,
            vector,
            k,
            coerce_predicate(filter),
            threshold,
            self._strategy(strategy),
            self._factor(over_fetch_factor),
            include_content,
        )

    def search_many(
        self,
        query_embeddings: list[Any],
        k: int,
        metric: DistanceMetric | str | None = None,
        filter: FilterLike = None,
        threshold: float | None = None,
        strategy: FilterStrategy | str | None = None,
        over_fetch_factor: int | None = None,
        include_content: bool = True,
    ) -> SearchResults:
        """Search several query vectors and merge the results.

        Each document keeps its minimum distance over all queries; the merged
        list is ordered by ``(distance, id)`` and truncated to *k*.  All
        queries run against the same snapshot.
        """
        if not query_embeddings:
            raise InvalidArgumentError("search_many needs at least one query")
        vectors = [self._validate(q, k, metric, threshold) for q in query_embeddings]
        predicate = coerce_predicate(filter)
        resolved = self._strategy(strategy)
        factor = self._factor(over_fetch_factor)
        snapshot = self._manager.snapshot

        per_query = [
            self._search_snapshot(
                snapshot, vector, k, predicate, threshold, resolved, factor, include_content
            )
            for vector in vectors
        ]
        merged = merge_ranked(*[[(h.id, h.distance) for h in r.hits] for r in per_query], k=k)
        by_id = {hit.id: hit for result in per_query for hit in result.hits}
        hits = [by_id[doc_id].model_copy(update={"distance": dist}) for doc_id, dist in merged]
        return SearchResults(
            hits=hits,
            k=k,
            metric=snapshot.metric,
            strategy=per_query[0].strategy,
            underfilled=any(r.underfilled for r in per_query),
            candidates_examined=sum(r.candidates_examined for r in per_query),
            snapshot_version=snapshot.version,
        )

    # ------------------------------------------------------------------
    # Text queries
    # ------------------------------------------------------------------

    async def embed_query(self, text: str) -> list[float]:
        """Embed *text* with the configured provider, using the cache when present."""
        embeddings = await self.embed_queries([text])
        return embeddings[0]

    async def embed_queries(self, texts: list[str]) -> list[list[float]]:
        provider = self._embedding_provider
        if provider is None:
            raise ProviderUnavailableError("No embedding provider configured for text queries")

        keys = [self._cache_key(provider, text) for text in texts]
        found: dict[int, list[float]] = {}
        if self._cache is not None:
            for position, key in enumerate(keys):
                cached = await self._cache.get(key)
                if cached is not None:
                    found[position] = cached

        missing = [position for position in range(len(texts)) if position not in found]
        if missing:
            fresh = await provider.embed([texts[position] for position in missing])
            for position, vector in zip(missing, fresh):
                found[position] = list(vector)
                if self._cache is not None:
                    await self._cache.set(keys[position], found[position], ttl=self._cache_ttl)
        logger.debug("query_embeddings", total=len(texts), cache_hits=len(texts) - len(missing))
        return [found[position] for position in range(len(texts))]

    async def search_text(self, text: str, k: int, **options: Any) -> SearchResults:
        """Embed *text* and run :meth:`search` with *options*."""
        vector = await self.embed_query(text)
        return self.search(vector, k, **options)

    async def search_texts(self, texts: list[str], k: int, **options: Any) -> SearchResults:
        """Embed *texts* in one batch and run :meth:`search_many`."""
        if not texts:
            raise InvalidArgumentError("search_texts needs at least one query")
        vectors = await self.embed_queries(texts)
        return self.search_many(vectors, k, **options)

    @staticmethod
    def _cache_key(provider: IEmbeddingProvider, text: str) -> str:
        digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
        return f"query_embedding:{provider.get_provider_name()}:{digest}"

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validate(
        self,
        query: Any,
        k: int,
        metric: DistanceMetric | str | None,
        threshold: float | None,
    ) -> np.ndarray:
        if k < 1:
            raise InvalidArgumentError(f"k must be >= 1, got {k}")
        if metric is not None:
            try:
                requested = DistanceMetric(metric)
            except ValueError as exc:
                raise InvalidArgumentError(f"Unknown distance metric {metric!r}") from exc
            if requested is not self.metric:
                raise MetricMismatchError(self.metric.value, requested.value)
        check_threshold(threshold)
        return coerce_embedding(query, self.dimension)

    def _strategy(self, strategy: FilterStrategy | str | None) -> FilterStrategy:
        if strategy is None:
            return self._default_strategy
        try:
            return FilterStrategy(strategy)
        except ValueError as exc:
            raise InvalidArgumentError(f"Unknown filter strategy {strategy!r}") from exc

    def _factor(self, over_fetch_factor: int | None) -> int:
        if over_fetch_factor is None:
            return self._over_fetch_factor
        if over_fetch_factor < 1:
            raise InvalidArgumentError("over_fetch_factor must be >= 1")
        return over_fetch_factor

    def _resolve_auto(self, snapshot: IndexSnapshot) -> FilterStrategy:
        if snapshot.kind is IndexKind.FLAT or len(self._store) < self._manager.flat_threshold:
            return FilterStrategy.PRE
        return FilterStrategy.POST

    def _search_snapshot(
        self,
        snapshot: IndexSnapshot,
        vector: np.ndarray,
        k: int,
        predicate: Predicate | None,
        threshold: float | None,
        strategy: FilterStrategy,
        factor: int,
        include_content: bool,
    ) -> SearchResults:
        used: FilterStrategy | None = None
        underfilled = False

        if predicate is None:
            if snapshot.kind is not IndexKind.FLAT:
                self._manager.check_parameters(k)
            pairs = snapshot.search(vector, k)
            examined = len(pairs)
            pairs = _within(pairs, threshold)[:k]
        else:
            used = self._resolve_auto(snapshot) if strategy is FilterStrategy.AUTO else strategy
            if used is FilterStrategy.PRE:
                pairs, examined = self._pre_filter(snapshot, vector, k, predicate, threshold)
            else:
                pairs, examined, underfilled = self._post_filter(
                    snapshot, vector, k, predicate, threshold, k * factor
                )

        hits = self._hydrate(pairs, include_content)
        return SearchResults(
            hits=hits,
            k=k,
            metric=snapshot.metric,
            strategy=used,
            underfilled=underfilled,
            candidates_examined=examined,
            snapshot_version=snapshot.version,
        )

    def _pre_filter(
        self,
        snapshot: IndexSnapshot,
        vector: np.ndarray,
        k: int,
        predicate: Predicate,
        threshold: float | None,
    ) -> tuple[list[tuple[str, float]], int]:
        # Membership and distances both come from the snapshot; only metadata is live.
        ids, matrix = snapshot.vectors_for([doc.id for doc in self._store.scan(predicate)])
        if not ids:
            return [], 0
        metric = snapshot.metric
        dists = distances(prepare(vector, metric), matrix, metric)
        return _within(top_k(ids, dists, k), threshold), len(ids)

    def _post_filter(
        self,
        snapshot: IndexSnapshot,
        vector: np.ndarray,
        k: int,
        predicate: Predicate,
        threshold: float | None,
        fetch: int,
    ) -> tuple[list[tuple[str, float]], int, bool]:
        if snapshot.kind is not IndexKind.FLAT:
            self._manager.check_parameters(fetch)
        candidates = snapshot.search(vector, fetch)
        kept: list[tuple[str, float]] = []
        for doc_id, dist in candidates:
            doc = self._store.get_or_none(doc_id)
            if doc is not None and predicate.matches(doc.metadata):
                kept.append((doc_id, dist))
        kept = _within(kept, threshold)[:k]

        exhausted_by_threshold = (
            threshold is not None and bool(candidates) and candidates[-1][1] > threshold
        )
        underfilled = len(kept) < k and len(candidates) >= fetch and not exhausted_by_threshold
        if underfilled:
            logger.info(
                "post_filter_underfilled",
                k=k,
                returned=len(kept),
                fetched=len(candidates),
                snapshot_version=snapshot.version,
            )
        return kept, len(candidates), underfilled

    def _hydrate(self, pairs: list[tuple[str, float]], include_content: bool) -> list[SearchHit]:
        hits: list[SearchHit] = []
        for doc_id, dist in pairs:
            doc = self._store.get_or_none(doc_id)
            if doc is None:
                # Deleted after the snapshot was captured.
                continue
            hits.append(
                SearchHit(
                    id=doc_id,
                    distance=dist,
                    content=doc.content if include_content else None,
                    metadata=dict(doc.metadata),
                )
            )
        return hits


def _within(pairs: list[tuple[str, float]], threshold: float | None) -> list[tuple[str, float]]:
    if threshold is None:
        return pairs
    return [(doc_id, dist) for doc_id, dist in pairs if dist <= threshold]
