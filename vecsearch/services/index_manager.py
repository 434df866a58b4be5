"""Index lifecycle: build, incremental maintenance, compaction, persistence.

The :class:`IndexManager` owns exactly one *published*
:class:`~vecsearch.services.index_snapshot.IndexSnapshot`.  Publishing is a
single attribute assignment, which is atomic for readers: a query grabs the
current snapshot once and uses it to the end, never taking a lock.

Writers
-------
Store changes arrive through the store listener and are folded into a new
snapshot (delta buffer plus tombstones) under ``_lock``.  That lock is only
ever held for the cost of copying the delta, never for a build.

Rebuilds and compaction
-----------------------
Both produce a new structure off to the side while queries keep using the
old snapshot:

1. Under ``_lock``, start a journal and capture the source data.
2. Build without holding ``_lock`` (``rebuild`` runs in a worker thread
   via ``asyncio.to_thread``).  Writers keep publishing and also append to
   the journal.
3. Under ``_lock``, replay the journal on top of the new structure's
   snapshot and publish it.  Replay is idempotent: an upsert whose vector
   the new structure already holds is a no-op.

A build can be cancelled through a ``threading.Event``; the previous
snapshot then stays authoritative.  ``_build_lock`` allows one build at a
time.

Recall
------
:meth:`estimate_recall` and :meth:`check_parameters` produce the
``recall_degraded`` signal: a structured warning plus
``RecallReport.degraded``.  It is never raised.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable
from typing import Any

import numpy as np
import structlog

from vecsearch.config.settings import Settings
from vecsearch.interfaces.ann_index import BuildCancelled, IAnnIndex, ProgressCallback
from vecsearch.models.document import ChangeOp, StoreChange, utc_now
from vecsearch.models.index import DistanceMetric, IndexKind, IndexStats, RecallReport
from vecsearch.providers.index import IVFFlatIndex, index_class
from vecsearch.providers.storage.snapshot_file_store import SnapshotFileStore
from vecsearch.services.index_snapshot import IndexSnapshot
from vecsearch.services.vector_store import VectorStore
from vecsearch.utils.distance import coerce_embedding, distances, prepare, prepare_matrix, top_k
from vecsearch.utils.errors import IndexBuildError, InvalidArgumentError, RebuildCancelledError
from vecsearch.utils.logging import log_duration

logger = structlog.get_logger(logger_name=__name__)

# ("upsert", id, raw vector) or ("delete", id, None)
_JournalEntry = tuple[str, str, "np.ndarray | None"]


class IndexManager:
    """Keeps the published index snapshot in step with a :class:`VectorStore`."""

    def __init__(
        self,
        store: VectorStore,
        metric: DistanceMetric = DistanceMetric.COSINE,
        kind: IndexKind = IndexKind.AUTO,
        flat_threshold: int = 10_000,
        hnsw_params: dict[str, Any] | None = None,
        ivf_params: dict[str, Any] | None = None,
        delta_merge_threshold: int = 1024,
        auto_compact: bool = True,
        rebuild_growth_factor: float = 2.0,
        max_tombstone_ratio: float = 0.2,
        max_list_imbalance: float = 4.0,
        recall_floor: float = 0.9,
        build: bool = True,
    ) -> None:
        if delta_merge_threshold < 1:
            raise InvalidArgumentError("delta_merge_threshold must be >= 1")
        self._store = store
        self._metric = DistanceMetric(metric)
        self._kind = IndexKind(kind)
        self._flat_threshold = flat_threshold
        self._params: dict[IndexKind, dict[str, Any]] = {
            IndexKind.FLAT: {},
            IndexKind.HNSW: dict(hnsw_params or {}),
            IndexKind.IVFFLAT: dict(ivf_params or {}),
        }
        self._delta_merge_threshold = delta_merge_threshold
        self._auto_compact = auto_compact
        self._growth_factor = rebuild_growth_factor
        self._max_tombstone_ratio = max_tombstone_ratio
        self._max_list_imbalance = max_list_imbalance
        self._recall_floor = recall_floor

        self._lock = threading.Lock()
        self._build_lock = threading.Lock()
        self._journal: list[_JournalEntry] | None = None
        self._compaction: asyncio.Future | None = None
        # Query sizes already warned about for the published structure.
        self._warned: set[int] = set()

        # Validate structure parameters eagerly so bad config fails at startup.
        for configured in (IndexKind.HNSW, IndexKind.IVFFLAT):
            index_class(configured)(store.dimension, self._metric, **self._params[configured])

        # With build=False the caller restores a saved snapshot (or rebuilds)
        # before serving queries.
        if build:
            ids, matrix = store.export_vectors()
        else:
            ids, matrix = [], np.empty((0, store.dimension), dtype=np.float64)
        self._snapshot = IndexSnapshot(
            version=0,
            structure=self._build_structure(ids, matrix),
            built_at=utc_now(),
            built_from=len(ids),
        )
        store.add_listener(self._on_store_change)

    @classmethod
    def from_settings(
        cls, store: VectorStore, settings: Settings, build: bool = True
    ) -> IndexManager:
        return cls(
            store,
            metric=settings.vector_metric,
            kind=settings.index_kind,
            flat_threshold=settings.index_flat_threshold,
            hnsw_params=settings.hnsw_params(),
            ivf_params=settings.ivf_params(),
            delta_merge_threshold=settings.index_delta_merge_threshold,
            auto_compact=settings.index_auto_compact,
            rebuild_growth_factor=settings.rebuild_growth_factor,
            max_tombstone_ratio=settings.rebuild_max_tombstone_ratio,
            max_list_imbalance=settings.rebuild_max_list_imbalance,
            recall_floor=settings.recall_floor,
            build=build,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> IndexSnapshot:
        """The currently published snapshot."""
        return self._snapshot

    @property
    def store(self) -> VectorStore:
        return self._store

    @property
    def metric(self) -> DistanceMetric:
        return self._metric

    @property
    def dimension(self) -> int:
        return self._store.dimension

    @property
    def configured_kind(self) -> IndexKind:
        return self._kind

    @property
    def flat_threshold(self) -> int:
        return self._flat_threshold

    @property
    def recall_floor(self) -> float:
        return self._recall_floor

    def resolve_kind(self, row_count: int) -> IndexKind:
        """Concrete structure kind for a store of *row_count* documents."""
        if self._kind is not IndexKind.AUTO:
            return self._kind
        return IndexKind.FLAT if row_count < self._flat_threshold else IndexKind.HNSW

    def detach(self) -> None:
        """Stop following store changes."""
        self._store.remove_listener(self._on_store_change)

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def search(
        self,
        query: Any,
        k: int,
        accept: Callable[[str], bool] | None = None,
    ) -> list[tuple[str, float]]:
        """k-nearest ``(id, distance)`` pairs from the current snapshot."""
        if k < 1:
            raise InvalidArgumentError(f"k must be >= 1, got {k}")
        vector = coerce_embedding(query, self.dimension)
        return self._snapshot.search(vector, k, accept)

    # ------------------------------------------------------------------
    # Incremental maintenance
    # ------------------------------------------------------------------

    def _on_store_change(self, change: StoreChange) -> None:
        if change.op is ChangeOp.DELETE:
            self.apply_delete(change.doc_id)
        elif change.embedding_changed:
            self.apply_upsert(change.doc_id, change.embedding)

    def apply_upsert(self, doc_id: str, vector: np.ndarray) -> None:
        with self._lock:
            self._snapshot = self._snapshot.with_upsert(doc_id, vector)
            if self._journal is not None:
                self._journal.append(("upsert", doc_id, vector))
            delta_size = len(self._snapshot.delta)
        if self._auto_compact and delta_size >= self._delta_merge_threshold:
            self._schedule_compaction()

    def apply_delete(self, doc_id: str) -> None:
        with self._lock:
            self._snapshot = self._snapshot.with_delete(doc_id)
            if self._journal is not None:
                self._journal.append(("delete", doc_id, None))
            tombstones = len(self._snapshot.tombstones)
        if self._auto_compact and tombstones >= self._delta_merge_threshold:
            self._schedule_compaction()

    def _schedule_compaction(self) -> None:
        if self._compaction is not None and not self._compaction.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.compact_sync()
            return
        future = loop.run_in_executor(None, self.compact_sync)
        future.add_done_callback(self._compaction_done)
        self._compaction = future

    @staticmethod
    def _compaction_done(future: asyncio.Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("background_compaction_failed", error=str(exc))

    async def wait_for_compaction(self) -> None:
        """Await a background compaction started by a write, if one is running."""
        pending = self._compaction
        if pending is not None and not pending.done():
            await pending

    # ------------------------------------------------------------------
    # Builds
    # ------------------------------------------------------------------

    def _build_structure(
        self,
        ids: list[str],
        matrix: np.ndarray,
        cancel_event: threading.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> IAnnIndex:
        kind = self.resolve_kind(len(ids))
        return index_class(kind).build(
            self.dimension,
            self._metric,
            ids,
            matrix,
            params=self._params[kind],
            cancel_event=cancel_event,
            progress=progress,
        )

    def _replay(self, snapshot: IndexSnapshot, journal: list[_JournalEntry]) -> IndexSnapshot:
        for op, doc_id, vector in journal:
            if op == "upsert":
                snapshot = snapshot.with_upsert(doc_id, vector)
            else:
                snapshot = snapshot.with_delete(doc_id)
        return snapshot

    def _publish(
        self,
        structure: IAnnIndex,
        built_from: int,
        cancel_event: threading.Event | None,
    ) -> IndexSnapshot:
        with self._lock:
            if cancel_event is not None and cancel_event.is_set():
                raise RebuildCancelledError()
            fresh = IndexSnapshot(
                version=self._snapshot.version + 1,
                structure=structure,
                built_at=utc_now(),
                built_from=built_from,
            )
            published = self._replay(fresh, self._journal or [])
            self._snapshot = published
            self._warned.clear()
            self._journal = None
        return published

    def _run_build(
        self,
        event: str,
        produce: Callable[[], tuple[IAnnIndex, int]],
        cancel_event: threading.Event | None,
    ) -> IndexSnapshot:
        with self._build_lock:
            with self._lock:
                self._journal = []
            try:
                with log_duration(logger, event) as extra:
                    structure, built_from = produce()
                    published = self._publish(structure, built_from, cancel_event)
                    extra.update(
                        version=published.version,
                        kind=published.kind.value,
                        rows=built_from,
                        replayed_delta=len(published.delta),
                    )
                return published
            except BuildCancelled as exc:
                logger.info(f"{event}_cancelled")
                raise RebuildCancelledError() from exc
            except RebuildCancelledError:
                logger.info(f"{event}_cancelled")
                raise
            except IndexBuildError:
                raise
            except Exception as exc:
                raise IndexBuildError(f"{event} failed: {exc}") from exc
            finally:
                with self._lock:
                    self._journal = None

    def rebuild_sync(
        self,
        cancel_event: threading.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> IndexSnapshot:
        """Build a fresh structure from the whole store and publish it.

        Raises
        ------
        RebuildCancelledError
            If *cancel_event* was set before publication.
        IndexBuildError
            If the build failed.  The previous snapshot stays published.
        """

        def produce() -> tuple[IAnnIndex, int]:
            ids, matrix = self._store.export_vectors()
            return self._build_structure(ids, matrix, cancel_event, progress), len(ids)

        return self._run_build("index_rebuild", produce, cancel_event)

    async def rebuild(
        self,
        cancel_event: threading.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> IndexSnapshot:
        """Async :meth:`rebuild_sync` running in a worker thread.

        Cancelling the awaiting task sets *cancel_event* so the worker stops
        at its next checkpoint without publishing.
        """
        cancel_event = cancel_event or threading.Event()
        try:
            return await asyncio.to_thread(self.rebuild_sync, cancel_event, progress)
        except asyncio.CancelledError:
            cancel_event.set()
            raise

    def compact_sync(self, cancel_event: threading.Event | None = None) -> IndexSnapshot:
        """Fold the delta buffer and tombstones into a copy of the structure.

        IVF centroids are kept; new vectors join their nearest existing
        list.  A full rebuild runs instead when the store size now calls for
        a different structure kind, or when IVF lists were never trained.
        """
        base = self._snapshot
        if not base.delta and not base.tombstones:
            return base
        untrained = isinstance(base.structure, IVFFlatIndex) and not base.structure.trained
        if untrained or self.resolve_kind(base.live_count) is not base.kind:
            return self.rebuild_sync(cancel_event)

        def produce() -> tuple[IAnnIndex, int]:
            # Re-read under the build lock: another build may have published.
            current = self._snapshot
            structure = current.structure.copy()
            for doc_id in current.tombstones:
                structure.remove(doc_id)
            for doc_id, vector in current.delta.items():
                structure.insert(doc_id, vector)
            return structure, current.built_from

        return self._run_build("index_compaction", produce, cancel_event)

    async def compact(self) -> IndexSnapshot:
        return await asyncio.to_thread(self.compact_sync)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def rebuild_reasons(self) -> list[str]:
        """Why a full rebuild would help now; empty when the index is healthy."""
        snap = self._snapshot
        reasons: list[str] = []
        live = snap.live_count
        if self.resolve_kind(live) is not snap.kind:
            reasons.append("structure_kind_outgrown")
        if snap.built_from and live > snap.built_from * self._growth_factor:
            reasons.append("store_grew")
        structure_total = len(snap.structure) + snap.structure.tombstone_count
        masked = snap.structure.tombstone_count + len(snap.tombstones)
        if structure_total and masked / structure_total > self._max_tombstone_ratio:
            reasons.append("tombstone_ratio")
        if isinstance(snap.structure, IVFFlatIndex):
            if not snap.structure.trained and len(snap.structure):
                reasons.append("ivf_untrained")
            elif snap.structure.imbalance() > self._max_list_imbalance:
                reasons.append("list_imbalance")
        return reasons

    def needs_rebuild(self) -> bool:
        return bool(self.rebuild_reasons())

    def check_parameters(self, k: int) -> list[str]:
        """Static search-parameter checks for a query of size *k*.

        Logs ``recall_degraded`` once per published structure and *k* when a
        check fails and returns the failing check names.  HNSW always widens
        its layer-0 beam to *k*, so only IVF parameters are checked.
        """
        structure = self._snapshot.structure
        problems: list[str] = []
        if isinstance(structure, IVFFlatIndex) and structure.trained:
            if structure.effective_probes == 1 and structure.list_count > 1:
                problems.append("single_probe")
            if structure.imbalance() > self._max_list_imbalance:
                problems.append("list_imbalance")
        if problems and k not in self._warned:
            self._warned.add(k)
            logger.warning(
                "recall_degraded",
                source="parameters",
                kind=structure.kind.value,
                k=k,
                checks=problems,
                params=structure.params(),
            )
        return problems

    def estimate_recall(self, sample_size: int = 100, k: int = 10, seed: int = 0) -> RecallReport:
        """Sampled recall@k of the published snapshot against exact search.

        Query vectors are drawn from the store itself.  Logs
        ``recall_degraded`` when the estimate falls below the recall floor.
        """
        if k < 1 or sample_size < 1:
            raise InvalidArgumentError("k and sample_size must be >= 1")
        snap = self._snapshot
        ids, matrix = self._store.export_vectors()
        if not ids:
            return RecallReport(
                recall=1.0,
                k=k,
                sample_size=0,
                floor=self._recall_floor,
                kind=snap.kind,
                snapshot_version=snap.version,
            )
        rng = np.random.default_rng(seed)
        picks = rng.choice(len(ids), size=min(sample_size, len(ids)), replace=False)
        prepared = prepare_matrix(matrix, self._metric)
        hits = 0
        expected = 0
        for row in picks.tolist():
            query = matrix[row]
            exact = top_k(ids, distances(prepare(query, self._metric), prepared, self._metric), k)
            approx = snap.search(query, k)
            exact_ids = {doc_id for doc_id, _ in exact}
            hits += len(exact_ids & {doc_id for doc_id, _ in approx})
            expected += len(exact_ids)
        recall = hits / expected if expected else 1.0
        degraded = recall < self._recall_floor
        report = RecallReport(
            recall=recall,
            k=k,
            sample_size=len(picks),
            floor=self._recall_floor,
            degraded=degraded,
            kind=snap.kind,
            snapshot_version=snap.version,
        )
        if degraded:
            logger.warning(
                "recall_degraded",
                source="estimate",
                recall=round(recall, 4),
                floor=self._recall_floor,
                kind=snap.kind.value,
                k=k,
                sample_size=report.sample_size,
            )
        else:
            logger.info("recall_estimated", recall=round(recall, 4), kind=snap.kind.value, k=k)
        return report

    def stats(self) -> IndexStats:
        snap = self._snapshot
        describe = snap.structure.describe()
        return IndexStats(
            kind=snap.kind,
            metric=snap.metric,
            dimension=snap.dimension,
            version=snap.version,
            live_count=snap.live_count,
            structure_count=len(snap.structure),
            delta_count=len(snap.delta),
            tombstone_count=len(snap.tombstones) + snap.structure.tombstone_count,
            built_at=snap.built_at,
            built_from=snap.built_from,
            structure_params=snap.structure.params(),
            list_imbalance=describe.get("list_imbalance"),
            rebuild_reasons=self.rebuild_reasons(),
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: str) -> None:
        """Write the published snapshot to *path* (compacting first if needed)."""
        snap = self._snapshot
        if snap.delta or snap.tombstones:
            snap = self.compact_sync()
        exported = snap.structure.export_state()
        payload = {
            "dimension": snap.dimension,
            "metric": snap.metric.value,
            "structure_kind": snap.kind.value,
            "structure_params": snap.structure.params(),
            "version": snap.version,
            "built_from": snap.built_from,
            "built_at": snap.built_at.isoformat(),
            "state": exported["state"],
            "nodes": exported["nodes"],
        }
        with log_duration(logger, "index_snapshot_saved", path=path, version=snap.version):
            SnapshotFileStore(path).write(payload)

    def load(self, path: str) -> IndexSnapshot:
        """Restore a snapshot saved by :meth:`save` and reconcile it with the store.

        Documents added to the store after the save are folded into the
        delta buffer; documents deleted since are tombstoned.

        Raises
        ------
        IndexBuildError
            If the file is unreadable or was saved for another dimension or
            metric.
        """
        payload = SnapshotFileStore(path).read()
        if payload["dimension"] != self.dimension:
            raise IndexBuildError(
                f"Snapshot dimension {payload['dimension']} != store dimension {self.dimension}"
            )
        if payload["metric"] != self._metric.value:
            raise IndexBuildError(
                f"Snapshot metric {payload['metric']!r} != index metric {self._metric.value!r}"
            )
        try:
            kind = IndexKind(payload["structure_kind"])
        except ValueError as exc:
            raise IndexBuildError(f"Unknown structure kind {payload['structure_kind']!r}") from exc

        with self._build_lock, log_duration(logger, "index_snapshot_loaded", path=path) as extra:
            ids, matrix = self._store.export_vectors()
            vectors = dict(zip(ids, matrix))
            known = {node["id"] for node in payload["nodes"]}
            missing = known - set(ids)
            # Nodes for documents deleted since the save still need a vector
            # to be restored; they are removed right after.
            placeholder = np.zeros(self.dimension, dtype=np.float64)
            for doc_id in missing:
                vectors[doc_id] = placeholder
            try:
                structure = index_class(kind).from_state(
                    self.dimension, self._metric, payload["structure_params"], payload, vectors
                )
            except (KeyError, TypeError, ValueError) as exc:
                raise IndexBuildError(f"Corrupt snapshot {path}: {exc}") from exc
            for doc_id in missing:
                structure.remove(doc_id)

            with self._lock:
                snapshot = IndexSnapshot(
                    version=max(int(payload["version"]), self._snapshot.version + 1),
                    structure=structure,
                    built_at=utc_now(),
                    built_from=int(payload.get("built_from", len(known))),
                )
                for doc_id, vector in vectors.items():
                    if doc_id not in missing:
                        snapshot = snapshot.with_upsert(doc_id, vector)
                self._snapshot = snapshot
                self._warned.clear()
            extra.update(
                version=snapshot.version,
                kind=kind.value,
                nodes=len(known),
                stale=len(missing),
                delta=len(snapshot.delta),
            )
        return snapshot
