"""Unit tests for IndexManager: publication, rebuilds, compaction, recall, persistence."""

from __future__ import annotations

import asyncio
import threading
from pathlib import Path

import numpy as np
import pytest

from tests.factories import DIM, clustered_vectors, line_vector, make_doc
from vecsearch.models.index import DistanceMetric, IndexKind
from vecsearch.services.index_manager import IndexManager
from vecsearch.services.vector_store import VectorStore
from vecsearch.utils.distance import coerce_embedding
from vecsearch.utils.errors import IndexBuildError, InvalidArgumentError, RebuildCancelledError

L2 = DistanceMetric.L2


def _ids(hits: list[tuple[str, float]]) -> list[str]:
    return [doc_id for doc_id, _ in hits]


# ======================================================================
# Build and incremental maintenance
# ======================================================================


class TestIncremental:
    @pytest.mark.asyncio
    async def test_initial_build_covers_store(self, line_manager: IndexManager) -> None:
        snap = line_manager.snapshot
        assert snap.kind is IndexKind.FLAT
        assert snap.live_count == 40
        assert snap.built_from == 40
        assert _ids(line_manager.search(line_vector(7), 3)) == ["d007", "d006", "d008"]

    @pytest.mark.asyncio
    async def test_store_writes_reach_delta(
        self, line_store: VectorStore, line_manager: IndexManager
    ) -> None:
        await line_store.insert(make_doc("new", line_vector(7.1)))
        await line_store.delete("d007")
        snap = line_manager.snapshot
        assert "new" in snap.delta
        assert "d007" in snap.tombstones
        assert _ids(line_manager.search(line_vector(7), 2)) == ["new", "d006"]

    @pytest.mark.asyncio
    async def test_metadata_only_update_keeps_snapshot(
        self, line_store: VectorStore, line_manager: IndexManager
    ) -> None:
        from vecsearch.models.document import DocumentPatch

        before = line_manager.snapshot
        await line_store.update("d001", DocumentPatch(metadata={"group": "c"}))
        assert line_manager.snapshot is before

    @pytest.mark.asyncio
    async def test_search_rejects_bad_k(self, line_manager: IndexManager) -> None:
        with pytest.raises(InvalidArgumentError):
            line_manager.search(line_vector(1), 0)

    @pytest.mark.asyncio
    async def test_detach_stops_following(
        self, line_store: VectorStore, line_manager: IndexManager
    ) -> None:
        line_manager.detach()
        await line_store.insert(make_doc("new", line_vector(1)))
        assert "new" not in line_manager.snapshot


class TestResolveKind:
    def test_auto_switches_at_threshold(self, store: VectorStore) -> None:
        manager = IndexManager(store, metric=L2, flat_threshold=100)
        assert manager.resolve_kind(99) is IndexKind.FLAT
        assert manager.resolve_kind(100) is IndexKind.HNSW

    def test_explicit_kind_wins(self, store: VectorStore) -> None:
        manager = IndexManager(store, metric=L2, kind=IndexKind.IVFFLAT)
        assert manager.resolve_kind(5) is IndexKind.IVFFLAT
        assert manager.configured_kind is IndexKind.IVFFLAT

    def test_bad_structure_params_fail_at_construction(self, store: VectorStore) -> None:
        with pytest.raises(InvalidArgumentError):
            IndexManager(store, metric=L2, hnsw_params={"m": 1})
        with pytest.raises(InvalidArgumentError):
            IndexManager(store, metric=L2, ivf_params={"lists": 2, "probes": 3})
        with pytest.raises(InvalidArgumentError):
            IndexManager(store, metric=L2, delta_merge_threshold=0)


# ======================================================================
# Rebuild
# ======================================================================


class TestRebuild:
    @pytest.mark.asyncio
    async def test_rebuild_folds_delta(
        self, line_store: VectorStore, line_manager: IndexManager
    ) -> None:
        await line_store.insert(make_doc("new", line_vector(100)))
        before = line_manager.snapshot.version
        published = await line_manager.rebuild()
        assert published.version > before
        assert not published.delta
        assert not published.tombstones
        assert len(published.structure) == 41
        assert published.built_from == 41
        assert line_manager.snapshot is published

    @pytest.mark.asyncio
    async def test_writes_during_build_are_replayed(self, line_manager: IndexManager) -> None:
        fired = threading.Event()

        def write_while_building(fraction: float) -> None:
            if fired.is_set():
                return
            fired.set()
            line_manager.apply_upsert("new", coerce_embedding(line_vector(100), DIM))
            line_manager.apply_delete("d000")

        published = line_manager.rebuild_sync(progress=write_while_building)
        assert fired.is_set()
        assert "new" in published
        assert "d000" not in published
        assert published.live_count == 40
        assert _ids(published.search(coerce_embedding(line_vector(100), DIM), 1)) == ["new"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", [IndexKind.FLAT, IndexKind.IVFFLAT, IndexKind.HNSW])
    async def test_readers_see_one_version_across_concurrent_rebuild(
        self, kind: IndexKind
    ) -> None:
        rows = clustered_vectors(300, seed=4)
        store = VectorStore(DIM)
        await store.insert_many([make_doc(f"d{i:03d}", row) for i, row in enumerate(rows)])
        manager = IndexManager(store, metric=L2, kind=kind, auto_compact=False)
        held = manager.snapshot
        held_version = held.version
        query = coerce_embedding(rows[7] + 0.1, DIM)
        before = held.search(query, 10)

        task = asyncio.create_task(manager.rebuild())
        await asyncio.sleep(0)
        for i in range(20):
            await store.insert(make_doc(f"new{i:02d}", rows[i] + 0.01))
            await store.delete(f"d{i + 100:03d}")

        await task
        assert held.version == held_version
        assert manager.snapshot.version > held_version
        assert held.search(query, 10) == before
        assert "new00" not in held

        ids, matrix = store.export_vectors()
        current = manager.snapshot
        present, vectors = current.vectors_for(ids)
        assert present == ids
        assert current.live_count == len(ids) == 300
        np.testing.assert_array_equal(vectors, matrix)

    @pytest.mark.asyncio
    async def test_cancelled_rebuild_keeps_previous_snapshot(
        self, line_manager: IndexManager
    ) -> None:
        before = line_manager.snapshot
        event = threading.Event()
        event.set()
        with pytest.raises(RebuildCancelledError):
            line_manager.rebuild_sync(cancel_event=event)
        assert line_manager.snapshot is before

    @pytest.mark.asyncio
    async def test_failed_build_wraps_error(
        self, line_manager: IndexManager, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        before = line_manager.snapshot

        def explode(*args, **kwargs):
            raise RuntimeError("out of memory")

        monkeypatch.setattr(line_manager, "_build_structure", explode)
        with pytest.raises(IndexBuildError, match="out of memory"):
            line_manager.rebuild_sync()
        assert line_manager.snapshot is before


# ======================================================================
# Compaction
# ======================================================================


class TestCompaction:
    @pytest.mark.asyncio
    async def test_compact_folds_delta_and_tombstones(
        self, line_store: VectorStore, line_manager: IndexManager
    ) -> None:
        await line_store.insert(make_doc("new", line_vector(3.5)))
        await line_store.delete("d001")
        published = line_manager.compact_sync()
        assert not published.delta
        assert not published.tombstones
        assert len(published.structure) == 40
        assert "d001" not in published
        assert _ids(published.search(coerce_embedding(line_vector(3.5), DIM), 1)) == ["new"]

    @pytest.mark.asyncio
    async def test_compact_without_changes_is_a_no_op(self, line_manager: IndexManager) -> None:
        before = line_manager.snapshot
        assert line_manager.compact_sync() is before

    @pytest.mark.asyncio
    async def test_untrained_ivf_compaction_rebuilds(self, store: VectorStore) -> None:
        manager = IndexManager(store, metric=L2, kind=IndexKind.IVFFLAT, auto_compact=False)
        assert not manager.snapshot.structure.trained
        await store.insert_many([make_doc(f"d{i:03d}", line_vector(i)) for i in range(30)])
        published = manager.compact_sync()
        assert published.structure.trained
        assert len(published.structure) == 30

    @pytest.mark.asyncio
    async def test_auto_compaction_after_threshold(self, line_store: VectorStore) -> None:
        manager = IndexManager(
            line_store, metric=L2, kind=IndexKind.FLAT, delta_merge_threshold=4
        )
        await line_store.insert_many(
            [make_doc(f"n{i}", line_vector(100 + i)) for i in range(4)]
        )
        await manager.wait_for_compaction()
        snap = manager.snapshot
        assert not snap.delta
        assert len(snap.structure) == 44

    @pytest.mark.asyncio
    async def test_auto_compaction_disabled(self, line_store: VectorStore) -> None:
        manager = IndexManager(
            line_store, metric=L2, kind=IndexKind.FLAT, delta_merge_threshold=2, auto_compact=False
        )
        await line_store.insert_many([make_doc(f"n{i}", line_vector(100 + i)) for i in range(3)])
        await manager.wait_for_compaction()
        assert len(manager.snapshot.delta) == 3


# ======================================================================
# Health: rebuild reasons, parameter checks, recall
# ======================================================================


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy_index_has_no_reasons(self, line_manager: IndexManager) -> None:
        assert line_manager.rebuild_reasons() == []
        assert not line_manager.needs_rebuild()

    @pytest.mark.asyncio
    async def test_tombstone_ratio_reason(
        self, line_store: VectorStore, line_manager: IndexManager
    ) -> None:
        for i in range(10):
            await line_store.delete(f"d{i:03d}")
        assert "tombstone_ratio" in line_manager.rebuild_reasons()
        stats = line_manager.stats()
        assert stats.tombstone_count == 10
        assert stats.live_count == 30
        assert "tombstone_ratio" in stats.rebuild_reasons

    @pytest.mark.asyncio
    async def test_small_ef_search_is_widened_to_k(self, line_store: VectorStore) -> None:
        manager = IndexManager(
            line_store, metric=L2, kind=IndexKind.HNSW, hnsw_params={"ef_search": 5}
        )
        assert manager.check_parameters(10) == []
        assert len(manager.search(line_vector(20), 10)) == 10

    @pytest.mark.asyncio
    async def test_parameter_warning_once_per_published_structure(self) -> None:
        rng = np.random.default_rng(3)
        store = VectorStore(DIM)
        await store.insert_many(
            [make_doc(f"d{i:03d}", row) for i, row in enumerate(rng.uniform(size=(100, DIM)))]
        )
        manager = IndexManager(
            store, metric=L2, kind=IndexKind.IVFFLAT, ivf_params={"probes": 1}
        )
        assert "single_probe" in manager.check_parameters(10)
        manager.check_parameters(10)
        manager.check_parameters(20)
        assert manager._warned == {10, 20}
        await manager.rebuild()
        assert manager._warned == set()
        assert "single_probe" in manager.check_parameters(10)
        assert manager._warned == {10}

    @pytest.mark.asyncio
    async def test_flat_recall_is_exact(self, line_manager: IndexManager) -> None:
        report = line_manager.estimate_recall(sample_size=20, k=5)
        assert report.recall == 1.0
        assert not report.degraded
        assert report.sample_size == 20
        assert report.kind is IndexKind.FLAT

    @pytest.mark.asyncio
    async def test_single_probe_ivf_reports_degraded(self) -> None:
        rng = np.random.default_rng(3)
        store = VectorStore(DIM)
        await store.insert_many(
            [make_doc(f"d{i:03d}", row) for i, row in enumerate(rng.uniform(size=(400, DIM)))]
        )
        manager = IndexManager(
            store, metric=L2, kind=IndexKind.IVFFLAT, ivf_params={"probes": 1}
        )
        report = manager.estimate_recall(sample_size=50, k=10)
        assert report.degraded
        assert report.recall < 0.9
        assert "single_probe" in manager.check_parameters(10)

    def test_empty_store_recall(self, store: VectorStore) -> None:
        manager = IndexManager(store, metric=L2)
        report = manager.estimate_recall()
        assert report.recall == 1.0
        assert report.sample_size == 0

    @pytest.mark.asyncio
    async def test_recall_rejects_bad_k(self, line_manager: IndexManager) -> None:
        with pytest.raises(InvalidArgumentError):
            line_manager.estimate_recall(k=0)


# ======================================================================
# Persistence
# ======================================================================


class TestPersistence:
    @pytest.mark.asyncio
    async def test_save_and_load_reconciles_with_store(
        self, line_store: VectorStore, tmp_path: Path
    ) -> None:
        path = str(tmp_path / "index.json")
        params = {"m": 4, "ef_construction": 64, "ef_search": 64, "seed": 5}
        original = IndexManager(line_store, metric=L2, kind=IndexKind.HNSW, hnsw_params=params)
        original.save(path)
        original.detach()

        await line_store.delete("d000")
        await line_store.insert(make_doc("new", line_vector(100)))

        restored = IndexManager(
            line_store, metric=L2, kind=IndexKind.HNSW, hnsw_params=params, build=False
        )
        snap = restored.load(path)
        assert snap.kind is IndexKind.HNSW
        assert snap.live_count == 40
        assert "d000" not in snap
        assert "new" in snap.delta
        assert _ids(restored.search(line_vector(12), 3)) == ["d012", "d011", "d013"]

    @pytest.mark.asyncio
    async def test_load_rejects_other_dimension(self, tmp_path: Path) -> None:
        path = str(tmp_path / "index.json")
        small = VectorStore(4)
        await small.insert(make_doc("a", [1.0, 0.0, 0.0, 0.0]))
        IndexManager(small, metric=L2).save(path)

        other = IndexManager(VectorStore(DIM), metric=L2, build=False)
        with pytest.raises(IndexBuildError, match="dimension"):
            other.load(path)

    @pytest.mark.asyncio
    async def test_load_rejects_other_metric(
        self, line_store: VectorStore, tmp_path: Path
    ) -> None:
        path = str(tmp_path / "index.json")
        IndexManager(line_store, metric=L2, kind=IndexKind.FLAT).save(path)
        cosine = IndexManager(
            line_store, metric=DistanceMetric.COSINE, kind=IndexKind.FLAT, build=False
        )
        with pytest.raises(IndexBuildError, match="metric"):
            cosine.load(path)

    def test_load_missing_file(self, store: VectorStore, tmp_path: Path) -> None:
        manager = IndexManager(store, metric=L2)
        with pytest.raises(IndexBuildError):
            manager.load(str(tmp_path / "absent.json"))
