"""Unit tests for the flat, IVFFlat and HNSW index structures."""

from __future__ import annotations

import threading

import numpy as np
import pytest

from tests.factories import DIM, clustered_vectors, doc_ids, exact_top_k
from vecsearch.interfaces.ann_index import BuildCancelled
from vecsearch.models.index import DistanceMetric, IndexKind
from vecsearch.providers.index import FlatIndex, HNSWIndex, IVFFlatIndex, index_class
from vecsearch.utils.errors import IndexBuildError, InvalidArgumentError

L2 = DistanceMetric.L2


def _recall(index, matrix: np.ndarray, ids: list[str], queries: np.ndarray, k: int) -> float:
    found = 0
    for query in queries:
        expected = set(exact_top_k(matrix, ids, query, k))
        found += len(expected & {doc_id for doc_id, _ in index.search(query, k)})
    return found / (k * len(queries))


def _vectors_by_id(ids: list[str], matrix: np.ndarray) -> dict[str, np.ndarray]:
    return dict(zip(ids, matrix))


# ======================================================================
# Registry
# ======================================================================


def test_index_class_registry() -> None:
    assert index_class(IndexKind.FLAT) is FlatIndex
    assert index_class(IndexKind.IVFFLAT) is IVFFlatIndex
    assert index_class(IndexKind.HNSW) is HNSWIndex
    with pytest.raises(InvalidArgumentError):
        index_class(IndexKind.AUTO)


# ======================================================================
# FlatIndex
# ======================================================================


class TestFlatIndex:
    def test_exact_results(self, clustered) -> None:
        ids, matrix = clustered
        index = FlatIndex.build(DIM, L2, ids, matrix)
        query = matrix[17] + 0.01
        assert [doc_id for doc_id, _ in index.search(query, 10)] == exact_top_k(
            matrix, ids, query, 10
        )

    def test_insert_replaces_and_remove_keeps_slab_dense(self) -> None:
        index = FlatIndex(2, L2)
        index.insert("a", np.array([0.0, 0.0]))
        index.insert("b", np.array([1.0, 0.0]))
        index.insert("c", np.array([2.0, 0.0]))
        index.insert("a", np.array([5.0, 0.0]))
        assert len(index) == 3

        assert index.remove("a")
        assert not index.remove("a")
        assert sorted(index.ids()) == ["b", "c"]
        assert index.search(np.array([2.1, 0.0]), 1)[0][0] == "c"
        np.testing.assert_array_equal(index.vector("c"), [2.0, 0.0])

    def test_cosine_stores_normalised_vectors(self) -> None:
        index = FlatIndex(2, DistanceMetric.COSINE)
        index.insert("a", np.array([3.0, 4.0]))
        np.testing.assert_allclose(index.vector("a"), [0.6, 0.8])
        assert index.search(np.array([6.0, 8.0]), 1)[0][1] == pytest.approx(0.0)

    def test_copy_is_independent(self) -> None:
        index = FlatIndex(2, L2)
        index.insert("a", np.array([0.0, 0.0]))
        clone = index.copy()
        clone.insert("b", np.array([1.0, 1.0]))
        clone.remove("a")
        assert index.ids() == ["a"]
        assert clone.ids() == ["b"]

    def test_build_honours_cancel_event(self, clustered) -> None:
        ids, matrix = clustered
        event = threading.Event()
        event.set()
        with pytest.raises(BuildCancelled):
            FlatIndex.build(DIM, L2, ids, matrix, cancel_event=event)

    def test_state_round_trip(self, clustered) -> None:
        ids, matrix = clustered
        index = FlatIndex.build(DIM, L2, ids[:50], matrix[:50])
        restored = FlatIndex.from_state(
            DIM, L2, {}, index.export_state(), _vectors_by_id(ids, matrix)
        )
        assert restored.search(matrix[3], 5) == index.search(matrix[3], 5)

    def test_from_state_with_unknown_document_raises(self) -> None:
        with pytest.raises(IndexBuildError):
            FlatIndex.from_state(2, L2, {}, {"nodes": [{"id": "ghost"}]}, {})


# ======================================================================
# IVFFlatIndex
# ======================================================================


class TestIVFFlatIndex:
    def test_lists_default_to_sqrt_of_rows(self) -> None:
        matrix = clustered_vectors(400)
        index = IVFFlatIndex.build(DIM, L2, doc_ids(400), matrix, params={"probes": 4})
        assert index.trained
        assert index.list_count == 20
        assert sum(index.list_sizes()) == 400

    def test_probing_every_list_is_exact(self, clustered) -> None:
        ids, matrix = clustered
        index = IVFFlatIndex.build(DIM, L2, ids, matrix, params={"lists": 8, "probes": 8})
        for row in (0, 100, 250):
            query = matrix[row] + 0.05
            found = [doc_id for doc_id, _ in index.search(query, 10)]
            assert found == exact_top_k(matrix, ids, query, 10)

    def test_default_parameters_meet_recall_floor(self, clustered) -> None:
        ids, matrix = clustered
        index = IVFFlatIndex.build(DIM, L2, ids, matrix)
        assert index.effective_probes is None
        assert index.describe()["probes"] == "bounded"
        rng = np.random.default_rng(5)
        queries = matrix[rng.choice(len(ids), size=30, replace=False)] + rng.normal(
            scale=0.05, size=(30, DIM)
        )
        assert _recall(index, matrix, ids, queries, 10) >= 0.9

    @pytest.mark.parametrize("metric", list(DistanceMetric))
    def test_default_parameters_meet_recall_floor_on_unclustered_data(
        self, metric: DistanceMetric
    ) -> None:
        rng = np.random.default_rng(11)
        matrix = rng.normal(size=(3000, 32))
        ids = [f"g{i:04d}" for i in range(3000)]
        index = IVFFlatIndex.build(32, metric, ids, matrix)
        exact = FlatIndex.build(32, metric, ids, matrix)
        assert index.list_count == 55
        found = 0
        for query in rng.normal(size=(50, 32)):
            expected = {doc_id for doc_id, _ in exact.search(query, 10)}
            found += len(expected & {doc_id for doc_id, _ in index.search(query, 10)})
        assert found / 500 >= 0.9

    def test_bounded_probing_honours_accept(self, clustered) -> None:
        ids, matrix = clustered
        index = IVFFlatIndex.build(DIM, L2, ids, matrix)
        even = set(ids[::2])
        hits = index.search(matrix[3], 10, accept=even.__contains__)
        assert [doc_id for doc_id, _ in hits] == exact_top_k(matrix[::2], ids[::2], matrix[3], 10)

    def test_bounds_stay_valid_after_inserts(self, clustered) -> None:
        ids, matrix = clustered
        index = IVFFlatIndex.build(DIM, L2, ids, matrix)
        far = matrix[0] + 40.0
        index.insert("far", far)
        assert index.search(far, 1) == [("far", 0.0)]
        assert index.copy().search(far, 1) == [("far", 0.0)]

    def test_probes_are_clamped_to_trained_lists(self) -> None:
        matrix = clustered_vectors(16)
        index = IVFFlatIndex.build(DIM, L2, doc_ids(16), matrix, params={"probes": 50})
        assert index.list_count == 4
        assert index.effective_probes == 4

    def test_explicit_probes_above_lists_rejected(self) -> None:
        with pytest.raises(InvalidArgumentError):
            IVFFlatIndex(DIM, L2, lists=4, probes=5)

    def test_untrained_index_keeps_inserts_searchable(self) -> None:
        index = IVFFlatIndex.build(DIM, L2, [], np.empty((0, DIM)))
        assert not index.trained
        vector = np.ones(DIM)
        index.insert("late", vector)
        assert index.search(vector, 1) == [("late", 0.0)]
        assert index.describe()["unassigned"] == 1

    def test_insert_after_training_joins_nearest_list(self, clustered) -> None:
        ids, matrix = clustered
        index = IVFFlatIndex.build(DIM, L2, ids, matrix, params={"lists": 8, "probes": 1})
        index.insert("new", matrix[5])
        assert index.search(matrix[5], 2)[0][1] == pytest.approx(0.0)
        assert index.remove("new")
        assert "new" not in index

    def test_remove_keeps_lists_consistent(self, clustered) -> None:
        ids, matrix = clustered
        index = IVFFlatIndex.build(DIM, L2, ids, matrix, params={"lists": 8, "probes": 8})
        for doc_id in ids[:100]:
            assert index.remove(doc_id)
        assert len(index) == 400
        assert sum(index.list_sizes()) == 400
        hits = index.search(matrix[0], 400)
        assert not {doc_id for doc_id, _ in hits} & set(ids[:100])

    def test_training_is_deterministic_for_a_seed(self, clustered) -> None:
        ids, matrix = clustered
        a = IVFFlatIndex.build(DIM, L2, ids, matrix, params={"lists": 10, "probes": 2, "seed": 7})
        b = IVFFlatIndex.build(DIM, L2, ids, matrix, params={"lists": 10, "probes": 2, "seed": 7})
        assert a.export_state() == b.export_state()

    def test_state_round_trip(self, clustered) -> None:
        ids, matrix = clustered
        params = {"lists": 10, "probes": 3}
        index = IVFFlatIndex.build(DIM, L2, ids, matrix, params=params)
        restored = IVFFlatIndex.from_state(
            DIM, L2, index.params(), index.export_state(), _vectors_by_id(ids, matrix)
        )
        assert restored.list_sizes() == index.list_sizes()
        assert restored.search(matrix[42], 10) == index.search(matrix[42], 10)

    def test_training_cancellation(self, clustered) -> None:
        ids, matrix = clustered
        event = threading.Event()
        event.set()
        with pytest.raises(BuildCancelled):
            IVFFlatIndex.build(DIM, L2, ids, matrix, cancel_event=event)


# ======================================================================
# HNSWIndex
# ======================================================================


class TestHNSWIndex:
    _PARAMS = {"m": 8, "ef_construction": 64, "ef_search": 64, "seed": 1}

    def test_recall_against_exact_search(self, clustered) -> None:
        ids, matrix = clustered
        index = HNSWIndex.build(DIM, L2, ids, matrix, params=self._PARAMS)
        rng = np.random.default_rng(11)
        queries = matrix[rng.choice(len(ids), size=30, replace=False)] + rng.normal(
            scale=0.05, size=(30, DIM)
        )
        assert _recall(index, matrix, ids, queries, 10) >= 0.9

    def test_same_seed_builds_same_graph(self, clustered) -> None:
        ids, matrix = clustered
        a = HNSWIndex.build(DIM, L2, ids[:200], matrix[:200], params=self._PARAMS)
        b = HNSWIndex.build(DIM, L2, ids[:200], matrix[:200], params=self._PARAMS)
        assert a.export_state() == b.export_state()

    def test_results_are_sorted_by_distance_then_id(self, clustered) -> None:
        ids, matrix = clustered
        index = HNSWIndex.build(DIM, L2, ids, matrix, params=self._PARAMS)
        hits = index.search(matrix[9], 20)
        assert hits == sorted(hits, key=lambda pair: (pair[1], pair[0]))
        assert hits[0] == ("d009", 0.0)

    def test_remove_tombstones_node(self, clustered) -> None:
        ids, matrix = clustered
        index = HNSWIndex.build(DIM, L2, ids[:100], matrix[:100], params=self._PARAMS)
        assert index.remove("d005")
        assert not index.remove("d005")
        assert len(index) == 99
        assert index.tombstone_count == 1
        assert "d005" not in {doc_id for doc_id, _ in index.search(matrix[5], 10)}

    def test_reinsert_replaces_vector(self) -> None:
        index = HNSWIndex(2, L2, m=4)
        index.insert("a", np.array([0.0, 0.0]))
        index.insert("b", np.array([1.0, 0.0]))
        index.insert("a", np.array([10.0, 0.0]))
        assert len(index) == 2
        assert index.search(np.array([10.0, 0.0]), 1) == [("a", 0.0)]

    def test_filtered_search_keeps_exploring(self, clustered) -> None:
        ids, matrix = clustered
        index = HNSWIndex.build(DIM, L2, ids, matrix, params=self._PARAMS)
        wanted = {"d010", "d250", "d499"}
        hits = index.search(matrix[0], 3, accept=wanted.__contains__)
        assert {doc_id for doc_id, _ in hits} == wanted

    def test_copy_is_independent(self, clustered) -> None:
        ids, matrix = clustered
        index = HNSWIndex.build(DIM, L2, ids[:50], matrix[:50], params=self._PARAMS)
        clone = index.copy()
        clone.remove("d000")
        clone.insert("extra", matrix[60])
        assert "d000" in index
        assert "extra" not in index
        assert len(index) == 50

    def test_state_round_trip_drops_tombstones(self, clustered) -> None:
        ids, matrix = clustered
        index = HNSWIndex.build(DIM, L2, ids[:150], matrix[:150], params=self._PARAMS)
        index.remove("d003")
        state = index.export_state()
        assert "d003" not in {node["id"] for node in state["nodes"]}

        restored = HNSWIndex.from_state(
            DIM, L2, index.params(), state, _vectors_by_id(ids, matrix)
        )
        assert len(restored) == 149
        assert restored.tombstone_count == 0
        hits = restored.search(matrix[3], 5)
        assert "d003" not in {doc_id for doc_id, _ in hits}
        assert hits[0][0] in exact_top_k(matrix[:150], ids[:150], matrix[3], 2)

    def test_invalid_parameters(self) -> None:
        with pytest.raises(InvalidArgumentError):
            HNSWIndex(DIM, L2, m=1)
        with pytest.raises(InvalidArgumentError):
            HNSWIndex(DIM, L2, ef_search=0)

    def test_empty_index_returns_nothing(self) -> None:
        assert HNSWIndex(DIM, L2).search(np.ones(DIM), 5) == []
