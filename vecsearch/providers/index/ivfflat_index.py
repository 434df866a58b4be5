"""Inverted-file index with flat (uncompressed) lists.

Build runs k-means over (a sample of) the data to place ``lists``
centroids, then assigns every vector to its nearest centroid.  With a
fixed ``probes`` a query ranks the centroids, scans the vectors of the
``probes`` nearest lists exhaustively, and returns the best *k*.

When ``probes`` is left unset, probing is bound-driven: every list keeps
the largest distance from its centroid to any member, which gives a lower
bound on the distance from the query to anything in the list.  Lists are
scanned in order of that bound until the next bound exceeds the current
*k*-th hit, so results match an exact scan on any data distribution and
well-separated lists are skipped.

Inserts after the build are assigned to the nearest existing centroid;
centroids are only recomputed by a full rebuild.  Deletions remove the
vector from its list immediately.  When ``lists`` is not configured it is
derived from the row count at build time as ``round(sqrt(n))``.

An index that has never been trained (built over an empty store) keeps
inserted vectors in an unassigned buffer that every query scans.
"""

from __future__ import annotations

import math
import threading
from collections.abc import Callable, Mapping, Sequence
from typing import Any

import numpy as np

from vecsearch.interfaces.ann_index import BuildCancelled, IAnnIndex, ProgressCallback
from vecsearch.models.index import DistanceMetric, IndexKind
from vecsearch.providers.index.vector_slab import VectorSlab
from vecsearch.utils.distance import distances, prepare, prepare_matrix, top_k
from vecsearch.utils.errors import IndexBuildError, InvalidArgumentError
from vecsearch.utils.logging import get_logger

_logger = get_logger(__name__)

# Absorbs rounding in the list bounds so ties at the k-th distance are still scanned.
_BOUND_SLACK = 1e-9


def _squared_l2(data: np.ndarray, centers: np.ndarray) -> np.ndarray:
    """Pairwise squared Euclidean distances, shape ``(len(data), len(centers))``."""
    d2 = (
        np.einsum("ij,ij->i", data, data)[:, None]
        - 2.0 * (data @ centers.T)
        + np.einsum("ij,ij->i", centers, centers)[None, :]
    )
    return np.maximum(d2, 0.0)


def kmeans(
    data: np.ndarray,
    k: int,
    max_iterations: int,
    rng: np.random.Generator,
    spherical: bool = False,
    cancel_event: threading.Event | None = None,
) -> np.ndarray:
    """Lloyd's k-means with k-means++ seeding.

    With ``spherical=True`` centroids are re-normalised after every update,
    which is the right objective for unit-length (cosine) data.  Empty
    clusters are re-seeded with the points farthest from their centroid.
    """
    n = data.shape[0]
    centers = np.empty((k, data.shape[1]), dtype=np.float64)
    centers[0] = data[int(rng.integers(n))]
    closest = _squared_l2(data, centers[:1])[:, 0]
    for c in range(1, k):
        total = float(closest.sum())
        if total <= 0.0:
            pick = int(rng.integers(n))
        else:
            pick = int(rng.choice(n, p=closest / total))
        centers[c] = data[pick]
        closest = np.minimum(closest, _squared_l2(data, centers[c : c + 1])[:, 0])

    previous: np.ndarray | None = None
    for _ in range(max_iterations):
        if cancel_event is not None and cancel_event.is_set():
            raise BuildCancelled()
        d2 = _squared_l2(data, centers)
        labels = np.argmin(d2, axis=1)
        if previous is not None and np.array_equal(labels, previous):
            break
        previous = labels

        sums = np.zeros_like(centers)
        np.add.at(sums, labels, data)
        counts = np.bincount(labels, minlength=k)
        filled = counts > 0
        centers[filled] = sums[filled] / counts[filled, None]
        empty = np.nonzero(~filled)[0]
        if empty.size:
            farthest = np.argsort(-d2[np.arange(n), labels], kind="stable")
            centers[empty] = data[farthest[: empty.size]]
        if spherical:
            centers = prepare_matrix(centers, DistanceMetric.COSINE)
    return centers


class IVFFlatIndex(IAnnIndex):
    """k-means partitioned index probing the nearest lists.

    ``probes=None`` selects bound-driven probing; an integer fixes the number
    of lists scanned per query.
    """

    kind = IndexKind.IVFFLAT

    def __init__(
        self,
        dimension: int,
        metric: DistanceMetric,
        lists: int | None = None,
        probes: int | None = None,
        training_sample: int = 20_000,
        max_iterations: int = 20,
        seed: int = 0,
    ) -> None:
        super().__init__(dimension, metric)
        if lists is not None and lists < 1:
            raise InvalidArgumentError(f"lists must be >= 1, got {lists}")
        if probes is not None and probes < 1:
            raise InvalidArgumentError(f"probes must be >= 1, got {probes}")
        if lists is not None and probes is not None and probes > lists:
            raise InvalidArgumentError(f"probes ({probes}) must not exceed lists ({lists})")
        if training_sample < 1 or max_iterations < 1:
            raise InvalidArgumentError("training_sample and max_iterations must be >= 1")
        self._lists = lists
        self._probes = probes
        self._training_sample = training_sample
        self._max_iterations = max_iterations
        self._seed = seed

        self._slab = VectorSlab(dimension)
        self._ids: list[str] = []
        self._slots: dict[str, int] = {}
        self._centroids: np.ndarray | None = None
        self._members: list[list[int]] = []
        self._radii = np.zeros(0, dtype=np.float64)
        self._assign: list[int] = []
        self._unassigned: list[int] = []

    # -- introspection -------------------------------------------------------

    def __len__(self) -> int:
        return len(self._ids)

    def ids(self) -> list[str]:
        return list(self._ids)

    @property
    def trained(self) -> bool:
        return self._centroids is not None

    @property
    def list_count(self) -> int:
        return 0 if self._centroids is None else int(self._centroids.shape[0])

    @property
    def effective_probes(self) -> int | None:
        """Fixed probe count clamped to the trained lists; ``None`` when bound-driven."""
        if self._probes is None:
            return None
        return min(self._probes, max(1, self.list_count))

    def params(self) -> dict[str, Any]:
        return {
            "lists": self._lists,
            "probes": self._probes,
            "training_sample": self._training_sample,
            "max_iterations": self._max_iterations,
            "seed": self._seed,
        }

    def list_sizes(self) -> list[int]:
        return [len(members) for members in self._members]

    def imbalance(self) -> float:
        """Largest list size over the mean list size (1.0 is perfectly balanced)."""
        sizes = self.list_sizes()
        if not sizes or sum(sizes) == 0:
            return 0.0
        return max(sizes) / (sum(sizes) / len(sizes))

    def describe(self) -> dict[str, Any]:
        return {
            "lists": self.list_count,
            "probes": "bounded" if self._probes is None else self.effective_probes,
            "trained": self.trained,
            "unassigned": len(self._unassigned),
            "list_imbalance": round(self.imbalance(), 4),
        }

    # -- training ------------------------------------------------------------

    def train(self, prepared: np.ndarray, cancel_event: threading.Event | None = None) -> None:
        """Compute centroids from *prepared* rows; existing entries are reassigned."""
        n = prepared.shape[0]
        if n == 0:
            raise IndexBuildError("Cannot train IVF lists on zero vectors", provider_name="ivfflat")
        rng = np.random.default_rng(self._seed)
        n_lists = self._lists if self._lists is not None else max(1, round(math.sqrt(n)))
        n_lists = min(n_lists, n)
        if self._probes is not None and self._probes > n_lists:
            _logger.debug("ivf_probes_clamped", probes=self._probes, lists=n_lists)

        sample = prepared
        if n > self._training_sample:
            picks = rng.choice(n, size=self._training_sample, replace=False)
            sample = prepared[np.sort(picks)]
        self._centroids = kmeans(
            sample,
            n_lists,
            self._max_iterations,
            rng,
            spherical=self._metric is DistanceMetric.COSINE,
            cancel_event=cancel_event,
        )
        self._members = [[] for _ in range(n_lists)]
        self._radii = np.zeros(n_lists, dtype=np.float64)
        self._unassigned = []
        for slot in range(len(self._ids)):
            self._attach(slot, self._nearest_list(self._slab.row(slot)))

    def _nearest_list(self, prepared: np.ndarray) -> int:
        assert self._centroids is not None
        return int(np.argmin(distances(prepared, self._centroids, self._metric)))

    def _attach(self, slot: int, list_no: int) -> None:
        if slot < len(self._assign):
            self._assign[slot] = list_no
        else:
            self._assign.append(list_no)
        if list_no < 0:
            self._unassigned.append(slot)
        else:
            self._members[list_no].append(slot)
            assert self._centroids is not None
            spread = float(np.linalg.norm(self._slab.row(slot) - self._centroids[list_no]))
            if spread > self._radii[list_no]:
                self._radii[list_no] = spread

    def _bucket(self, list_no: int) -> list[int]:
        return self._unassigned if list_no < 0 else self._members[list_no]

    # -- mutation ------------------------------------------------------------

    def insert(self, doc_id: str, vector: np.ndarray) -> None:
        self.remove(doc_id)
        self._add_prepared(doc_id, prepare(vector, self._metric))

    def _add_prepared(self, doc_id: str, prepared: np.ndarray) -> None:
        slot = self._slab.append(prepared)
        self._ids.append(doc_id)
        self._slots[doc_id] = slot
        self._attach(slot, self._nearest_list(prepared) if self.trained else -1)

    def remove(self, doc_id: str) -> bool:
        slot = self._slots.pop(doc_id, None)
        if slot is None:
            return False
        self._bucket(self._assign[slot]).remove(slot)
        last = len(self._ids) - 1
        if slot != last:
            moved = self._ids[last]
            bucket = self._bucket(self._assign[last])
            bucket[bucket.index(last)] = slot
            self._slab.move(last, slot)
            self._ids[slot] = moved
            self._slots[moved] = slot
            self._assign[slot] = self._assign[last]
        self._ids.pop()
        self._assign.pop()
        self._slab.pop()
        return True

    def vector(self, doc_id: str) -> np.ndarray | None:
        slot = self._slots.get(doc_id)
        return None if slot is None else self._slab.row(slot)

    # -- query ---------------------------------------------------------------

    def search(
        self,
        query: np.ndarray,
        k: int,
        accept: Callable[[str], bool] | None = None,
    ) -> list[tuple[str, float]]:
        if not self._ids:
            return []
        q = prepare(query, self._metric)
        if self._centroids is not None and self._probes is None:
            return self._search_bounded(q, k, accept)
        candidates = list(self._unassigned)
        if self._centroids is not None:
            centroid_dists = distances(q, self._centroids, self._metric)
            nearest = np.argsort(centroid_dists, kind="stable")[: self.effective_probes]
            for list_no in nearest.tolist():
                candidates.extend(self._members[list_no])
        if not candidates:
            return []
        dists = distances(q, self._slab.rows(candidates), self._metric)
        return top_k([self._ids[s] for s in candidates], dists, k, accept)

    def _lower_bounds(self, q: np.ndarray) -> np.ndarray:
        """Per-list lower bound on the distance from *q* to any member."""
        assert self._centroids is not None
        if self._metric is DistanceMetric.INNER_PRODUCT:
            return -(self._centroids @ q) - float(np.linalg.norm(q)) * self._radii
        gap = np.maximum(np.linalg.norm(self._centroids - q, axis=1) - self._radii, 0.0)
        if self._metric is DistanceMetric.COSINE:
            # 1 - a.b >= |a - b|^2 / 2 when both norms are at most one.
            return gap * gap / 2.0
        return gap

    def _search_bounded(
        self,
        q: np.ndarray,
        k: int,
        accept: Callable[[str], bool] | None,
    ) -> list[tuple[str, float]]:
        bounds = self._lower_bounds(q)
        best: list[tuple[str, float]] = []
        order = np.argsort(bounds, kind="stable").tolist()
        buckets = [self._unassigned] + [self._members[list_no] for list_no in order]
        bucket_bounds = [-math.inf] + [float(bounds[list_no]) for list_no in order]
        for bucket, bound in zip(buckets, bucket_bounds):
            if len(best) == k and bound - _BOUND_SLACK > best[-1][1]:
                break
            if not bucket:
                continue
            dists = distances(q, self._slab.rows(bucket), self._metric)
            found = top_k([self._ids[s] for s in bucket], dists, k, accept)
            if found:
                merged_ids = [doc_id for doc_id, _ in best] + [doc_id for doc_id, _ in found]
                merged = np.array([d for _, d in best] + [d for _, d in found])
                best = top_k(merged_ids, merged, k)
        return best

    # -- build / copy / persistence -----------------------------------------

    @classmethod
    def build(
        cls,
        dimension: int,
        metric: DistanceMetric,
        ids: Sequence[str],
        matrix: np.ndarray,
        params: Mapping[str, Any] | None = None,
        cancel_event: threading.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> IVFFlatIndex:
        index = cls(dimension, metric, **dict(params or {}))
        if not len(ids):
            return index
        prepared = prepare_matrix(np.asarray(matrix, dtype=np.float64), metric)
        index.train(prepared, cancel_event)
        if progress is not None:
            progress(0.5)
        for position, doc_id in enumerate(ids):
            if cancel_event is not None and position % 1024 == 0 and cancel_event.is_set():
                raise BuildCancelled()
            index._add_prepared(doc_id, prepared[position])
        if progress is not None:
            progress(1.0)
        return index

    def copy(self) -> IVFFlatIndex:
        clone = IVFFlatIndex(self._dimension, self._metric, **self.params())
        clone._slab = self._slab.copy()
        clone._ids = list(self._ids)
        clone._slots = dict(self._slots)
        # Centroids are never mutated after training, so they are shared.
        clone._centroids = self._centroids
        clone._members = [list(members) for members in self._members]
        clone._radii = self._radii.copy()
        clone._assign = list(self._assign)
        clone._unassigned = list(self._unassigned)
        return clone

    def export_state(self) -> dict[str, Any]:
        return {
            "state": {
                "trained": self.trained,
                "centroids": None if self._centroids is None else self._centroids.tolist(),
            },
            "nodes": [
                {"id": doc_id, "list": self._assign[slot]} for slot, doc_id in enumerate(self._ids)
            ],
        }

    @classmethod
    def from_state(
        cls,
        dimension: int,
        metric: DistanceMetric,
        params: Mapping[str, Any],
        payload: Mapping[str, Any],
        vectors: Mapping[str, np.ndarray],
    ) -> IVFFlatIndex:
        index = cls(dimension, metric, **dict(params))
        state = payload.get("state", {})
        centroids = state.get("centroids")
        if state.get("trained") and centroids:
            index._centroids = np.asarray(centroids, dtype=np.float64)
            index._members = [[] for _ in range(index._centroids.shape[0])]
            index._radii = np.zeros(index._centroids.shape[0], dtype=np.float64)
        for node in payload.get("nodes", []):
            vector = vectors.get(node["id"])
            if vector is None:
                raise IndexBuildError(
                    f"Snapshot references unknown document {node['id']!r}",
                    provider_name="ivfflat",
                )
            prepared = prepare(vector, metric)
            slot = index._slab.append(prepared)
            index._ids.append(node["id"])
            index._slots[node["id"]] = slot
            list_no = int(node.get("list", -1))
            if index.trained and not 0 <= list_no < index.list_count:
                list_no = index._nearest_list(prepared)
            elif not index.trained:
                list_no = -1
            index._attach(slot, list_no)
        return index
