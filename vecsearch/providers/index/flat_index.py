"""Exact brute-force index.

Every query computes the distance to every stored vector in one vectorised
numpy call.  Recall is 1.0 by construction, which makes this structure the
ground truth for recall estimation and the default for small stores.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

import numpy as np

from vecsearch.interfaces.ann_index import IAnnIndex
from vecsearch.models.index import DistanceMetric, IndexKind
from vecsearch.providers.index.vector_slab import VectorSlab
from vecsearch.utils.distance import distances, prepare, top_k
from vecsearch.utils.errors import IndexBuildError


class FlatIndex(IAnnIndex):
    """Brute-force scan over a dense vector slab."""

    kind = IndexKind.FLAT

    def __init__(self, dimension: int, metric: DistanceMetric) -> None:
        super().__init__(dimension, metric)
        self._slab = VectorSlab(dimension)
        self._ids: list[str] = []
        self._slots: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._ids)

    def ids(self) -> list[str]:
        return list(self._ids)

    def params(self) -> dict[str, Any]:
        return {}

    def insert(self, doc_id: str, vector: np.ndarray) -> None:
        prepared = prepare(vector, self._metric)
        slot = self._slots.get(doc_id)
        if slot is not None:
            self._slab.set(slot, prepared)
            return
        self._slots[doc_id] = self._slab.append(prepared)
        self._ids.append(doc_id)

    def remove(self, doc_id: str) -> bool:
        slot = self._slots.pop(doc_id, None)
        if slot is None:
            return False
        last = len(self._ids) - 1
        if slot != last:
            # Swap the last row into the hole to keep the slab dense.
            moved = self._ids[last]
            self._slab.move(last, slot)
            self._ids[slot] = moved
            self._slots[moved] = slot
        self._ids.pop()
        self._slab.pop()
        return True

    def vector(self, doc_id: str) -> np.ndarray | None:
        slot = self._slots.get(doc_id)
        return None if slot is None else self._slab.row(slot)

    def search(
        self,
        query: np.ndarray,
        k: int,
        accept: Callable[[str], bool] | None = None,
    ) -> list[tuple[str, float]]:
        if not self._ids:
            return []
        dists = distances(prepare(query, self._metric), self._slab.view(), self._metric)
        return top_k(self._ids, dists, k, accept)

    def copy(self) -> FlatIndex:
        clone = FlatIndex(self._dimension, self._metric)
        clone._slab = self._slab.copy()
        clone._ids = list(self._ids)
        clone._slots = dict(self._slots)
        return clone

    def export_state(self) -> dict[str, Any]:
        return {"state": {}, "nodes": [{"id": doc_id} for doc_id in self._ids]}

    @classmethod
    def from_state(
        cls,
        dimension: int,
        metric: DistanceMetric,
        params: Mapping[str, Any],
        payload: Mapping[str, Any],
        vectors: Mapping[str, np.ndarray],
    ) -> FlatIndex:
        index = cls(dimension, metric)
        for node in payload.get("nodes", []):
            vector = vectors.get(node["id"])
            if vector is None:
                raise IndexBuildError(
                    f"Snapshot references unknown document {node['id']!r}",
                    provider_name="flat",
                )
            index.insert(node["id"], vector)
        return index
