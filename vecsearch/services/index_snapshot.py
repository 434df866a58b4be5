"""Immutable, versioned views of the searchable index.

An :class:`IndexSnapshot` combines

* ``structure``  -- the ANN structure built at some point in the past,
* ``delta``      -- vectors inserted or re-embedded since that build, searched
                    exactly, and
* ``tombstones`` -- structure entries that were deleted or superseded since
                    that build.

Every ``with_*`` method returns a *new* snapshot with a bumped version; the
receiver is never modified, and the structure object it references is
never mutated once it appears in a snapshot.  Queries therefore see a
single consistent version for their whole duration no matter what writers
publish meanwhile.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from types import MappingProxyType

import numpy as np

from vecsearch.interfaces.ann_index import IAnnIndex
from vecsearch.models.index import DistanceMetric, IndexKind
from vecsearch.utils.distance import distances, merge_ranked, prepare, top_k


@dataclass(frozen=True)
class IndexSnapshot:
    version: int
    structure: IAnnIndex
    built_at: datetime
    built_from: int = 0
    delta: Mapping[str, np.ndarray] = field(default_factory=lambda: MappingProxyType({}))
    tombstones: frozenset[str] = frozenset()
    _delta_cache: dict = field(default_factory=dict, compare=False, repr=False)

    @property
    def kind(self) -> IndexKind:
        return self.structure.kind

    @property
    def metric(self) -> DistanceMetric:
        return self.structure.metric

    @property
    def dimension(self) -> int:
        return self.structure.dimension

    @property
    def live_count(self) -> int:
        return len(self.structure) - len(self.tombstones) + len(self.delta)

    def __contains__(self, doc_id: object) -> bool:
        if doc_id in self.delta:
            return True
        return doc_id in self.structure and doc_id not in self.tombstones

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    def with_upsert(self, doc_id: str, vector: np.ndarray) -> IndexSnapshot:
        """Snapshot in which *doc_id* resolves to *vector*.

        *vector* is raw (unprepared).  If the structure already holds an
        identical vector for the id, only any stale delta entry is dropped.
        """
        prepared = prepare(vector, self.metric)
        in_structure = doc_id in self.structure
        if (
            in_structure
            and doc_id not in self.tombstones
            and np.array_equal(self.structure.vector(doc_id), prepared)
        ):
            if doc_id not in self.delta:
                return self
            delta = {k: v for k, v in self.delta.items() if k != doc_id}
            return self._derive(delta, self.tombstones)

        delta = dict(self.delta)
        delta[doc_id] = prepared
        tombstones = self.tombstones | {doc_id} if in_structure else self.tombstones
        return self._derive(delta, tombstones)

    def with_delete(self, doc_id: str) -> IndexSnapshot:
        """Snapshot in which *doc_id* is absent.  Returns ``self`` if it already is."""
        in_delta = doc_id in self.delta
        masks = doc_id in self.structure and doc_id not in self.tombstones
        if not in_delta and not masks:
            return self
        delta = {k: v for k, v in self.delta.items() if k != doc_id} if in_delta else self.delta
        tombstones = self.tombstones | {doc_id} if masks else self.tombstones
        return self._derive(dict(delta), tombstones)

    def _derive(self, delta: dict[str, np.ndarray], tombstones: frozenset[str]) -> IndexSnapshot:
        return replace(
            self,
            version=self.version + 1,
            delta=MappingProxyType(delta),
            tombstones=tombstones,
            _delta_cache={},
        )

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def _delta_matrix(self) -> tuple[list[str], np.ndarray]:
        cached = self._delta_cache.get("matrix")
        if cached is None:
            ids = list(self.delta)
            matrix = (
                np.stack([self.delta[doc_id] for doc_id in ids])
                if ids
                else np.empty((0, self.dimension), dtype=np.float64)
            )
            cached = (ids, matrix)
            self._delta_cache["matrix"] = cached
        return cached

    def vectors_for(self, doc_ids: list[str]) -> tuple[list[str], np.ndarray]:
        """Prepared vectors this snapshot holds for *doc_ids*; absent ids are skipped."""
        present: list[str] = []
        rows: list[np.ndarray] = []
        for doc_id in doc_ids:
            if doc_id in self.delta:
                rows.append(self.delta[doc_id])
            elif doc_id in self:
                rows.append(self.structure.vector(doc_id))
            else:
                continue
            present.append(doc_id)
        if not rows:
            return [], np.empty((0, self.dimension), dtype=np.float64)
        return present, np.stack(rows)

    def search(
        self,
        query: np.ndarray,
        k: int,
        accept: Callable[[str], bool] | None = None,
    ) -> list[tuple[str, float]]:
        """Top-*k* ``(id, distance)`` pairs across structure and delta."""
        tombstones = self.tombstones
        structure_accept = accept
        if tombstones:
            if accept is None:

                def structure_accept(doc_id: str) -> bool:
                    return doc_id not in tombstones

            else:

                def structure_accept(doc_id: str) -> bool:
                    return doc_id not in tombstones and accept(doc_id)

        from_structure = self.structure.search(query, k, structure_accept)
        if not self.delta:
            return from_structure
        ids, matrix = self._delta_matrix()
        dists = distances(prepare(query, self.metric), matrix, self.metric)
        from_delta = top_k(ids, dists, k, accept)
        return merge_ranked(from_structure, from_delta, k=k)
