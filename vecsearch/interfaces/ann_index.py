"""Abstract base class for approximate nearest-neighbour index structures.

An ANN structure maps document ids to vectors and answers k-nearest
queries under the metric it was created for.  Structures are *mutable*
objects, but the :class:`~vecsearch.services.index_manager.IndexManager`
never mutates one that has been published: compaction works on a
:meth:`IAnnIndex.copy` and publishes the copy in a fresh snapshot.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from typing import Any, ClassVar

import numpy as np

from vecsearch.models.index import DistanceMetric, IndexKind

# Called with the fraction of build work done, in [0, 1].
ProgressCallback = Callable[[float], None]


# Concrete implementations (vecsearch/providers/index/):
#   FlatIndex     -- exact brute-force scan
#   IVFFlatIndex  -- k-means inverted lists, probes nearest lists
#   HNSWIndex     -- hierarchical navigable small-world graph
class IAnnIndex(ABC):
    """Contract for vector index structures."""

    kind: ClassVar[IndexKind]

    def __init__(self, dimension: int, metric: DistanceMetric) -> None:
        self._dimension = dimension
        self._metric = metric

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def metric(self) -> DistanceMetric:
        return self._metric

    @abstractmethod
    def insert(self, doc_id: str, vector: np.ndarray) -> None:
        """Add *vector* under *doc_id*, replacing any existing entry for that id."""

    @abstractmethod
    def remove(self, doc_id: str) -> bool:
        """Remove *doc_id*.  Returns ``False`` if it was not present."""

    @abstractmethod
    def search(
        self,
        query: np.ndarray,
        k: int,
        accept: Callable[[str], bool] | None = None,
    ) -> list[tuple[str, float]]:
        """Return up to *k* ``(id, distance)`` pairs ordered by ``(distance, id)``.

        Parameters
        ----------
        query:
            Raw (unprepared) query vector of length :attr:`dimension`.
        k:
            Maximum number of results.
        accept:
            Optional id filter; rejected ids are skipped while the search
            keeps exploring, so the result is not simply a truncated list.
        """

    @abstractmethod
    def vector(self, doc_id: str) -> np.ndarray | None:
        """Return the stored (prepared) vector for *doc_id*, or ``None``."""

    @abstractmethod
    def copy(self) -> IAnnIndex:
        """Return an independent deep copy that can be mutated freely."""

    @abstractmethod
    def ids(self) -> list[str]:
        """Ids of the live entries."""

    @abstractmethod
    def __len__(self) -> int:
        """Number of live entries."""

    def __contains__(self, doc_id: object) -> bool:
        return isinstance(doc_id, str) and self.vector(doc_id) is not None

    @property
    def tombstone_count(self) -> int:
        """Entries kept internally after removal (graph routing nodes)."""
        return 0

    @abstractmethod
    def params(self) -> dict[str, Any]:
        """Construction parameters, as persisted in snapshot files."""

    def describe(self) -> dict[str, Any]:
        """Structure-specific health figures reported in index stats."""
        return {}

    # -- build / persistence -------------------------------------------------

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
    ) -> IAnnIndex:
        """Build a structure from scratch over *ids* / *matrix* (one row per id).

        The default inserts rows one at a time, checking *cancel_event*
        between rows.  Structures with a training phase override this.
        """
        index = cls(dimension, metric, **dict(params or {}))
        total = len(ids)
        for position, doc_id in enumerate(ids):
            if cancel_event is not None and cancel_event.is_set():
                raise BuildCancelled()
            index.insert(doc_id, matrix[position])
            if progress is not None and (position + 1) % 256 == 0:
                progress((position + 1) / total)
        if progress is not None:
            progress(1.0)
        return index

    @abstractmethod
    def export_state(self) -> dict[str, Any]:
        """Serialise to ``{"state": ..., "nodes": [...]}`` (vectors excluded)."""

    @classmethod
    @abstractmethod
    def from_state(
        cls,
        dimension: int,
        metric: DistanceMetric,
        params: Mapping[str, Any],
        payload: Mapping[str, Any],
        vectors: Mapping[str, np.ndarray],
    ) -> IAnnIndex:
        """Rebuild a structure from :meth:`export_state` output plus raw vectors."""


class BuildCancelled(Exception):  # noqa: N818
    """Raised inside a build when its cancel event is set."""
