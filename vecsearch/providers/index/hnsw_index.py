"""Hierarchical Navigable Small World graph index.

Each node is assigned a top layer drawn from an exponential distribution
(``floor(-ln(U) * mL)`` with ``mL = 1 / ln(M)``) and linked to its nearest
neighbours on every layer up to that one.  Layer 0 allows ``2 * M``
links per node; upper layers allow ``M``.  Neighbour lists are chosen
with the diversity heuristic: a candidate is kept only if it is closer to
the new node than to every neighbour already kept, then the list is
topped up with the closest pruned candidates.

Searching greedily descends from the entry point through the upper layers
with a beam of one, then runs a best-first beam search of width
``max(ef_search, k)`` on layer 0.

Deleted nodes stay in the graph as routing nodes so connectivity is
preserved; they are never returned.  A filtered search keeps exploring
through rejected nodes, so restrictive filters degrade gracefully toward
an exhaustive walk instead of returning too few results.

The random layer draws come from a seeded generator owned by the index,
so two builds over the same insert sequence produce the same graph.
"""

from __future__ import annotations

import heapq
import math
import random
from collections.abc import Callable, Mapping
from typing import Any

import numpy as np

from vecsearch.interfaces.ann_index import IAnnIndex
from vecsearch.models.index import DistanceMetric, IndexKind
from vecsearch.providers.index.vector_slab import VectorSlab
from vecsearch.utils.distance import distances, prepare
from vecsearch.utils.errors import IndexBuildError, InvalidArgumentError

# (distance, slot) pairs; slots are positions in the vector slab.
_Scored = tuple[float, int]


class HNSWIndex(IAnnIndex):
    """Multi-layer proximity graph with tombstoned deletes."""

    kind = IndexKind.HNSW

    def __init__(
        self,
        dimension: int,
        metric: DistanceMetric,
        m: int = 16,
        ef_construction: int = 64,
        ef_search: int = 40,
        seed: int = 0,
    ) -> None:
        super().__init__(dimension, metric)
        if m < 2:
            raise InvalidArgumentError(f"m must be >= 2, got {m}")
        if ef_construction < 1 or ef_search < 1:
            raise InvalidArgumentError("ef_construction and ef_search must be >= 1")
        self._m = m
        self._m0 = 2 * m
        self._ml = 1.0 / math.log(m)
        self._ef_construction = ef_construction
        self._ef_search = ef_search
        self._seed = seed
        self._rng = random.Random(seed)

        self._slab = VectorSlab(dimension)
        self._ids: list[str] = []
        self._slots: dict[str, int] = {}
        self._levels: list[int] = []
        # _links[slot][layer] -> neighbour slots
        self._links: list[list[list[int]]] = []
        self._deleted: set[int] = set()
        self._entry: int | None = None
        self._max_level = -1

    # -- introspection -------------------------------------------------------

    def __len__(self) -> int:
        return len(self._slots)

    def ids(self) -> list[str]:
        return list(self._slots)

    @property
    def tombstone_count(self) -> int:
        return len(self._deleted)

    @property
    def ef_search(self) -> int:
        return self._ef_search

    def params(self) -> dict[str, Any]:
        return {
            "m": self._m,
            "ef_construction": self._ef_construction,
            "ef_search": self._ef_search,
            "seed": self._seed,
        }

    def describe(self) -> dict[str, Any]:
        return {
            "max_level": self._max_level,
            "nodes": len(self._ids),
            "deleted_nodes": len(self._deleted),
        }

    def vector(self, doc_id: str) -> np.ndarray | None:
        slot = self._slots.get(doc_id)
        return None if slot is None else self._slab.row(slot)

    # -- graph primitives ----------------------------------------------------

    def _distances_to(self, query: np.ndarray, slots: list[int]) -> np.ndarray:
        return distances(query, self._slab.rows(slots), self._metric)

    def _draw_level(self) -> int:
        return int(-math.log(1.0 - self._rng.random()) * self._ml)

    def _search_layer(
        self,
        query: np.ndarray,
        entry_points: list[_Scored],
        ef: int,
        layer: int,
        accept: Callable[[int], bool] | None = None,
    ) -> list[_Scored]:
        """Best-first beam search on one layer.

        Returns up to *ef* accepted ``(distance, slot)`` pairs, nearest first.
        Rejected nodes are still expanded.
        """
        visited = {slot for _, slot in entry_points}
        candidates = list(entry_points)
        heapq.heapify(candidates)
        found: list[tuple[float, int]] = []  # max-heap via negated distance
        for dist, slot in entry_points:
            if accept is None or accept(slot):
                heapq.heappush(found, (-dist, slot))
        while len(found) > ef:
            heapq.heappop(found)

        while candidates:
            dist, slot = heapq.heappop(candidates)
            if len(found) >= ef and dist > -found[0][0]:
                break
            fresh = [n for n in self._links[slot][layer] if n not in visited]
            if not fresh:
                continue
            visited.update(fresh)
            for neighbour, n_dist in zip(fresh, self._distances_to(query, fresh).tolist()):
                if len(found) < ef or n_dist < -found[0][0]:
                    heapq.heappush(candidates, (n_dist, neighbour))
                    if accept is None or accept(neighbour):
                        heapq.heappush(found, (-n_dist, neighbour))
                        if len(found) > ef:
                            heapq.heappop(found)
        return sorted((-neg, slot) for neg, slot in found)

    def _select_neighbours(self, candidates: list[_Scored], limit: int) -> list[int]:
        """Diversity heuristic with pruned-connection top-up."""
        if len(candidates) <= limit:
            return [slot for _, slot in candidates]
        kept: list[_Scored] = []
        pruned: list[_Scored] = []
        for dist, slot in sorted(candidates):
            if len(kept) >= limit:
                break
            if kept:
                to_kept = distances(
                    self._slab.row(slot), self._slab.rows([s for _, s in kept]), self._metric
                )
                if not bool(np.all(dist < to_kept)):
                    pruned.append((dist, slot))
                    continue
            kept.append((dist, slot))
        for item in pruned:
            if len(kept) >= limit:
                break
            kept.append(item)
        return [slot for _, slot in kept]

    def _link(self, slot: int, neighbours: list[int], layer: int) -> None:
        self._links[slot][layer] = list(neighbours)
        limit = self._m0 if layer == 0 else self._m
        for neighbour in neighbours:
            links = self._links[neighbour][layer]
            links.append(slot)
            if len(links) > limit:
                base = self._slab.row(neighbour)
                scored = list(zip(self._distances_to(base, links).tolist(), links))
                self._links[neighbour][layer] = self._select_neighbours(scored, limit)

    # -- mutation ------------------------------------------------------------

    def insert(self, doc_id: str, vector: np.ndarray) -> None:
        if doc_id in self._slots:
            self.remove(doc_id)
        prepared = prepare(vector, self._metric)
        level = self._draw_level()
        slot = self._slab.append(prepared)
        self._ids.append(doc_id)
        self._slots[doc_id] = slot
        self._levels.append(level)
        self._links.append([[] for _ in range(level + 1)])

        if self._entry is None:
            self._entry = slot
            self._max_level = level
            return

        entry = [(float(self._distances_to(prepared, [self._entry])[0]), self._entry)]
        for layer in range(self._max_level, level, -1):
            entry = self._search_layer(prepared, entry, 1, layer)[:1]
        for layer in range(min(level, self._max_level), -1, -1):
            found = self._search_layer(prepared, entry, self._ef_construction, layer)
            limit = self._m0 if layer == 0 else self._m
            self._link(slot, self._select_neighbours(found, limit), layer)
            entry = found

        if level > self._max_level:
            self._entry = slot
            self._max_level = level

    def remove(self, doc_id: str) -> bool:
        slot = self._slots.pop(doc_id, None)
        if slot is None:
            return False
        self._deleted.add(slot)
        return True

    # -- query ---------------------------------------------------------------

    def search(
        self,
        query: np.ndarray,
        k: int,
        accept: Callable[[str], bool] | None = None,
    ) -> list[tuple[str, float]]:
        if self._entry is None or not self._slots or k < 1:
            return []
        q = prepare(query, self._metric)
        entry = [(float(self._distances_to(q, [self._entry])[0]), self._entry)]
        for layer in range(self._max_level, 0, -1):
            entry = self._search_layer(q, entry, 1, layer)[:1]

        deleted = self._deleted
        ids = self._ids
        if accept is None:

            def slot_ok(slot: int) -> bool:
                return slot not in deleted

        else:

            def slot_ok(slot: int) -> bool:
                return slot not in deleted and accept(ids[slot])

        found = self._search_layer(q, entry, max(self._ef_search, k), 0, slot_ok)
        ranked = sorted(((dist, ids[slot]) for dist, slot in found), key=lambda p: (p[0], p[1]))
        return [(doc_id, float(dist)) for dist, doc_id in ranked[:k]]

    # -- copy / persistence --------------------------------------------------

    def copy(self) -> HNSWIndex:
        clone = HNSWIndex(self._dimension, self._metric, **self.params())
        clone._rng.setstate(self._rng.getstate())
        clone._slab = self._slab.copy()
        clone._ids = list(self._ids)
        clone._slots = dict(self._slots)
        clone._levels = list(self._levels)
        clone._links = [[list(layer) for layer in node] for node in self._links]
        clone._deleted = set(self._deleted)
        clone._entry = self._entry
        clone._max_level = self._max_level
        return clone

    def export_state(self) -> dict[str, Any]:
        """Serialise live nodes only.

        Tombstoned nodes are dropped (their vectors are no longer in the
        store) along with every link pointing at them.  If the entry point
        was tombstoned, the live node with the highest layer takes over.
        """
        live = [slot for slot in range(len(self._ids)) if slot not in self._deleted]
        entry = self._entry
        if entry is not None and entry in self._deleted:
            entry = max(live, key=lambda s: (self._levels[s], -s)) if live else None
        nodes = []
        for slot in live:
            nodes.append(
                {
                    "id": self._ids[slot],
                    "level": self._levels[slot],
                    "neighbors": [
                        [self._ids[n] for n in layer if n not in self._deleted]
                        for layer in self._links[slot]
                    ],
                }
            )
        return {
            "state": {
                "entry": None if entry is None else self._ids[entry],
                "max_level": -1 if entry is None else self._levels[entry],
                "rng_state": _encode_rng_state(self._rng.getstate()),
            },
            "nodes": nodes,
        }

    @classmethod
    def from_state(
        cls,
        dimension: int,
        metric: DistanceMetric,
        params: Mapping[str, Any],
        payload: Mapping[str, Any],
        vectors: Mapping[str, np.ndarray],
    ) -> HNSWIndex:
        index = cls(dimension, metric, **dict(params))
        nodes = payload.get("nodes", [])
        for node in nodes:
            vector = vectors.get(node["id"])
            if vector is None:
                raise IndexBuildError(
                    f"Snapshot references unknown document {node['id']!r}",
                    provider_name="hnsw",
                )
            slot = index._slab.append(prepare(vector, metric))
            index._ids.append(node["id"])
            index._slots[node["id"]] = slot
            index._levels.append(int(node["level"]))
        for node in nodes:
            index._links.append(
                [
                    [index._slots[n] for n in layer if n in index._slots]
                    for layer in node["neighbors"]
                ]
            )
        state = payload.get("state", {})
        entry_id = state.get("entry")
        if entry_id is not None:
            if entry_id not in index._slots:
                raise IndexBuildError(
                    f"Snapshot entry point {entry_id!r} is not a node", provider_name="hnsw"
                )
            index._entry = index._slots[entry_id]
            index._max_level = index._levels[index._entry]
        if state.get("rng_state") is not None:
            index._rng.setstate(_decode_rng_state(state["rng_state"]))
        return index


def _encode_rng_state(state: tuple[Any, ...]) -> list[Any]:
    version, internal, gauss = state
    return [version, list(internal), gauss]


def _decode_rng_state(encoded: list[Any]) -> tuple[Any, ...]:
    version, internal, gauss = encoded
    return (version, tuple(internal), gauss)
