"""Distance metrics and vector helpers shared by every index structure.

All metrics follow the *smaller is closer* convention:

* ``l2``            -- Euclidean distance.
* ``cosine``        -- ``1 - cosine_similarity``.  Vectors are normalised once
                       at insert time so search reduces to a dot product.  A
                       zero vector has no direction; its distance to anything
                       is ``1.0``.
* ``inner_product`` -- negated dot product.

Vectors are held as ``float64`` numpy arrays.  Ties are always broken by
ascending document id so results are deterministic for a given snapshot.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from typing import Any

import numpy as np

from vecsearch.models.index import DistanceMetric
from vecsearch.utils.errors import DimensionMismatchError, InvalidArgumentError


def coerce_embedding(values: Any, dimension: int) -> np.ndarray:
    """Validate *values* as an embedding of *dimension* and return a read-only array.

    Raises
    ------
    DimensionMismatchError
        If the vector is not one-dimensional or has the wrong length.
    InvalidArgumentError
        If any component is NaN or infinite, or cannot be read as a float.
    """
    try:
        vector = np.array(values, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise InvalidArgumentError(f"Embedding is not a numeric vector: {exc}") from exc

    if vector.ndim != 1:
        raise DimensionMismatchError(expected=dimension, actual=int(vector.size))
    if vector.shape[0] != dimension:
        raise DimensionMismatchError(expected=dimension, actual=int(vector.shape[0]))
    if not np.all(np.isfinite(vector)):
        raise InvalidArgumentError("Embedding contains NaN or infinite components")

    vector.flags.writeable = False
    return vector


def prepare(vector: np.ndarray, metric: DistanceMetric) -> np.ndarray:
    """Return *vector* in the form an index stores for *metric*.

    Cosine vectors are scaled to unit length; zero vectors stay zero.
    Other metrics are returned unchanged.
    """
    if metric is not DistanceMetric.COSINE:
        return vector
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        return vector
    return vector / norm


def prepare_matrix(matrix: np.ndarray, metric: DistanceMetric) -> np.ndarray:
    """Row-wise :func:`prepare` for a 2-D matrix."""
    if metric is not DistanceMetric.COSINE or matrix.size == 0:
        return matrix
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0.0] = 1.0
    return matrix / norms


def distances(query: np.ndarray, matrix: np.ndarray, metric: DistanceMetric) -> np.ndarray:
    """Distances from a prepared *query* to every row of a prepared *matrix*."""
    if matrix.shape[0] == 0:
        return np.empty(0, dtype=np.float64)
    if metric is DistanceMetric.L2:
        diff = matrix - query
        return np.sqrt(np.einsum("ij,ij->i", diff, diff))
    dots = matrix @ query
    if metric is DistanceMetric.COSINE:
        return np.clip(1.0 - dots, 0.0, 2.0)
    return -dots


def distance(a: np.ndarray, b: np.ndarray, metric: DistanceMetric) -> float:
    """Distance between two raw (unprepared) vectors."""
    if metric is DistanceMetric.L2:
        return float(np.linalg.norm(a - b))
    if metric is DistanceMetric.COSINE:
        norm = float(np.linalg.norm(a) * np.linalg.norm(b))
        if norm == 0.0:
            return 1.0
        return float(min(2.0, max(0.0, 1.0 - float(a @ b) / norm)))
    return -float(a @ b)


def top_k(
    ids: Sequence[str],
    dists: np.ndarray,
    k: int,
    accept: Callable[[str], bool] | None = None,
) -> list[tuple[str, float]]:
    """Select the *k* nearest ``(id, distance)`` pairs ordered by ``(distance, id)``.

    When *accept* is given, ids it rejects are skipped and the selection
    widens until *k* accepted pairs are found or the candidates run out.
    """
    n = len(ids)
    if n == 0 or k <= 0:
        return []

    if accept is None:
        order = _order(ids, dists, min(k, n))
        return [(ids[i], float(dists[i])) for i in order[:k]]

    selected: list[tuple[str, float]] = []
    window = min(n, max(k * 2, 16))
    while True:
        order = _order(ids, dists, window)
        selected = [(ids[i], float(dists[i])) for i in order if accept(ids[i])]
        if len(selected) >= k or window >= n:
            return selected[:k]
        window = min(n, window * 4)


def _order(ids: Sequence[str], dists: np.ndarray, window: int) -> list[int]:
    """Indices of the *window* smallest distances, sorted by ``(distance, id)``.

    Every candidate tied with the last distance in the window is included so
    that id tie-breaking is exact across the cut.
    """
    n = dists.shape[0]
    if window >= n:
        candidates = np.arange(n)
    else:
        kth = np.partition(dists, window - 1)[window - 1]
        candidates = np.nonzero(dists <= kth)[0]
    return sorted(candidates.tolist(), key=lambda i: (float(dists[i]), ids[i]))


def merge_ranked(
    *ranked: Sequence[tuple[str, float]], k: int | None = None
) -> list[tuple[str, float]]:
    """Merge ranked ``(id, distance)`` lists keeping each id's minimum distance."""
    best: dict[str, float] = {}
    for pairs in ranked:
        for doc_id, dist in pairs:
            current = best.get(doc_id)
            if current is None or dist < current:
                best[doc_id] = dist
    merged = sorted(best.items(), key=lambda item: (item[1], item[0]))
    return merged if k is None else merged[:k]


def check_threshold(threshold: float | None) -> None:
    """Reject NaN thresholds, which would silently match nothing."""
    if threshold is not None and math.isnan(threshold):
        raise InvalidArgumentError("threshold must be a number, got NaN")
