"""Growable contiguous storage for prepared vectors, addressed by slot number."""

from __future__ import annotations

import numpy as np


class VectorSlab:
    """Row-major ``float64`` matrix that doubles its capacity when full.

    Rows ``[0, len(slab))`` are in use.  Index structures map document ids
    to slots and keep the matrix dense so a single vectorised distance call
    covers every candidate.
    """

    def __init__(self, dimension: int, capacity: int = 64) -> None:
        self._data = np.zeros((max(1, capacity), dimension), dtype=np.float64)
        self._size = 0

    def __len__(self) -> int:
        return self._size

    @property
    def dimension(self) -> int:
        return int(self._data.shape[1])

    def append(self, vector: np.ndarray) -> int:
        if self._size == self._data.shape[0]:
            grown = np.zeros((self._data.shape[0] * 2, self._data.shape[1]), dtype=np.float64)
            grown[: self._size] = self._data[: self._size]
            self._data = grown
        self._data[self._size] = vector
        self._size += 1
        return self._size - 1

    def set(self, slot: int, vector: np.ndarray) -> None:
        self._data[slot] = vector

    def move(self, src: int, dst: int) -> None:
        self._data[dst] = self._data[src]

    def pop(self) -> None:
        self._size -= 1

    def row(self, slot: int) -> np.ndarray:
        return self._data[slot]

    def rows(self, slots: list[int]) -> np.ndarray:
        return self._data[slots]

    def view(self) -> np.ndarray:
        return self._data[: self._size]

    def copy(self) -> VectorSlab:
        clone = VectorSlab.__new__(VectorSlab)
        clone._data = self._data.copy()
        clone._size = self._size
        return clone
