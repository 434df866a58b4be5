"""Abstract base class for document persistence backends.

The :class:`~vecsearch.services.vector_store.VectorStore` keeps every
document in memory and writes through to a backend so the store survives
restarts.  A write that fails in the backend is never applied in memory.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from vecsearch.models.document import Document


# Concrete implementation: SQLiteDocumentBackend (vecsearch/providers/storage/)
class IDocumentBackend(ABC):
    """Contract for durable document storage."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables / open connections.  Safe to call more than once."""

    @abstractmethod
    async def upsert(self, documents: list[Document]) -> None:
        """Insert or replace *documents* atomically.

        Raises
        ------
        vecsearch.utils.errors.StorageError
            If the write fails; no document of the batch is persisted.
        """

    @abstractmethod
    async def delete(self, doc_ids: list[str]) -> int:
        """Delete documents by id; returns the number actually removed."""

    @abstractmethod
    async def load_all(self) -> list[Document]:
        """Return every persisted document, in insertion order."""

    @abstractmethod
    async def count(self) -> int:
        """Number of persisted documents."""

    @abstractmethod
    async def close(self) -> None:
        """Release any held resources."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Short backend identifier used in logs and errors, e.g. ``"sqlite"``."""
