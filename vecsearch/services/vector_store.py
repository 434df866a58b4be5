"""Authoritative document store.

The :class:`VectorStore` owns every :class:`~vecsearch.models.document.Document`.
Documents live in memory (a dict plus a parallel dict of read-only numpy
vectors) and are optionally written through to an
:class:`~vecsearch.interfaces.document_backend.IDocumentBackend`.

Concurrency model
-----------------
* Mutations (``insert`` / ``update`` / ``upsert`` / ``delete``) are
  serialised by an ``asyncio.Lock``.  The backend write happens *before*
  the in-memory commit, so a failed write leaves the store untouched.
* The in-memory swap itself happens under a ``threading.Lock`` so readers
  on worker threads (index rebuilds via ``asyncio.to_thread``) always see a
  consistent dict.
* Readers (``get``, ``scan``, ``export_vectors``) never wait on the write
  lock.

After each committed mutation every registered listener receives a
:class:`~vecsearch.models.document.StoreChange`.  The index manager is the
main listener; it mirrors inserts, embedding updates and deletes into its
delta buffer.  Listeners run inside the write lock, so they observe
mutations in commit order.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable, Iterator
from typing import Any

import numpy as np
import structlog

from vecsearch.interfaces.document_backend import IDocumentBackend
from vecsearch.models.document import (
    ChangeOp,
    Document,
    DocumentPatch,
    StoreChange,
    StoreStats,
    utc_now,
)
from vecsearch.models.filters import Predicate, coerce_predicate
from vecsearch.utils.distance import coerce_embedding
from vecsearch.utils.errors import (
    DuplicateIdError,
    InvalidArgumentError,
    NotFoundError,
    StorageError,
    VecSearchError,
)

logger = structlog.get_logger(logger_name=__name__)

StoreListener = Callable[[StoreChange], None]


class VectorStore:
    """In-memory document store with optional write-through persistence.

    Parameters
    ----------
    dimension:
        Fixed embedding length for every document in this store.
    backend:
        Optional persistence backend.  When set, every mutation is written
        through before it becomes visible.
    """

    def __init__(self, dimension: int, backend: IDocumentBackend | None = None) -> None:
        if dimension < 1:
            raise InvalidArgumentError(f"dimension must be >= 1, got {dimension}")
        self._dimension = dimension
        self._backend = backend
        self._docs: dict[str, Document] = {}
        self._vectors: dict[str, np.ndarray] = {}
        self._state_lock = threading.Lock()
        self._write_lock = asyncio.Lock()
        self._listeners: list[StoreListener] = []
        self._version = 0

    # ------------------------------------------------------------------
    # Properties / listeners
    # ------------------------------------------------------------------

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def version(self) -> int:
        """Monotonic counter bumped by every committed mutation."""
        return self._version

    @property
    def persistent(self) -> bool:
        return self._backend is not None

    def add_listener(self, listener: StoreListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StoreListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, change: StoreChange) -> None:
        for listener in list(self._listeners):
            listener(change)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._docs)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._docs

    def get(self, doc_id: str) -> Document:
        """Return the document stored under *doc_id*.

        Raises
        ------
        NotFoundError
            If no such document exists.
        """
        doc = self._docs.get(doc_id)
        if doc is None:
            raise NotFoundError(doc_id)
        return doc

    def get_or_none(self, doc_id: str) -> Document | None:
        return self._docs.get(doc_id)

    def get_vector(self, doc_id: str) -> np.ndarray:
        """Return the read-only numpy embedding for *doc_id*."""
        vector = self._vectors.get(doc_id)
        if vector is None:
            raise NotFoundError(doc_id)
        return vector

    def scan(
        self, predicate: Predicate | dict[str, Any] | None = None
    ) -> Iterator[Document]:
        """Lazily yield documents whose metadata satisfies *predicate*.

        The set of documents is fixed when ``scan`` is called; later
        mutations do not affect an iteration in progress.
        """
        matcher = coerce_predicate(predicate)
        with self._state_lock:
            docs = list(self._docs.values())
        if matcher is None:
            return iter(docs)
        return (doc for doc in docs if matcher.matches(doc.metadata))

    def export_vectors(self) -> tuple[list[str], np.ndarray]:
        """Return all ids and a ``(n, dimension)`` matrix of their vectors, row-aligned."""
        with self._state_lock:
            ids = list(self._vectors)
            if not ids:
                return [], np.empty((0, self._dimension), dtype=np.float64)
            matrix = np.stack([self._vectors[doc_id] for doc_id in ids])
        return ids, matrix

    def vectors_for(self, doc_ids: list[str]) -> tuple[list[str], np.ndarray]:
        """Like :meth:`export_vectors` restricted to *doc_ids*; unknown ids are skipped."""
        with self._state_lock:
            present = [doc_id for doc_id in doc_ids if doc_id in self._vectors]
            if not present:
                return [], np.empty((0, self._dimension), dtype=np.float64)
            matrix = np.stack([self._vectors[doc_id] for doc_id in present])
        return present, matrix

    def stats(self) -> StoreStats:
        with self._state_lock:
            keys = sorted({key for doc in self._docs.values() for key in doc.metadata})
            count = len(self._docs)
        return StoreStats(
            document_count=count,
            dimension=self._dimension,
            version=self._version,
            metadata_keys=keys,
            persistent=self.persistent,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _persist(self, documents: list[Document]) -> None:
        if self._backend is None:
            return
        try:
            await self._backend.upsert(documents)
        except VecSearchError:
            raise
        except Exception as exc:
            raise StorageError(
                f"Backend write failed: {exc}", provider_name=self._backend.get_provider_name()
            ) from exc

    async def _unpersist(self, doc_ids: list[str]) -> None:
        if self._backend is None:
            return
        try:
            await self._backend.delete(doc_ids)
        except VecSearchError:
            raise
        except Exception as exc:
            raise StorageError(
                f"Backend delete failed: {exc}", provider_name=self._backend.get_provider_name()
            ) from exc

    def _commit(self, doc: Document, vector: np.ndarray) -> int:
        with self._state_lock:
            self._docs[doc.id] = doc
            self._vectors[doc.id] = vector
            self._version += 1
            return self._version

    async def insert(self, document: Document) -> Document:
        """Add a new document.

        Raises
        ------
        DuplicateIdError
            If a document with the same id already exists.
        DimensionMismatchError
            If the embedding length differs from the store dimension.
        InvalidArgumentError
            If the embedding has non-finite components.
        StorageError
            If the persistence backend rejected the write.
        """
        inserted = await self.insert_many([document])
        return inserted[0]

    async def insert_many(self, documents: list[Document]) -> list[Document]:
        """Insert a batch atomically: either every document is added or none is."""
        if not documents:
            return []
        vectors = [coerce_embedding(doc.embedding, self._dimension) for doc in documents]
        seen: set[str] = set()
        for doc in documents:
            if doc.id in seen:
                raise DuplicateIdError(doc.id)
            seen.add(doc.id)

        async with self._write_lock:
            for doc in documents:
                if doc.id in self._docs:
                    raise DuplicateIdError(doc.id)
            await self._persist(documents)
            for doc, vector in zip(documents, vectors):
                version = self._commit(doc, vector)
                self._notify(
                    StoreChange(op=ChangeOp.INSERT, doc_id=doc.id, embedding=vector, version=version)
                )
        logger.debug("documents_inserted", count=len(documents), version=self._version)
        return documents

    def _apply_patch(self, current: Document, patch: DocumentPatch) -> Document:
        changes: dict[str, Any] = {"updated_at": utc_now()}
        if patch.content is not None:
            changes["content"] = patch.content
        if patch.embedding is not None:
            changes["embedding"] = tuple(patch.embedding)
        if patch.metadata is not None:
            if patch.replace_metadata:
                changes["metadata"] = dict(patch.metadata)
            else:
                changes["metadata"] = {**current.metadata, **patch.metadata}
        return current.model_copy(update=changes)

    async def update(self, doc_id: str, patch: DocumentPatch) -> Document:
        """Apply *patch* to an existing document and return the new version.

        Raises
        ------
        NotFoundError
            If *doc_id* does not exist.
        InvalidArgumentError
            If the patch changes nothing.
        """
        if patch.is_empty():
            raise InvalidArgumentError("Update patch must set content, embedding or metadata")
        vector = (
            coerce_embedding(patch.embedding, self._dimension)
            if patch.embedding is not None
            else None
        )

        async with self._write_lock:
            current = self.get(doc_id)
            updated = self._apply_patch(current, patch)
            await self._persist([updated])
            version = self._commit(updated, vector if vector is not None else self._vectors[doc_id])
            self._notify(
                StoreChange(op=ChangeOp.UPDATE, doc_id=doc_id, embedding=vector, version=version)
            )
        logger.debug("document_updated", doc_id=doc_id, embedding_changed=vector is not None)
        return updated

    async def upsert(self, document: Document) -> Document:
        """Insert *document*, or replace the stored document with the same id.

        A replacement keeps the original ``created_at``.
        """
        vector = coerce_embedding(document.embedding, self._dimension)
        async with self._write_lock:
            current = self._docs.get(document.id)
            if current is not None:
                document = document.model_copy(
                    update={"created_at": current.created_at, "updated_at": utc_now()}
                )
            await self._persist([document])
            version = self._commit(document, vector)
            op = ChangeOp.INSERT if current is None else ChangeOp.UPDATE
            self._notify(
                StoreChange(op=op, doc_id=document.id, embedding=vector, version=version)
            )
        return document

    async def delete(self, doc_id: str) -> bool:
        """Remove *doc_id*.  Returns ``False`` (and changes nothing) if absent."""
        async with self._write_lock:
            if doc_id not in self._docs:
                return False
            await self._unpersist([doc_id])
            with self._state_lock:
                del self._docs[doc_id]
                del self._vectors[doc_id]
                self._version += 1
                version = self._version
            self._notify(StoreChange(op=ChangeOp.DELETE, doc_id=doc_id, version=version))
        logger.debug("document_deleted", doc_id=doc_id)
        return True

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load(self) -> int:
        """Populate the store from its backend.  Returns the number of documents loaded.

        Documents already in memory are replaced.  Listeners are not
        notified; the index manager rebuilds from the store afterwards.
        """
        if self._backend is None:
            return 0
        await self._backend.initialize()
        documents = await self._backend.load_all()
        async with self._write_lock:
            for doc in documents:
                vector = coerce_embedding(doc.embedding, self._dimension)
                self._commit(doc, vector)
        logger.info("vector_store_loaded", count=len(documents), dimension=self._dimension)
        return len(documents)

    async def close(self) -> None:
        if self._backend is not None:
            await self._backend.close()
