"""SQLite-backed document persistence.

Persists documents to a local SQLite database (``data/vecsearch.db`` by
default) using ``aiosqlite`` for async I/O.  Embeddings are stored as
fixed-width little-endian ``float64`` BLOBs so a reload reproduces the
exact vectors; metadata is stored as JSON.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import aiosqlite
import numpy as np
import structlog

from vecsearch.interfaces.document_backend import IDocumentBackend
from vecsearch.models.document import Document
from vecsearch.utils.errors import StorageError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/vecsearch.db")
_EMBEDDING_DTYPE = np.dtype("<f8")

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS documents (
    seq         INTEGER PRIMARY KEY AUTOINCREMENT,
    id          TEXT    NOT NULL UNIQUE,
    content     TEXT    NOT NULL DEFAULT '',
    dimension   INTEGER NOT NULL,
    embedding   BLOB    NOT NULL,
    metadata    TEXT    NOT NULL DEFAULT '{}',
    created_at  TEXT    NOT NULL,
    updated_at  TEXT
);
"""

_UPSERT_SQL = """\
INSERT INTO documents (id, content, dimension, embedding, metadata, created_at, updated_at)
VALUES (?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id)
DO UPDATE SET content    = excluded.content,
              dimension  = excluded.dimension,
              embedding  = excluded.embedding,
              metadata   = excluded.metadata,
              updated_at = excluded.updated_at;
"""

_SELECT_ALL_SQL = """\
SELECT id, content, dimension, embedding, metadata, created_at, updated_at
FROM documents
ORDER BY seq;
"""


def encode_embedding(embedding: tuple[float, ...] | list[float]) -> bytes:
    return np.asarray(embedding, dtype=_EMBEDDING_DTYPE).tobytes()


def decode_embedding(blob: bytes, dimension: int) -> tuple[float, ...]:
    vector = np.frombuffer(blob, dtype=_EMBEDDING_DTYPE)
    if vector.shape[0] != dimension:
        raise StorageError(
            f"Stored embedding has {vector.shape[0]} components, expected {dimension}",
            provider_name="sqlite",
        )
    return tuple(vector.tolist())


class SQLiteDocumentBackend(IDocumentBackend):
    """SQLite-backed document persistence."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    @property
    def db_path(self) -> Path:
        return self._db_path

    async def initialize(self) -> None:
        """Create the documents table if it doesn't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute(_CREATE_TABLE_SQL)
                await db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(f"Cannot initialise {self._db_path}: {exc}", "sqlite") from exc
        logger.info("document_db_initialized", path=str(self._db_path))

    async def upsert(self, documents: list[Document]) -> None:
        if not documents:
            return
        rows = [
            (
                doc.id,
                doc.content,
                len(doc.embedding),
                encode_embedding(doc.embedding),
                json.dumps(doc.metadata),
                doc.created_at.isoformat(),
                doc.updated_at.isoformat() if doc.updated_at else None,
            )
            for doc in documents
        ]
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.executemany(_UPSERT_SQL, rows)
                await db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(f"Upsert of {len(rows)} documents failed: {exc}", "sqlite") from exc
        logger.debug("documents_persisted", count=len(rows))

    async def delete(self, doc_ids: list[str]) -> int:
        if not doc_ids:
            return 0
        placeholders = ",".join("?" for _ in doc_ids)
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                cursor = await db.execute(
                    f"DELETE FROM documents WHERE id IN ({placeholders})",  # noqa: S608
                    doc_ids,
                )
                await db.commit()
                removed = cursor.rowcount
        except aiosqlite.Error as exc:
            raise StorageError(f"Delete failed: {exc}", "sqlite") from exc
        logger.debug("documents_unpersisted", requested=len(doc_ids), removed=removed)
        return removed

    async def load_all(self) -> list[Document]:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(_SELECT_ALL_SQL)
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StorageError(f"Load failed: {exc}", "sqlite") from exc

        documents = [
            Document(
                id=row["id"],
                content=row["content"],
                embedding=decode_embedding(row["embedding"], row["dimension"]),
                metadata=json.loads(row["metadata"]),
                created_at=datetime.fromisoformat(row["created_at"]),
                updated_at=(
                    datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None
                ),
            )
            for row in rows
        ]
        logger.info("documents_loaded", path=str(self._db_path), count=len(documents))
        return documents

    async def count(self) -> int:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                cursor = await db.execute("SELECT COUNT(*) FROM documents")
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StorageError(f"Count failed: {exc}", "sqlite") from exc
        return int(row[0]) if row else 0

    async def close(self) -> None:
        """Connections are opened per call; nothing is held between calls."""

    def get_provider_name(self) -> str:
        return "sqlite"
