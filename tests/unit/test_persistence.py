"""Unit tests for the SQLite document backend and snapshot files."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from tests.factories import DIM, line_vector, make_doc
from vecsearch.models.document import Document, DocumentPatch
from vecsearch.providers.storage.snapshot_file_store import SnapshotFileStore
from vecsearch.providers.storage.sqlite_document_backend import (
    SQLiteDocumentBackend,
    decode_embedding,
    encode_embedding,
)
from vecsearch.services.vector_store import VectorStore
from vecsearch.utils.errors import IndexBuildError, StorageError


# ======================================================================
# SQLiteDocumentBackend
# ======================================================================


class TestSQLiteDocumentBackend:
    @pytest.fixture()
    async def backend(self, tmp_path: Path) -> SQLiteDocumentBackend:
        db = SQLiteDocumentBackend(tmp_path / "nested" / "docs.db")
        await db.initialize()
        return db

    @pytest.mark.asyncio
    async def test_round_trip_is_exact(self, backend: SQLiteDocumentBackend) -> None:
        awkward = (0.1, 1 / 3, -2.5e-308, 1e308)
        doc = Document(
            id="a",
            content="text",
            embedding=awkward,
            metadata={"tags": ["x", "y"], "year": 1999, "live": True, "score": 0.5},
        )
        await backend.upsert([doc])
        [loaded] = await backend.load_all()
        assert loaded.embedding == awkward
        assert loaded.metadata == doc.metadata
        assert loaded.created_at == doc.created_at
        assert loaded.updated_at is None

    @pytest.mark.asyncio
    async def test_upsert_replaces_and_keeps_order(self, backend: SQLiteDocumentBackend) -> None:
        await backend.upsert([make_doc("a", [1.0]), make_doc("b", [2.0])])
        await backend.upsert([make_doc("a", [3.0], content="changed")])
        loaded = await backend.load_all()
        assert [doc.id for doc in loaded] == ["a", "b"]
        assert loaded[0].content == "changed"
        assert loaded[0].embedding == (3.0,)
        assert await backend.count() == 2

    @pytest.mark.asyncio
    async def test_delete_reports_removed_rows(self, backend: SQLiteDocumentBackend) -> None:
        await backend.upsert([make_doc("a", [1.0]), make_doc("b", [2.0])])
        assert await backend.delete(["a", "zzz"]) == 1
        assert await backend.delete([]) == 0
        assert await backend.count() == 1

    def test_decode_rejects_wrong_width(self) -> None:
        blob = encode_embedding([1.0, 2.0, 3.0])
        assert decode_embedding(blob, 3) == (1.0, 2.0, 3.0)
        with pytest.raises(StorageError):
            decode_embedding(blob, 4)

    def test_provider_name(self, tmp_path: Path) -> None:
        assert SQLiteDocumentBackend(tmp_path / "x.db").get_provider_name() == "sqlite"

    @pytest.mark.asyncio
    async def test_store_survives_restart(self, tmp_path: Path) -> None:
        path = tmp_path / "docs.db"
        first = VectorStore(DIM, SQLiteDocumentBackend(path))
        await first.load()
        await first.insert_many([make_doc(f"d{i}", line_vector(i), n=i) for i in range(5)])
        await first.update("d1", DocumentPatch(metadata={"n": 100}))
        await first.delete("d4")
        await first.close()

        second = VectorStore(DIM, SQLiteDocumentBackend(path))
        assert await second.load() == 4
        assert second.get("d1").metadata == {"n": 100}
        assert second.get("d1").updated_at is not None
        assert "d4" not in second
        assert second.get_vector("d3").tolist() == line_vector(3)


# ======================================================================
# SnapshotFileStore
# ======================================================================


def _payload() -> dict:
    return {
        "dimension": 4,
        "metric": "l2",
        "structure_kind": "flat",
        "structure_params": {},
        "version": 3,
        "nodes": [{"id": "a"}],
    }


class TestSnapshotFileStore:
    def test_write_then_read(self, tmp_path: Path) -> None:
        store = SnapshotFileStore(tmp_path / "snap" / "index.json")
        assert not store.exists()
        store.write(_payload())
        assert store.exists()
        payload = store.read()
        assert payload["format"] == 1
        assert payload["nodes"] == [{"id": "a"}]
        assert [p.name for p in store.path.parent.iterdir()] == ["index.json"]

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(IndexBuildError, match="not found"):
            SnapshotFileStore(tmp_path / "absent.json").read()

    def test_corrupt_json(self, tmp_path: Path) -> None:
        path = tmp_path / "index.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(IndexBuildError, match="Unreadable"):
            SnapshotFileStore(path).read()

    def test_unknown_format(self, tmp_path: Path) -> None:
        path = tmp_path / "index.json"
        path.write_text(json.dumps({**_payload(), "format": 99}), encoding="utf-8")
        with pytest.raises(IndexBuildError, match="format"):
            SnapshotFileStore(path).read()

    def test_missing_keys(self, tmp_path: Path) -> None:
        path = tmp_path / "index.json"
        path.write_text(json.dumps({"format": 1, "dimension": 4}), encoding="utf-8")
        with pytest.raises(IndexBuildError, match="missing keys"):
            SnapshotFileStore(path).read()
