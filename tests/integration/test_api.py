"""Integration tests for the HTTP API using FastAPI's TestClient.

Each test builds a real application (hash embeddings, in-memory or
temporary-directory storage) and drives it over HTTP, so routing,
dependency injection, error mapping and the engine are exercised together.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from vecsearch.config.settings import Settings
from vecsearch.main import create_app

DIM = 32


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _settings(**overrides) -> Settings:
    defaults = {
        "embedding_provider": "hash",
        "vector_dimension": DIM,
        "vector_metric": "l2",
        "index_kind": "flat",
        "reranker_provider": "embedding",
        "storage_sqlite_path": "",
        "storage_snapshot_path": "",
        "query_rerank_top": 20,
        "app_env": "test",
    }
    defaults.update(overrides)
    return Settings(**defaults)


def _vec(position: float) -> list[float]:
    vector = [0.0] * DIM
    vector[0] = float(position)
    vector[1] = 1.0
    return vector


def _insert(client: TestClient, doc_id: str, position: float, **metadata) -> None:
    response = client.post(
        "/api/v1/vectors",
        json={
            "id": doc_id,
            "content": f"track {doc_id}",
            "embedding": _vec(position),
            "metadata": metadata,
        },
    )
    assert response.status_code == 201, response.text


def _wait_for_job(client: TestClient, job_id: str, timeout: float = 10.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        job = client.get(f"/api/v1/index/rebuild/{job_id}").json()
        if job["status"] in {"completed", "failed", "cancelled"}:
            return job
        time.sleep(0.02)
    raise AssertionError(f"rebuild job {job_id} did not finish")


@pytest.fixture
def client() -> Iterator[TestClient]:
    with TestClient(create_app(_settings())) as test_client:
        yield test_client


@pytest.fixture
def populated(client: TestClient) -> TestClient:
    for i in range(12):
        _insert(client, f"d{i:02d}", i, genre="house" if i % 2 == 0 else "techno", year=1990 + i)
    return client


# ======================================================================
# Health
# ======================================================================


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        body = client.get("/api/v1/health").json()
        assert body["status"] == "healthy"
        assert body["documents"] == 0
        assert body["providers"]["embedding"] == f"hash_embedding_{DIM}"
        assert body["providers"]["storage"] == "memory"


# ======================================================================
# Document CRUD
# ======================================================================


class TestDocuments:
    def test_insert_and_get(self, client: TestClient) -> None:
        _insert(client, "a", 1, genre="house")
        body = client.get("/api/v1/vectors/a").json()
        assert body["id"] == "a"
        assert body["embedding"] == _vec(1)
        assert body["metadata"] == {"genre": "house"}
        assert body["updated_at"] is None

    def test_get_without_embedding(self, client: TestClient) -> None:
        _insert(client, "a", 1)
        body = client.get("/api/v1/vectors/a", params={"include_embedding": "false"}).json()
        assert body["embedding"] is None

    def test_insert_embeds_text_when_no_vector(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/vectors", json={"content": "minimal techno from berlin"}
        )
        assert response.status_code == 201
        doc_id = response.json()["id"]
        assert len(client.get(f"/api/v1/vectors/{doc_id}").json()["embedding"]) == DIM

    def test_duplicate_id_conflict(self, client: TestClient) -> None:
        _insert(client, "a", 1)
        response = client.post("/api/v1/vectors", json={"id": "a", "embedding": _vec(2)})
        assert response.status_code == 409
        assert response.json()["error"] == "DuplicateIdError"

    def test_wrong_dimension(self, client: TestClient) -> None:
        response = client.post("/api/v1/vectors", json={"id": "a", "embedding": [1.0, 2.0]})
        assert response.status_code == 422
        assert response.json()["error"] == "DimensionMismatchError"

    def test_nothing_to_embed(self, client: TestClient) -> None:
        response = client.post("/api/v1/vectors", json={"id": "a"})
        assert response.status_code == 400

    def test_get_missing(self, client: TestClient) -> None:
        response = client.get("/api/v1/vectors/nope")
        assert response.status_code == 404
        assert response.json() == {"error": "NotFoundError", "detail": "Document not found: nope"}

    def test_patch_merges_metadata(self, client: TestClient) -> None:
        _insert(client, "a", 1, genre="house", year=1991)
        response = client.patch("/api/v1/vectors/a", json={"metadata": {"year": 1992}})
        assert response.status_code == 200
        body = response.json()
        assert body["metadata"] == {"genre": "house", "year": 1992}
        assert body["updated_at"] is not None

    def test_patch_replaces_embedding(self, client: TestClient) -> None:
        _insert(client, "a", 1)
        client.patch("/api/v1/vectors/a", json={"embedding": _vec(50)})
        hits = client.post("/api/v1/vectors/search", json={"vector": _vec(50), "k": 1}).json()
        assert hits["hits"][0]["id"] == "a"
        assert hits["hits"][0]["distance"] == pytest.approx(0.0)

    def test_empty_patch(self, client: TestClient) -> None:
        _insert(client, "a", 1)
        assert client.patch("/api/v1/vectors/a", json={}).status_code == 400

    def test_patch_missing(self, client: TestClient) -> None:
        assert client.patch("/api/v1/vectors/nope", json={"content": "x"}).status_code == 404

    def test_patch_with_two_embedding_sources(self, client: TestClient) -> None:
        _insert(client, "a", 1)
        response = client.patch("/api/v1/vectors/a", json={"embedding": _vec(2), "text": "x"})
        assert response.status_code == 422

    def test_delete_is_idempotent(self, client: TestClient) -> None:
        _insert(client, "a", 1)
        assert client.delete("/api/v1/vectors/a").json() == {"id": "a", "deleted": True}
        assert client.delete("/api/v1/vectors/a").json() == {"id": "a", "deleted": False}
        assert client.get("/api/v1/vectors/a").status_code == 404


# ======================================================================
# Search
# ======================================================================


class TestSearch:
    def test_vector_search_orders_by_distance(self, populated: TestClient) -> None:
        body = populated.post("/api/v1/vectors/search", json={"vector": _vec(5), "k": 3}).json()
        assert [hit["id"] for hit in body["hits"]] == ["d05", "d04", "d06"]
        assert body["metric"] == "l2"
        assert body["reranked"] is False

    def test_filtered_search(self, populated: TestClient) -> None:
        body = populated.post(
            "/api/v1/vectors/search",
            json={"vector": _vec(5), "k": 2, "filter": {"genre": "house", "year": {"$gte": 1998}}},
        ).json()
        assert [hit["id"] for hit in body["hits"]] == ["d08", "d10"]
        assert body["strategy"] == "pre"

    def test_post_filter_reports_underfill(self, populated: TestClient) -> None:
        body = populated.post(
            "/api/v1/vectors/search",
            json={
                "vector": _vec(11),
                "k": 3,
                "filter": {"year": 1990},
                "strategy": "post",
                "over_fetch_factor": 1,
            },
        ).json()
        assert body["hits"] == []
        assert body["underfilled"] is True

    def test_multiple_vectors(self, populated: TestClient) -> None:
        body = populated.post(
            "/api/v1/vectors/search", json={"vectors": [_vec(0), _vec(11)], "k": 2}
        ).json()
        assert [hit["id"] for hit in body["hits"]] == ["d00", "d11"]

    def test_threshold(self, populated: TestClient) -> None:
        body = populated.post(
            "/api/v1/vectors/search", json={"vector": _vec(5), "k": 10, "threshold": 1.5}
        ).json()
        assert [hit["id"] for hit in body["hits"]] == ["d05", "d04", "d06"]

    def test_without_content(self, populated: TestClient) -> None:
        body = populated.post(
            "/api/v1/vectors/search",
            json={"vector": _vec(5), "k": 1, "include_content": False},
        ).json()
        assert body["hits"][0]["content"] is None

    def test_metric_mismatch(self, populated: TestClient) -> None:
        response = populated.post(
            "/api/v1/vectors/search", json={"vector": _vec(5), "k": 3, "metric": "cosine"}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "MetricMismatchError"

    def test_bad_filter(self, populated: TestClient) -> None:
        response = populated.post(
            "/api/v1/vectors/search", json={"vector": _vec(5), "filter": {"year": {"$near": 3}}}
        )
        assert response.status_code == 400

    @pytest.mark.parametrize("k", [0, -1])
    def test_bad_k(self, populated: TestClient, k: int) -> None:
        response = populated.post("/api/v1/vectors/search", json={"vector": _vec(5), "k": k})
        assert response.status_code == 400

    def test_query_required(self, client: TestClient) -> None:
        assert client.post("/api/v1/vectors/search", json={"k": 3}).status_code == 422

    def test_two_queries_rejected(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/vectors/search", json={"vector": _vec(1), "text": "x", "k": 3}
        )
        assert response.status_code == 422

    def test_text_search_with_rerank(self, client: TestClient) -> None:
        for doc_id, text in [
            ("a", "acid house warehouse party"),
            ("b", "baroque harpsichord recital"),
            ("c", "detroit techno warehouse night"),
        ]:
            client.post("/api/v1/vectors", json={"id": doc_id, "content": text})
        body = client.post(
            "/api/v1/vectors/search",
            json={"text": "acid house warehouse party", "k": 2, "rerank": True},
        ).json()
        assert body["reranked"] is True
        assert len(body["hits"]) == 2
        assert body["hits"][0]["id"] == "a"
        assert body["hits"][0]["rerank_score"] == pytest.approx(1.0)

    def test_rerank_needs_text(self, populated: TestClient) -> None:
        response = populated.post(
            "/api/v1/vectors/search", json={"vector": _vec(1), "k": 3, "rerank": True}
        )
        assert response.status_code == 400


# ======================================================================
# Ingestion
# ======================================================================


class TestIngestion:
    def test_ingest_then_delete_source(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/ingest",
            json={
                "source_id": "liner-notes",
                "content": "deep house grooves " * 70,
                "metadata": {"label": "trax"},
            },
        )
        assert response.status_code == 201
        result = response.json()
        assert result["chunk_ids"] == ["liner-notes#0", "liner-notes#1", "liner-notes#2"]
        assert result["chunks_created"] == 3

        doc = client.get("/api/v1/vectors/liner-notes#1", params={"include_embedding": "false"})
        assert doc.json()["metadata"]["label"] == "trax"

        again = client.post(
            "/api/v1/ingest",
            json={"source_id": "liner-notes", "content": "deep house grooves " * 70, "metadata": {"label": "trax"}},
        ).json()
        assert again["chunks_unchanged"] == 3

        deleted = client.delete("/api/v1/sources/liner-notes").json()
        assert deleted == {"source_id": "liner-notes", "chunks_deleted": 3}
        assert client.get("/api/v1/health").json()["documents"] == 0

    def test_invalid_window(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/ingest",
            json={"source_id": "s", "content": "text", "chunk_size": 10, "overlap": 10},
        )
        assert response.status_code == 400


# ======================================================================
# Index lifecycle
# ======================================================================


class TestIndexLifecycle:
    def test_rebuild_job(self, populated: TestClient) -> None:
        before = populated.get("/api/v1/index/stats").json()["index"]["version"]
        response = populated.post("/api/v1/index/rebuild")
        assert response.status_code == 202
        job = _wait_for_job(populated, response.json()["job_id"])
        assert job["status"] == "completed"
        assert job["snapshot_version"] > before
        stats = populated.get("/api/v1/index/stats").json()
        assert stats["index"]["delta_count"] == 0
        assert stats["index"]["structure_count"] == 12
        assert stats["active_rebuild"] is None

    def test_unknown_job(self, client: TestClient) -> None:
        assert client.get("/api/v1/index/rebuild/nope").status_code == 404
        assert client.post("/api/v1/index/rebuild/nope/cancel").status_code == 404

    def test_compact(self, populated: TestClient) -> None:
        populated.delete("/api/v1/vectors/d03")
        stats = populated.post("/api/v1/index/compact").json()
        assert stats["delta_count"] == 0
        assert stats["tombstone_count"] == 0
        assert stats["live_count"] == 11

    def test_stats(self, populated: TestClient) -> None:
        stats = populated.get("/api/v1/index/stats").json()
        assert stats["index"]["kind"] == "flat"
        assert stats["index"]["live_count"] == 12
        assert stats["store"]["document_count"] == 12
        assert stats["store"]["metadata_keys"] == ["genre", "year"]

    def test_recall(self, populated: TestClient) -> None:
        report = populated.get("/api/v1/index/recall", params={"k": 3, "sample_size": 5}).json()
        assert report["recall"] == 1.0
        assert report["degraded"] is False
        assert report["sample_size"] == 5

    def test_recall_bad_k(self, populated: TestClient) -> None:
        assert populated.get("/api/v1/index/recall", params={"k": 0}).status_code == 400


# ======================================================================
# Configuration variants
# ======================================================================


class TestWithoutEmbeddingProvider:
    @pytest.fixture
    def bare(self) -> Iterator[TestClient]:
        settings = _settings(embedding_provider="none", reranker_provider="none")
        with TestClient(create_app(settings)) as test_client:
            yield test_client

    def test_vectors_still_work(self, bare: TestClient) -> None:
        _insert(bare, "a", 1)
        body = bare.post("/api/v1/vectors/search", json={"vector": _vec(1), "k": 1}).json()
        assert body["hits"][0]["id"] == "a"

    def test_text_features_unavailable(self, bare: TestClient) -> None:
        assert bare.post("/api/v1/vectors/search", json={"text": "x"}).status_code == 503
        assert bare.post("/api/v1/vectors", json={"content": "x"}).status_code == 503
        response = bare.post("/api/v1/ingest", json={"source_id": "s", "content": "x"})
        assert response.status_code == 503


class TestPersistence:
    def test_documents_and_index_survive_restart(self, tmp_path: Path) -> None:
        settings = _settings(
            index_kind="hnsw",
            storage_sqlite_path=str(tmp_path / "docs.db"),
            storage_snapshot_path=str(tmp_path / "index.json"),
        )
        with TestClient(create_app(settings)) as first:
            for i in range(20):
                _insert(first, f"d{i:02d}", i)
            first.delete("/api/v1/vectors/d07")
        assert (tmp_path / "index.json").is_file()

        with TestClient(create_app(settings)) as second:
            health = second.get("/api/v1/health").json()
            assert health["documents"] == 19
            assert health["providers"]["storage"] == "sqlite"
            body = second.post("/api/v1/vectors/search", json={"vector": _vec(7), "k": 2}).json()
            assert [hit["id"] for hit in body["hits"]] == ["d06", "d08"]
            stats = second.get("/api/v1/index/stats").json()["index"]
            assert stats["kind"] == "hnsw"
            assert stats["live_count"] == 19
