"""Shared pytest fixtures for the vecsearch test suite."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from tests.factories import (
    DIM,
    CountingEmbeddingProvider,
    clustered_vectors,
    doc_ids,
    line_vector,
    make_doc,
)
from vecsearch.interfaces.embedding_provider import IEmbeddingProvider
from vecsearch.models.index import DistanceMetric, IndexKind
from vecsearch.providers.embedding.hash_embedding_provider import HashEmbeddingProvider
from vecsearch.services.index_manager import IndexManager
from vecsearch.services.vector_store import VectorStore


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def hash_provider() -> IEmbeddingProvider:
    return HashEmbeddingProvider(dimension=64)


@pytest.fixture
def counting_provider() -> CountingEmbeddingProvider:
    return CountingEmbeddingProvider(dimension=64)


@pytest.fixture
def clustered() -> tuple[list[str], np.ndarray]:
    """500 clustered vectors in DIM dimensions with ids ``d000``..``d499``."""
    return doc_ids(500), clustered_vectors(500)


@pytest.fixture
def store() -> VectorStore:
    return VectorStore(DIM)


@pytest.fixture
async def line_store() -> VectorStore:
    """40 documents on a line, alternating group ``a``/``b``, year ``2000 + i``."""
    vs = VectorStore(DIM)
    await vs.insert_many(
        [
            make_doc(
                f"d{i:03d}",
                line_vector(i),
                group="a" if i % 2 == 0 else "b",
                year=2000 + i,
            )
            for i in range(40)
        ]
    )
    return vs


@pytest.fixture
async def line_manager(line_store: VectorStore) -> IndexManager:
    return IndexManager(
        line_store, metric=DistanceMetric.L2, kind=IndexKind.FLAT, auto_compact=False
    )
