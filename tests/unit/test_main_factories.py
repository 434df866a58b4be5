"""Unit tests for the provider factories and component assembly in vecsearch.main.

External services are patched out, so no network calls, API keys or model
downloads are needed.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from vecsearch.config.settings import Settings
from vecsearch.main import (
    build_components,
    build_embedding_provider,
    build_reranker,
    shutdown_components,
)
from vecsearch.models.index import IndexKind
from vecsearch.providers.embedding.hash_embedding_provider import HashEmbeddingProvider
from vecsearch.utils.errors import ConfigurationError

_ST_AVAILABLE = (
    "vecsearch.providers.embedding.sentence_transformer_embedding_provider."
    "SentenceTransformerEmbeddingProvider.is_available"
)
_NOMIC_AVAILABLE = (
    "vecsearch.providers.embedding.nomic_embedding_provider.NomicEmbeddingProvider.is_available"
)


# ======================================================================
# Shared helpers
# ======================================================================


def _settings(**overrides) -> Settings:
    """Settings with every external provider unconfigured and nothing persisted."""
    defaults = {
        "embedding_provider": "auto",
        "openai_api_key": "",
        "ollama_base_url": "",
        "vector_dimension": 0,
        "hash_embedding_dimension": 32,
        "storage_sqlite_path": "",
        "storage_snapshot_path": "",
        "reranker_provider": "embedding",
        "app_env": "test",
    }
    defaults.update(overrides)
    return Settings(**defaults)


# ======================================================================
# build_embedding_provider
# ======================================================================


class TestBuildEmbeddingProvider:
    def test_openai_first_when_key_set(self) -> None:
        provider = build_embedding_provider(_settings(openai_api_key="sk-test"))
        assert provider is not None
        assert provider.get_provider_name() == "openai_embedding"

    def test_nomic_when_ollama_reachable(self) -> None:
        with patch(_NOMIC_AVAILABLE, return_value=True):
            provider = build_embedding_provider(
                _settings(ollama_base_url="http://localhost:11434")
            )
        assert provider.get_provider_name() == "nomic_embedding"

    def test_hash_fallback(self) -> None:
        with patch(_ST_AVAILABLE, return_value=False):
            provider = build_embedding_provider(_settings())
        assert isinstance(provider, HashEmbeddingProvider)
        assert provider.get_dimension() == 32

    def test_dimension_mismatch_skips_provider(self) -> None:
        with patch(_ST_AVAILABLE, return_value=False):
            provider = build_embedding_provider(
                _settings(openai_api_key="sk-test", vector_dimension=48)
            )
        assert isinstance(provider, HashEmbeddingProvider)
        assert provider.get_dimension() == 48

    def test_explicit_choice(self) -> None:
        provider = build_embedding_provider(_settings(embedding_provider="hash"))
        assert isinstance(provider, HashEmbeddingProvider)

    def test_none(self) -> None:
        assert build_embedding_provider(_settings(embedding_provider="none")) is None

    def test_unknown_choice(self) -> None:
        with pytest.raises(ConfigurationError):
            build_embedding_provider(_settings(embedding_provider="word2vec"))


# ======================================================================
# build_reranker
# ======================================================================


class TestBuildReranker:
    def test_embedding_reranker(self) -> None:
        reranker = build_reranker(_settings(), HashEmbeddingProvider(16))
        assert reranker is not None
        assert reranker.scorer_name == "embedding_similarity_hash_embedding_16"

    def test_disabled(self) -> None:
        assert build_reranker(_settings(reranker_provider="none"), HashEmbeddingProvider(16)) is None

    def test_embedding_reranker_needs_provider(self) -> None:
        assert build_reranker(_settings(), None) is None

    def test_cross_encoder_falls_back(self) -> None:
        with patch(
            "vecsearch.providers.scoring.cross_encoder_scorer.CrossEncoderScorer.is_available",
            return_value=False,
        ):
            reranker = build_reranker(
                _settings(reranker_provider="cross_encoder"), HashEmbeddingProvider(16)
            )
        assert reranker.scorer_name.startswith("embedding_similarity")

    def test_unknown_choice(self) -> None:
        with pytest.raises(ConfigurationError):
            build_reranker(_settings(reranker_provider="llm"), None)


# ======================================================================
# build_components / shutdown_components
# ======================================================================


class TestBuildComponents:
    @pytest.mark.asyncio
    async def test_in_memory_assembly(self) -> None:
        components = await build_components(_settings(embedding_provider="hash"))
        assert components["store"].dimension == 32
        assert components["ingestion"] is not None
        assert components["provider_registry"] == {
            "embedding": "hash_embedding_32",
            "reranker": "embedding_similarity_hash_embedding_32",
            "storage": "memory",
            "index": "flat",
        }
        await shutdown_components(components)

    @pytest.mark.asyncio
    async def test_no_provider_needs_dimension(self) -> None:
        with pytest.raises(ConfigurationError):
            await build_components(_settings(embedding_provider="none"))

    @pytest.mark.asyncio
    async def test_no_provider_disables_ingestion(self) -> None:
        components = await build_components(
            _settings(embedding_provider="none", vector_dimension=8)
        )
        assert components["ingestion"] is None
        assert components["reranker"] is None
        await shutdown_components(components)

    @pytest.mark.asyncio
    async def test_conflicting_dimension(self) -> None:
        with pytest.raises(ConfigurationError):
            await build_components(
                _settings(embedding_provider="openai", openai_api_key="sk", vector_dimension=8)
            )

    @pytest.mark.asyncio
    async def test_snapshot_saved_and_restored(self, tmp_path: Path) -> None:
        settings = _settings(
            embedding_provider="hash",
            index_kind=IndexKind.HNSW,
            storage_sqlite_path=str(tmp_path / "docs.db"),
            storage_snapshot_path=str(tmp_path / "index.json"),
        )
        components = await build_components(settings)
        await components["ingestion"].ingest_text("set-1", "warehouse techno " * 80)
        await shutdown_components(components)
        assert (tmp_path / "index.json").is_file()

        restored = await build_components(settings)
        snapshot = restored["index_manager"].snapshot
        assert snapshot.kind is IndexKind.HNSW
        assert snapshot.live_count == len(restored["store"]) > 0
        assert not snapshot.delta
        await shutdown_components(restored)
