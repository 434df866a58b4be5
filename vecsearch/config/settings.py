"""Application settings loaded via pydantic-settings.

Sources, highest priority first:

  1. Environment variables -- e.g. ``INDEX_KIND=hnsw``
  2. ``.env`` file in the working directory
  3. Values passed to the constructor (``config/config.yaml`` via
     :func:`vecsearch.config.loader.load_settings`)
  4. The defaults below

The mapping is automatic: field ``hnsw_ef_search`` reads ``HNSW_EF_SEARCH``.
Empty strings mean "not configured"; provider selection in
``vecsearch.main`` skips providers whose keys are empty.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from vecsearch.models.index import DistanceMetric, IndexKind
from vecsearch.models.search import FilterStrategy


class Settings(BaseSettings):
    """vecsearch engine and service settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Deploy-time environment beats the checked-in YAML defaults.
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    # === Embedding providers ===
    # auto | openai | nomic | sentence_transformer | hash | none
    embedding_provider: str = "auto"
    openai_api_key: str = ""
    openai_base_url: str = ""
    openai_embedding_model: str = ""
    openai_embedding_dimensions: int = 0  # 0 = model default
    ollama_base_url: str = "http://localhost:11434"
    sentence_transformer_model: str = ""
    hash_embedding_dimension: int = Field(default=384, ge=1)

    # === Vector space ===
    # 0 = take the dimension from the selected embedding provider.
    vector_dimension: int = Field(default=0, ge=0)
    vector_metric: DistanceMetric = DistanceMetric.COSINE

    # === Index ===
    index_kind: IndexKind = IndexKind.AUTO
    index_flat_threshold: int = Field(default=10_000, ge=0)
    index_delta_merge_threshold: int = Field(default=1024, ge=1)
    index_auto_compact: bool = True
    hnsw_m: int = Field(default=16, ge=2)
    hnsw_ef_construction: int = Field(default=64, ge=1)
    hnsw_ef_search: int = Field(default=40, ge=1)
    hnsw_seed: int = 0
    ivf_lists: int = Field(default=0, ge=0)  # 0 = round(sqrt(n)) at build time
    ivf_probes: int = Field(default=0, ge=0)  # 0 = bound-driven probing
    ivf_training_sample: int = Field(default=20_000, ge=1)
    ivf_max_iterations: int = Field(default=20, ge=1)
    ivf_seed: int = 0

    # === Rebuild policy / recall ===
    rebuild_growth_factor: float = Field(default=2.0, gt=1.0)
    rebuild_max_tombstone_ratio: float = Field(default=0.2, gt=0.0, le=1.0)
    rebuild_max_list_imbalance: float = Field(default=4.0, ge=1.0)
    recall_floor: float = Field(default=0.9, ge=0.0, le=1.0)
    recall_sample_size: int = Field(default=100, ge=1)

    # === Query ===
    query_filter_strategy: FilterStrategy = FilterStrategy.AUTO
    query_over_fetch_factor: int = Field(default=4, ge=1)
    query_rerank_top: int = Field(default=50, ge=1)
    query_cache_size: int = Field(default=1000, ge=1)
    query_cache_ttl: int = Field(default=3600, ge=1)

    # === Reranking ===
    # none | cross_encoder | embedding
    reranker_provider: str = "embedding"
    reranker_model: str = "cross-encoder/ms-marco-MiniLM-L-6-v2"

    # === Ingestion ===
    ingest_chunk_size: int = Field(default=500, ge=1)
    ingest_overlap: int = Field(default=50, ge=0)
    ingest_batch_size: int = Field(default=64, ge=1)
    ingest_max_retries: int = Field(default=3, ge=0)
    ingest_retry_backoff: float = Field(default=0.5, ge=0.0)
    ingest_concurrency: int = Field(default=4, ge=1)

    # === Persistence ===
    # Empty = in-memory only.
    storage_sqlite_path: str = "data/vecsearch.db"
    storage_snapshot_path: str = "data/index_snapshot.json"

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    def hnsw_params(self) -> dict[str, int]:
        return {
            "m": self.hnsw_m,
            "ef_construction": self.hnsw_ef_construction,
            "ef_search": self.hnsw_ef_search,
            "seed": self.hnsw_seed,
        }

    def ivf_params(self) -> dict[str, int | None]:
        return {
            "lists": self.ivf_lists or None,
            "probes": self.ivf_probes or None,
            "training_sample": self.ivf_training_sample,
            "max_iterations": self.ivf_max_iterations,
            "seed": self.ivf_seed,
        }

    def get_available_embedding_providers(self) -> list[str]:
        """Providers that are configured, in ``auto`` priority order."""
        providers: list[str] = []
        if self.openai_api_key:
            providers.append("openai")
        if self.ollama_base_url:
            providers.append("nomic")
        providers.extend(["sentence_transformer", "hash"])
        return providers
