"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
Supports both real OpenAI and OpenAI-compatible providers (TogetherAI,
Fireworks, a local vLLM) via custom ``base_url`` and model name settings.

SDK failures are translated into the vecsearch error taxonomy so the
ingestion pipeline can tell retryable failures from terminal ones:
rate limits become :class:`RateLimitError`, connection problems, timeouts
and 5xx responses become transient :class:`EmbeddingError`, everything
else is a terminal :class:`EmbeddingError`.
"""

from __future__ import annotations

import openai
import structlog

from vecsearch.config.settings import Settings
from vecsearch.interfaces.embedding_provider import IEmbeddingProvider
from vecsearch.utils.errors import EmbeddingError, RateLimitError, VecSearchError

logger = structlog.get_logger(logger_name=__name__)

_OPENAI_BATCH_LIMIT = 2048

# Known embedding model dimensions.
_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "BAAI/bge-base-en-v1.5": 768,
    "BAAI/bge-large-en-v1.5": 1024,
    "intfloat/multilingual-e5-large-instruct": 1024,
}

# Models that accept the ``dimensions`` request parameter (Matryoshka).
_SHORTENABLE_MODELS = {"text-embedding-3-small", "text-embedding-3-large"}


def translate_openai_error(exc: openai.OpenAIError, provider_name: str) -> VecSearchError:
    """Map an ``openai`` SDK exception onto the vecsearch error taxonomy."""
    if isinstance(exc, openai.RateLimitError):
        return RateLimitError(message=f"Embedding rate limit: {exc}", provider_name=provider_name)
    if isinstance(exc, (openai.APIConnectionError, openai.APITimeoutError)):
        return EmbeddingError(
            message=f"Embedding service unreachable: {exc}",
            provider_name=provider_name,
            transient=True,
        )
    if isinstance(exc, openai.APIStatusError) and exc.status_code >= 500:
        return EmbeddingError(
            message=f"Embedding service error {exc.status_code}: {exc}",
            provider_name=provider_name,
            transient=True,
        )
    return EmbeddingError(message=f"Embedding API error: {exc}", provider_name=provider_name)


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API.

    Uses ``text-embedding-3-small`` (1536 dims) by default.  When
    ``openai_embedding_dimensions`` is set and the model supports it, the
    API is asked for shortened vectors of that length instead.  Handles
    automatic batching for inputs exceeding the per-call limit.
    """

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.openai_api_key

        client_kwargs: dict = {"api_key": self._api_key or "unset"}
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._model = settings.openai_embedding_model or "text-embedding-3-small"
        self._requested_dimensions: int | None = None
        if settings.openai_embedding_dimensions and self._model in _SHORTENABLE_MODELS:
            self._requested_dimensions = settings.openai_embedding_dimensions
        self._dimension = self._requested_dimensions or _MODEL_DIMENSIONS.get(self._model, 768)
        self._provider_label = (
            "openai-compatible_embedding" if settings.openai_base_url else "openai_embedding"
        )

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Automatically splits into batches of 2048 if the input exceeds the
        per-call limit.
        """
        if not texts:
            return []

        extra: dict = {}
        if self._requested_dimensions is not None:
            extra["dimensions"] = self._requested_dimensions

        try:
            all_embeddings: list[list[float]] = []
            for start in range(0, len(texts), _OPENAI_BATCH_LIMIT):
                batch = texts[start : start + _OPENAI_BATCH_LIMIT]
                response = await self._client.embeddings.create(
                    input=batch,
                    model=self._model,
                    **extra,
                )
                all_embeddings.extend(item.embedding for item in response.data)
                logger.info(
                    "openai_embedding_batch",
                    model=self._model,
                    provider=self._provider_label,
                    batch_size=len(batch),
                    tokens=response.usage.total_tokens if response.usage else None,
                )
            return all_embeddings
        except openai.OpenAIError as exc:
            raise translate_openai_error(exc, self.get_provider_name()) from exc

    async def embed_single(self, text: str) -> list[float]:
        result = await self.embed([text])
        return result[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)
