"""Nomic embedding provider adapter (local/free via Ollama).

Wraps the Ollama OpenAI-compatible endpoint to implement
:class:`IEmbeddingProvider` using ``nomic-embed-text`` (768 dimensions).
Runs locally with no API key required; the model must have been pulled
(``ollama pull nomic-embed-text``) for :meth:`is_available` to report it.
"""

from __future__ import annotations

import httpx
import openai
import structlog

from vecsearch.config.settings import Settings
from vecsearch.interfaces.embedding_provider import IEmbeddingProvider
from vecsearch.providers.embedding.openai_embedding_provider import translate_openai_error
from vecsearch.utils.errors import EmbeddingError

logger = structlog.get_logger(logger_name=__name__)

_OLLAMA_BATCH_LIMIT = 512
_MODEL = "nomic-embed-text"
_DIMENSION = 768


class NomicEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by ``nomic-embed-text`` served via Ollama.

    Requests go through the ``/v1`` endpoint in slices of at most 512 texts.
    Every returned vector is checked against the model's 768 dimensions
    before it reaches the store.
    """

    def __init__(self, settings: Settings) -> None:
        self._base_url = settings.ollama_base_url.rstrip("/")
        self._client = openai.AsyncOpenAI(
            base_url=f"{self._base_url}/v1",
            api_key="ollama",  # ignored by Ollama
        )

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        vectors: list[list[float]] = []
        for start in range(0, len(texts), _OLLAMA_BATCH_LIMIT):
            batch = texts[start : start + _OLLAMA_BATCH_LIMIT]
            try:
                response = await self._client.embeddings.create(input=batch, model=_MODEL)
            except openai.OpenAIError as exc:
                raise translate_openai_error(exc, self.get_provider_name()) from exc
            for item in response.data:
                if len(item.embedding) != _DIMENSION:
                    raise EmbeddingError(
                        f"{_MODEL} returned a {len(item.embedding)}-dimensional vector, "
                        f"expected {_DIMENSION}",
                        provider_name=self.get_provider_name(),
                    )
                vectors.append(item.embedding)
            logger.debug("nomic_embedding_batch", offset=start, batch_size=len(batch))
        return vectors

    async def embed_single(self, text: str) -> list[float]:
        (vector,) = await self.embed([text])
        return vector

    def get_dimension(self) -> int:
        return _DIMENSION

    def get_provider_name(self) -> str:
        return "nomic_embedding"

    def is_available(self) -> bool:
        """``True`` if Ollama answers and lists ``nomic-embed-text`` among its models."""
        if not self._base_url:
            return False
        try:
            response = httpx.get(f"{self._base_url}/api/tags", timeout=3.0)
        except (httpx.ConnectError, httpx.TimeoutException):
            return False
        if response.status_code != 200:
            return False
        try:
            models = response.json().get("models", [])
        except ValueError:
            return False
        pulled = {str(model.get("name", "")).split(":", 1)[0] for model in models}
        if _MODEL not in pulled:
            logger.info("nomic_model_not_pulled", base_url=self._base_url, model=_MODEL)
            return False
        return True
