"""Local sentence-transformers embedding provider adapter.

Wraps the ``sentence-transformers`` library to implement
:class:`IEmbeddingProvider` using any HuggingFace embedding model locally.
Runs on CPU/GPU with no API key required.  Encoding is CPU bound, so it
runs in a worker thread to keep the event loop responsive.

Default model: ``sentence-transformers/all-MiniLM-L6-v2`` (384 dimensions).
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from vecsearch.interfaces.embedding_provider import IEmbeddingProvider
from vecsearch.utils.errors import EmbeddingError

logger = structlog.get_logger(logger_name=__name__)

# Known model dimensions.
_MODEL_DIMENSIONS: dict[str, int] = {
    "sentence-transformers/all-MiniLM-L6-v2": 384,
    "all-MiniLM-L6-v2": 384,
    "all-mpnet-base-v2": 768,
    "intfloat/e5-base-v2": 768,
    "intfloat/multilingual-e5-large-instruct": 1024,
    "BAAI/bge-base-en-v1.5": 768,
}

_DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
_BATCH_LIMIT = 64  # Conservative batch size for CPU inference


class SentenceTransformerEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by a local sentence-transformers model.

    Loads the model into memory on first use.  Models missing from the
    known-dimension table report the dimension of the loaded model.
    """

    def __init__(self, model_name: str | None = None) -> None:
        self._model_name = model_name or _DEFAULT_MODEL
        self._dimension = _MODEL_DIMENSIONS.get(self._model_name)
        self._model: Any = None

    def _load_model(self) -> Any:
        if self._model is not None:
            return self._model
        try:
            from sentence_transformers import SentenceTransformer

            logger.info("loading_sentence_transformer", model=self._model_name)
            self._model = SentenceTransformer(self._model_name)
        except Exception as exc:
            raise EmbeddingError(
                message=f"Failed to load sentence-transformers model '{self._model_name}': {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        self._dimension = int(self._model.get_sentence_embedding_dimension())
        logger.info(
            "sentence_transformer_loaded", model=self._model_name, dimension=self._dimension
        )
        return self._model

    def _encode(self, texts: list[str]) -> list[list[float]]:
        model = self._load_model()
        all_embeddings: list[list[float]] = []
        for start in range(0, len(texts), _BATCH_LIMIT):
            batch = texts[start : start + _BATCH_LIMIT]
            vectors = model.encode(batch, normalize_embeddings=True, show_progress_bar=False)
            all_embeddings.extend(vectors.tolist())
            logger.debug(
                "sentence_transformer_embedding_batch",
                model=self._model_name,
                batch_size=len(batch),
            )
        return all_embeddings

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            return await asyncio.to_thread(self._encode, texts)
        except EmbeddingError:
            raise
        except Exception as exc:
            raise EmbeddingError(
                message=f"Sentence-transformers embedding error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def embed_single(self, text: str) -> list[float]:
        result = await self.embed([text])
        return result[0]

    def get_dimension(self) -> int:
        if self._dimension is None:
            self._load_model()
        assert self._dimension is not None
        return self._dimension

    def get_provider_name(self) -> str:
        return f"sentence_transformer_{self._model_name.split('/')[-1]}"

    def is_available(self) -> bool:
        """Return ``True`` if sentence-transformers is installed."""
        try:
            import sentence_transformers  # noqa: F401

            return True
        except ImportError:
            return False
