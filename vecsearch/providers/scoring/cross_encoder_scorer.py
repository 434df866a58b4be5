"""Cross-encoder relevance scorer backed by sentence-transformers.

A cross-encoder reads the query and a passage together and emits one
relevance logit, which is far more precise than comparing two
independently computed embeddings, and far slower.  The reranker only
applies it to the short candidate list returned by vector search.

sentence-transformers is an optional extra; the model is loaded lazily on
first use and prediction runs in a worker thread.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from vecsearch.interfaces.scorer_provider import IPairwiseScorer
from vecsearch.utils.errors import ProviderUnavailableError, VecSearchError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_MODEL = "cross-encoder/ms-marco-MiniLM-L-6-v2"


class CrossEncoderScorer(IPairwiseScorer):
    def __init__(self, model_name: str | None = None, batch_size: int = 32) -> None:
        self._model_name = model_name or _DEFAULT_MODEL
        self._batch_size = batch_size
        self._model: Any = None

    def _load_model(self) -> Any:
        if self._model is not None:
            return self._model
        try:
            from sentence_transformers import CrossEncoder
        except ImportError as exc:
            raise ProviderUnavailableError(
                "sentence-transformers is not installed", provider_name=self.get_provider_name()
            ) from exc
        logger.info("loading_cross_encoder", model=self._model_name)
        self._model = CrossEncoder(self._model_name)
        return self._model

    def _predict(self, query: str, passages: list[str]) -> list[float]:
        model = self._load_model()
        scores = model.predict(
            [(query, passage) for passage in passages],
            batch_size=self._batch_size,
            show_progress_bar=False,
        )
        return [float(s) for s in scores]

    async def score(self, query: str, passages: list[str]) -> list[float]:
        if not passages:
            return []
        try:
            return await asyncio.to_thread(self._predict, query, passages)
        except VecSearchError:
            raise
        except Exception as exc:
            raise VecSearchError(
                f"Cross-encoder scoring failed: {exc}", provider_name=self.get_provider_name()
            ) from exc

    def get_provider_name(self) -> str:
        return f"cross_encoder_{self._model_name.split('/')[-1]}"

    def is_available(self) -> bool:
        try:
            import sentence_transformers  # noqa: F401

            return True
        except ImportError:
            return False
