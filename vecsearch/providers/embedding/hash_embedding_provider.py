"""Deterministic feature-hashing embedding provider.

Needs no model download and no network: every lowercase word token and
every word bigram is hashed (BLAKE2b) to a bucket and a sign, and the
signed bucket counts are L2-normalised.  Texts sharing vocabulary end up
close under cosine distance, which is enough for offline development,
the CLI demo corpus and the test-suite.  It is not a semantic model.
"""

from __future__ import annotations

import hashlib
import re

import numpy as np
import structlog

from vecsearch.interfaces.embedding_provider import IEmbeddingProvider
from vecsearch.utils.errors import InvalidArgumentError

logger = structlog.get_logger(logger_name=__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")


class HashEmbeddingProvider(IEmbeddingProvider):
    """Signed feature hashing over word unigrams and bigrams."""

    def __init__(self, dimension: int = 384) -> None:
        if dimension < 1:
            raise InvalidArgumentError(f"dimension must be >= 1, got {dimension}")
        self._dimension = dimension

    def _features(self, text: str) -> list[str]:
        tokens = _TOKEN_RE.findall(text.lower())
        return tokens + [f"{a} {b}" for a, b in zip(tokens, tokens[1:])]

    def _vector(self, text: str) -> list[float]:
        vector = np.zeros(self._dimension, dtype=np.float64)
        for feature in self._features(text):
            digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
            value = int.from_bytes(digest, "little")
            sign = 1.0 if value & 1 else -1.0
            vector[(value >> 1) % self._dimension] += sign
        norm = float(np.linalg.norm(vector))
        if norm > 0.0:
            vector /= norm
        return vector.tolist()

    async def embed(self, texts: list[str]) -> list[list[float]]:
        return [self._vector(text) for text in texts]

    async def embed_single(self, text: str) -> list[float]:
        return self._vector(text)

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return f"hash_embedding_{self._dimension}"

    def is_available(self) -> bool:
        return True
