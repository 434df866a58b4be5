"""Utility modules for vecsearch.

- **errors** -- exception hierarchy rooted at VecSearchError; each engine
  concern raises its own subclass so callers can handle failures
  granularly without broad ``except Exception`` blocks.
- **concurrency** -- semaphore-throttled gather and retry with backoff for
  embedding fan-out during ingestion.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
- **distance** (not re-exported here) -- metric functions and top-k
  selection shared by every index structure.
"""

from vecsearch.utils.concurrency import retry_with_backoff, throttled_gather
from vecsearch.utils.errors import (
    ConfigurationError,
    DimensionMismatchError,
    DuplicateIdError,
    EmbeddingError,
    IndexBuildError,
    InvalidArgumentError,
    MetricMismatchError,
    NotFoundError,
    ProviderUnavailableError,
    RateLimitError,
    RebuildCancelledError,
    StorageError,
    VecSearchError,
)
from vecsearch.utils.logging import configure_logging, get_logger, log_duration

__all__ = [
    "ConfigurationError",
    "DimensionMismatchError",
    "DuplicateIdError",
    "EmbeddingError",
    "IndexBuildError",
    "InvalidArgumentError",
    "MetricMismatchError",
    "NotFoundError",
    "ProviderUnavailableError",
    "RateLimitError",
    "RebuildCancelledError",
    "StorageError",
    "VecSearchError",
    "configure_logging",
    "get_logger",
    "log_duration",
    "retry_with_backoff",
    "throttled_gather",
]
