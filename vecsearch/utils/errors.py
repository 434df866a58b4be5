"""Custom exception hierarchy for vecsearch.

All application exceptions inherit from :class:`VecSearchError`, which
carries an optional ``provider_name`` so error handlers can identify which
component or external service (e.g. "openai", "hnsw", "sqlite") caused the
failure.

The hierarchy is organized by engine concern:

    VecSearchError  (base -- catch-all for any vecsearch error)
    +-- DimensionMismatchError   (embedding length disagrees with dimension)
    +-- NotFoundError            (document id absent)
    +-- DuplicateIdError         (insert collision)
    +-- InvalidArgumentError     (bad k, bad chunk window, bad filter, ...)
    |   +-- MetricMismatchError  (query metric differs from index metric)
    +-- IndexBuildError          (rebuild / compaction / snapshot load failed)
    |   +-- RebuildCancelledError (build cancelled, nothing published)
    +-- StorageError             (persistence backend failure)
    +-- EmbeddingError           (embedding provider call failed)
    +-- RateLimitError           (provider rate-limit exceeded)
    +-- ProviderUnavailableError (external service down / unreachable)
    +-- ConfigurationError       (startup / missing config)

Caller errors (dimension, duplicate, invalid argument) are never retried.
``RateLimitError``, ``ProviderUnavailableError`` and transient
``EmbeddingError`` are retried with backoff at the ingestion boundary.
"""


class VecSearchError(Exception):
    """Base exception for all vecsearch errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which component triggered the error.
    The ``__str__`` method prefixes the provider name in brackets for
    structured log output, e.g. ``[openai] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Caller errors -- terminal, never retried
# ---------------------------------------------------------------------------


class DimensionMismatchError(VecSearchError):
    """Raised when an embedding's length differs from the store/index dimension."""

    def __init__(
        self,
        expected: int,
        actual: int,
        provider_name: str | None = None,
    ) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            message=f"Embedding dimension mismatch: expected {expected}, got {actual}",
            provider_name=provider_name,
        )


class NotFoundError(VecSearchError):
    """Raised when a document id (or a rebuild job id) is unknown."""

    def __init__(
        self, doc_id: str, provider_name: str | None = None, what: str = "Document"
    ) -> None:
        self.doc_id = doc_id
        super().__init__(message=f"{what} not found: {doc_id}", provider_name=provider_name)


class DuplicateIdError(VecSearchError):
    """Raised when inserting a document whose id already exists.

    Callers that intend upsert semantics should call ``update`` (or
    ``upsert``) instead.
    """

    def __init__(self, doc_id: str, provider_name: str | None = None) -> None:
        self.doc_id = doc_id
        super().__init__(message=f"Document already exists: {doc_id}", provider_name=provider_name)


class InvalidArgumentError(VecSearchError):
    """Raised for invalid caller arguments (``k < 1``, ``overlap >= chunk_size``, ...)."""

    def __init__(
        self,
        message: str = "Invalid argument",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class MetricMismatchError(InvalidArgumentError):
    """Raised when a query requests a metric other than the index's metric.

    Metrics are fixed per index at creation; a mismatched request is never
    silently coerced.
    """

    def __init__(self, expected: str, actual: str, provider_name: str | None = None) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            message=f"Distance metric mismatch: index uses {expected!r}, query requested {actual!r}",
            provider_name=provider_name,
        )


# ---------------------------------------------------------------------------
# Index / storage errors
# ---------------------------------------------------------------------------


class IndexBuildError(VecSearchError):
    """Raised when a rebuild, compaction, or snapshot load is aborted.

    The previously published snapshot remains valid and queryable.
    """

    def __init__(
        self,
        message: str = "Index build failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RebuildCancelledError(IndexBuildError):
    """Raised when a rebuild or compaction is cancelled before publication."""

    def __init__(self, provider_name: str | None = None) -> None:
        super().__init__(message="Index build cancelled", provider_name=provider_name)


class StorageError(VecSearchError):
    """Raised when the document persistence backend fails."""

    def __init__(
        self,
        message: str = "Storage operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# External service / provider errors
# ---------------------------------------------------------------------------


class EmbeddingError(VecSearchError):
    """Raised when an embedding provider call fails.

    ``transient`` marks failures worth retrying (timeouts, 5xx responses).
    """

    def __init__(
        self,
        message: str = "Embedding generation failed",
        provider_name: str | None = None,
        transient: bool = False,
    ) -> None:
        self.transient = transient
        super().__init__(message=message, provider_name=provider_name)


class RateLimitError(VecSearchError):
    """Raised when an API rate limit is exceeded.

    Callers should implement exponential backoff or switch to a
    secondary provider when this is caught.
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ProviderUnavailableError(VecSearchError):
    """Raised when an external service or provider is unreachable."""

    def __init__(
        self,
        message: str = "External service is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(VecSearchError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


def is_transient(exc: BaseException) -> bool:
    """Return ``True`` if *exc* is worth retrying with backoff."""
    if isinstance(exc, (RateLimitError, ProviderUnavailableError)):
        return True
    return isinstance(exc, EmbeddingError) and exc.transient
