"""API middleware: CORS, request logging, and error handling.

Starlette middleware is a stack (last added, first executed).  ``main.py``
adds ``ErrorHandlingMiddleware`` first and ``RequestLoggingMiddleware``
second, so the request path is::

    Client -> RequestLogging -> ErrorHandling -> route handler

and RequestLoggingMiddleware sees the final status code, including the one
ErrorHandling substituted for an exception.
"""

from __future__ import annotations

import time

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from vecsearch.api.schemas import ErrorResponse
from vecsearch.utils.errors import (
    ConfigurationError,
    DimensionMismatchError,
    DuplicateIdError,
    EmbeddingError,
    IndexBuildError,
    InvalidArgumentError,
    NotFoundError,
    ProviderUnavailableError,
    RateLimitError,
    StorageError,
    VecSearchError,
)
from vecsearch.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

# Checked along the exception's MRO, so MetricMismatchError resolves to the
# InvalidArgumentError entry.
ERROR_STATUS: dict[type[VecSearchError], int] = {
    DimensionMismatchError: 422,
    NotFoundError: 404,
    DuplicateIdError: 409,
    InvalidArgumentError: 400,
    IndexBuildError: 500,
    StorageError: 500,
    EmbeddingError: 502,
    RateLimitError: 429,
    ProviderUnavailableError: 503,
    ConfigurationError: 500,
}


def status_for(exc: VecSearchError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------


def configure_cors(app: FastAPI, *, allowed_origins: list[str] | None = None) -> None:
    """Add CORS middleware; ``["*"]`` unless *allowed_origins* is given."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


# ---------------------------------------------------------------------------
# Request Logging
# ---------------------------------------------------------------------------


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with method, path, status code, and duration."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        response: Response | None = None

        try:
            response = await call_next(request)
            return response
        finally:
            _logger.info(
                "http_request",
                method=request.method,
                path=str(request.url.path),
                status=response.status_code if response else 500,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )


# ---------------------------------------------------------------------------
# Error Handling
# ---------------------------------------------------------------------------


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Convert ``VecSearchError`` subclasses into sanitized JSON errors.

    The status code follows :data:`ERROR_STATUS`.  Full details are logged
    server-side; the client sees only the error class name and message.
    Other exceptions fall through to FastAPI's default 500 handler.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except VecSearchError as exc:
            status = status_for(exc)
            log = _logger.error if status >= 500 else _logger.warning
            log(
                "application_error",
                error_type=type(exc).__name__,
                message=exc.message,
                provider=exc.provider_name,
                status=status,
                path=str(request.url.path),
            )
            body = ErrorResponse(error=type(exc).__name__, detail=exc.message)
            return JSONResponse(status_code=status, content=body.model_dump())
