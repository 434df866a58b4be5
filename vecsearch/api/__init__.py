"""vecsearch HTTP API layer: routes, schemas and middleware."""

from vecsearch.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from vecsearch.api.routes import router

__all__ = [
    "ErrorHandlingMiddleware",
    "RequestLoggingMiddleware",
    "configure_cors",
    "router",
]
