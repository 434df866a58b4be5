"""Structured logging setup using structlog.

Implements a **dual-renderer pattern**: the same shared processor chain
(context vars, log level, timestamps, stack info) feeds into either a
coloured ConsoleRenderer for local development or a JSONRenderer for
production.  The renderer is selected automatically based on the ``APP_ENV``
environment variable (default ``"development"``), or forced via the
``json_output`` flag.

Standard-library ``logging`` is also rewired through the same structlog
formatter so that third-party libraries (httpx, uvicorn, etc.) produce
identically formatted output.

:func:`log_duration` wraps long-running engine work (index builds,
compaction, snapshot persistence) so every such event carries a
``duration_ms`` field.
"""

import logging
import os
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> structlog.BoundLogger:
    """Configure structlog with environment-appropriate rendering.

    Args:
        log_level: Logging level string (DEBUG, INFO, WARNING, ERROR, FATAL).
        json_output: Force JSON output. When False, uses console rendering in
                     development and JSON in production (detected via APP_ENV).

    Returns:
        A configured structlog BoundLogger.
    """
    app_env = os.environ.get("APP_ENV", "development")
    use_json = json_output or app_env == "production"

    # Order matters: contextvars first, then level/timestamps, then
    # exception formatting.
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if use_json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            renderer,
        ],
        # Drops messages below log_level before any processor runs, which
        # keeps debug events in the search hot path nearly free.
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *shared_processors,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())

    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a named structlog logger.

    If structlog has not been configured yet, calls configure_logging() with defaults.

    Args:
        name: Logger name, typically the module name.

    Returns:
        A structlog BoundLogger bound with the given name.
    """
    if not structlog.is_configured():
        configure_logging()

    return structlog.get_logger(logger_name=name)


@contextmanager
def log_duration(
    logger: structlog.BoundLogger,
    event: str,
    level: str = "info",
    **context: Any,
) -> Iterator[dict[str, Any]]:
    """Time the enclosed block and emit *event* with ``duration_ms`` on exit.

    The yielded dict is merged into the final log call, so the block can
    attach results discovered while it runs (row counts, versions).  On an
    exception the event is logged at ``error`` level with ``status="failed"``
    and the exception propagates unchanged.
    """
    extra: dict[str, Any] = {}
    start = time.perf_counter()
    try:
        yield extra
    except BaseException as exc:
        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.error(
            event,
            status="failed",
            duration_ms=duration_ms,
            error=str(exc) or type(exc).__name__,
            **context,
            **extra,
        )
        raise
    duration_ms = round((time.perf_counter() - start) * 1000, 2)
    getattr(logger, level)(event, duration_ms=duration_ms, **context, **extra)
