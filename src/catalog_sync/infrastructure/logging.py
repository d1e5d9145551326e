"""Structured logging configuration."""

import structlog

from catalog_sync.config import get_settings


def configure_logging(log_level: str | None = None) -> None:
    """Configure structlog for the API, the CLI and the worker.

    Debug mode renders human readable console lines, otherwise JSON.
    """
    settings = get_settings()
    level = (log_level or settings.log_level).upper()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
