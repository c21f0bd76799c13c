"""structlog configuration for the API process."""

from __future__ import annotations

import logging

import structlog

from ai_filter.config import settings


def _renderer_chain(environment: str) -> list[structlog.types.Processor]:
    if environment == "development":
        return [structlog.dev.ConsoleRenderer()]
    # JSONRenderer cannot serialize exc_info; render tracebacks into the event first
    return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]


def configure_logging() -> None:
    """Console renderer in development, one JSON object per line everywhere else.

    Every event carries the request ID bound by the request middleware.
    """
    level = logging.getLevelNamesMapping().get(settings.log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            *_renderer_chain(settings.environment),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
