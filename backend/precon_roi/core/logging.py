"""
Logging configuration for the API and the batch scripts.
"""
import logging
import sys
from typing import Optional

import structlog

from precon_roi.core.config import settings

NOISY_LOGGERS = ("httpx", "httpcore", "redis")


def setup_logging(debug: Optional[bool] = None, json_logs: Optional[bool] = None):
    """
    Configure structured logging.

    Args:
        debug: Log at DEBUG level. Defaults to ``settings.api_debug``.
        json_logs: Render JSON lines instead of console output. Defaults to
            the opposite of ``debug``; batch jobs under a scheduler want JSON.
    """
    if debug is None:
        debug = settings.api_debug
    if json_logs is None:
        json_logs = not debug
    log_level = logging.DEBUG if debug else logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer()
            if json_logs
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None):
    """Structured logger, optionally named."""
    return structlog.get_logger(name)
