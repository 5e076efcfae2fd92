"""Structured logging configuration for kubechat."""

from __future__ import annotations

import logging
import sys

import structlog

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def setup_logging(level: int | str = logging.INFO) -> None:
    """Configure structlog for the whole process.

    At DEBUG level every request is traced, including parsed request lines
    and raw Kubernetes response sizes. At INFO level and above only
    connection outcomes and chat summaries are logged.

    Args:
        level: Standard logging level or its name (e.g. "DEBUG").
    """
    if isinstance(level, str):
        level = _LEVELS.get(level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
