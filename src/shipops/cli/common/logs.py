"""Structured logging setup for the CLI."""

from __future__ import annotations

import logging
import os
import sys

import structlog

_LEVEL_ENV = "SHIPOPS_LOG_LEVEL"


def configure_logging(log_format: str | None = None, level: str | None = None) -> None:
    """
    Configure structlog once per process.

    Logs go to stderr so stdout stays clean for `--json` output. The
    console renderer is used unless `log_format` is `json`.
    """
    level_name = (level or os.getenv(_LEVEL_ENV) or "INFO").upper()
    min_level = getattr(logging, level_name, logging.INFO)
    if not isinstance(min_level, int):
        min_level = logging.INFO

    if (log_format or "").lower() == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
