"""
Logging configuration for Conductor.

Conductor logs through structlog. Library code only asks for loggers;
applications call setup_logging() once to choose level and rendering.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

from conductor.config.settings import ConductorSettings, get_settings


def setup_logging(settings: ConductorSettings | None = None) -> None:
    """
    Configure structured logging for Conductor.

    Args:
        settings: Conductor settings (process-wide settings if None).
    """
    settings = settings or get_settings()
    log_level = getattr(logging, settings.logging.level)

    if settings.logging.json_output:
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Also configure standard logging for third-party libraries
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


@contextmanager
def bound_run_context(**values: Any) -> Iterator[None]:
    """
    Bind values (run id, trace id, ...) to every log line in this context.

    Usage:
        with bound_run_context(run_id=run_id):
            ...
    """
    tokens = structlog.contextvars.bind_contextvars(**values)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
