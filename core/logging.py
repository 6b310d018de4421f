"""
Structured logging configuration.

Uses structlog for machine-readable, context-rich logging.
Supports both JSON (production) and human-readable (development) output.

Log lines always go to stderr: stdout is reserved for the record stream
of the extract and load commands.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import Processor

from core.config import settings


# Chatty third-party loggers, kept one level quieter than our own
QUIET_LOGGERS = ("apscheduler", "uvicorn", "uvicorn.error")


def _renderer() -> Processor:
    if settings.is_development:
        return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    return structlog.processors.JSONRenderer()


def configure_logging(level: str | None = None) -> None:
    """
    Configure structlog for the current environment.

    Development: console renderer, colored when stderr is a terminal
    Production: JSON lines with structured tracebacks

    Args:
        level: Level name overriding DOLYSIS_LOG_LEVEL (e.g. "DEBUG")
    """
    log_level = logging.getLevelName((level or settings.log_level).upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if not settings.is_development:
        processors.append(structlog.processors.dict_tracebacks)
    processors.append(_renderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(levelname)s %(name)s: %(message)s",
        level=log_level,
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def bind_stage(stage: str) -> None:
    """Tag every following log line of this context with the pipeline stage."""
    structlog.contextvars.bind_contextvars(stage=stage)


def get_logger(name: str | None = None, **initial_context: Any) -> structlog.BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__)
        **initial_context: Initial context values to bind

    Usage:
        logger = get_logger(__name__, peer="127.0.0.1:50412")
        logger.info("Stream started", records=0)
    """
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger
