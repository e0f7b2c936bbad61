"""Structured logging configuration using structlog."""

from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from queryflow.core.config import LogLevel, get_settings

LIBRARY_NAME = "queryflow"


def _add_library_name(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Tag every event with the library name."""
    event_dict.setdefault("library", LIBRARY_NAME)
    return event_dict


def build_processors(format_type: str) -> list[Processor]:
    """Build the processor chain for "json" or "console" output."""
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_library_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if format_type == "json":
        return [
            *shared_processors,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    return [
        *shared_processors,
        structlog.dev.ConsoleRenderer(colors=False),
    ]


def configure_logging(
    level: LogLevel | str | None = None,
    format_type: str | None = None,
    service_name: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """
    Configure structured logging for queryflow.

    Output goes to stderr unless ``stream`` is given. Loggers are not cached,
    so module-level loggers created at import time pick up a later call.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        format_type: Output format ("json" or "console").
        service_name: Name of the host application, bound to every event.
        stream: Where rendered events are written.
    """
    settings = get_settings()

    log_level = level or settings.observability.log_level
    if isinstance(log_level, str):
        log_level = LogLevel(log_level.upper())

    output_format = format_type or settings.observability.log_format
    svc_name = service_name or settings.observability.service_name

    numeric_level = logging.getLevelName(log_level.value)

    structlog.configure(
        processors=build_processors(output_format),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stderr),
        cache_logger_on_first_use=False,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=svc_name)


def get_logger(name: str | None = None, **initial_context: Any) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually module name).
        **initial_context: Initial context values to bind.

    Returns:
        A bound structlog logger.
    """
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger


def get_subscription_logger(subscription_id: str, query: Any) -> structlog.BoundLogger:
    """Get a logger bound to a subscription context."""
    return get_logger(
        "queryflow.subscription",
        subscription_id=subscription_id,
        query=type(query).__name__,
    )
