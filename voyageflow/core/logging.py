"""Structured logging configuration.

Configures structlog with environment-specific rendering (console in
development/test, JSON in staging/production) and exposes a module-level
``logger``. Log events are snake_case names with keyword context:

    logger.info("plan_generated", plan_id=plan.plan_id, stage_count=3)

The correlation id of the running plan is bound through structlog's
contextvars so every line emitted inside a run carries it.
"""

import logging
import sys
from typing import (
    Any,
    List,
)

import structlog

from voyageflow.core.config import settings


def get_structlog_processors(include_file_info: bool = True) -> List[Any]:
    """Get the shared structlog processor chain.

    Args:
        include_file_info: Whether to add module/function/line information.

    Returns:
        List[Any]: Processors applied before rendering.
    """
    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if include_file_info:
        processors.append(
            structlog.processors.CallsiteParameterAdder(
                {
                    structlog.processors.CallsiteParameter.MODULE,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                    structlog.processors.CallsiteParameter.LINENO,
                }
            )
        )

    processors.append(lambda _, __, event_dict: {**event_dict, "environment": settings.ENVIRONMENT.value})
    return processors


def setup_logging() -> None:
    """Configure stdlib logging and structlog for the current environment."""
    log_level = getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    processors = get_structlog_processors(include_file_info=settings.ENVIRONMENT.value in ("development", "test"))
    if settings.LOG_FORMAT == "console":
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_correlation_id(correlation_id: str) -> None:
    """Attach a correlation id to every log line in the current context."""
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)


def clear_correlation_id() -> None:
    """Remove the correlation id from the current logging context."""
    structlog.contextvars.unbind_contextvars("correlation_id")


setup_logging()

logger = structlog.get_logger()
logger.info(
    "logging_initialized",
    environment=settings.ENVIRONMENT.value,
    log_level=settings.LOG_LEVEL,
    log_format=settings.LOG_FORMAT,
)
