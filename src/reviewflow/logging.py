"""Structured logging configuration for Reviewflow.

This module configures structlog with support for:
- JSON and console output formats
- File rotation based on size
- Correlation IDs for request tracing
- Entity context binding for workflow operations

The logging system integrates structlog with Python's stdlib logging
for handlers (file rotation), while using structlog exclusively for
actual log emission.

Example usage:
    >>> from reviewflow.config import LoggingConfig
    >>> from reviewflow.logging import setup_logging, get_logger, bind_entity_context
    >>>
    >>> setup_logging(LoggingConfig(level="INFO", format="json"))
    >>> logger = get_logger(__name__)
    >>> bind_entity_context(entity_type="idea", entity_id="3f0c...")
    >>> logger.info("review_recorded", reviewer_id="a1b2...")
"""

from __future__ import annotations

import contextlib
import contextvars
import enum
import logging
import logging.handlers
import sys
from collections.abc import Iterator
from typing import Any

import structlog

from reviewflow.config import LoggingConfig

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)

# Third-party loggers that flood INFO output with per-statement or
# per-request lines of their own.
_NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore", "uvicorn.access")


def add_correlation_id(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add correlation_id to log event if set in context.

    Args:
        logger: Logger instance (unused, required by structlog protocol)
        method_name: Log method name (unused, required by structlog protocol)
        event_dict: Current event dictionary to augment

    Returns:
        Event dictionary with correlation_id added if available
    """
    correlation_id = _correlation_id.get()
    if correlation_id is not None:
        event_dict["correlation_id"] = correlation_id
    return event_dict


def set_correlation_id(correlation_id: str | None) -> None:
    """Set correlation ID for current context."""
    _correlation_id.set(correlation_id)


def get_correlation_id() -> str | None:
    """Get current correlation ID from context."""
    return _correlation_id.get()


def bind_entity_context(entity_type: str, entity_id: str) -> None:
    """Bind the entity under operation to all subsequent logs.

    Args:
        entity_type: Entity type value (idea, challenge, challenge_submission)
        entity_id: Entity identifier as a string
    """
    structlog.contextvars.bind_contextvars(entity_type=entity_type, entity_id=entity_id)


def clear_entity_context() -> None:
    """Remove entity context bound by bind_entity_context."""
    structlog.contextvars.unbind_contextvars("entity_type", "entity_id")


@contextlib.contextmanager
def entity_context(entity_type: str, entity_id: str) -> Iterator[None]:
    """Bind entity context for the duration of a block."""
    with structlog.contextvars.bound_contextvars(entity_type=entity_type, entity_id=entity_id):
        yield


def render_enum_values(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Replace enum members (stages, decisions, roles) with their values."""
    for key, value in event_dict.items():
        if isinstance(value, enum.Enum):
            event_dict[key] = value.value
    return event_dict


def setup_logging(config: LoggingConfig) -> None:
    """Configure structlog with the given configuration.

    Sets up JSON or console rendering, optional size-based file rotation,
    timestamp, level and logger-name processors, the correlation ID processor
    and enum rendering. Chatty library loggers are held at WARNING unless
    the configured level is DEBUG.

    Args:
        config: Logging configuration from ReviewflowConfig
    """
    log_level = getattr(logging, config.level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    if config.file is not None:
        config.file.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.handlers.RotatingFileHandler(
            filename=config.file,
            maxBytes=config.rotation_size_mb * 1024 * 1024,
            backupCount=config.retention_count,
            encoding="utf-8",
        )
    else:
        handler = logging.StreamHandler(sys.stdout)

    handler.setLevel(log_level)
    root_logger.addHandler(handler)

    library_level = log_level if log_level == logging.DEBUG else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    if config.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            # entity_type / entity_id from bind_entity_context
            structlog.contextvars.merge_contextvars,
            add_correlation_id,
            render_enum_values,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Configured structlog BoundLogger instance
    """
    return structlog.get_logger(name)
