"""Structured logging configuration for the idempotency coordinator.

Logs are emitted through structlog as event names with key/value context,
rendered as JSON in production and as colored console lines in development.

Events emitted by the coordinator include:
- ``record.saved_in_progress`` / ``record.saved_success`` / ``record.deleted``
- ``record.already_exists`` / ``record.expired`` / ``record.validation_failed``
- ``cache.hit`` / ``cache.miss`` / ``cache.expired``
- ``invocation.transition`` with the NEW/CHECK/IN_PROGRESS/SUCCESS/FAILED state

Examples:
    Configure logging once at startup::

        from idempotent_coordinator.observability.logging import configure_logging

        configure_logging(level="INFO", json_output=True)

    Bind the idempotency key to every log line of an invocation::

        with bound_idempotency_key("orders.create#70c24d88..."):
            logger.info("work.started")

    Output (JSON)::

        {
            "idempotency_key": "orders.create#70c24d88...",
            "event": "work.started",
            "level": "info",
            "timestamp": "2024-01-01T00:00:00.000000Z"
        }
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, emit JSON logs; if False, use console format
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )

    processors: list[object] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,  # type: ignore[arg-type]
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper())),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ from the calling module)
    """
    return structlog.get_logger(name)


@contextmanager
def bound_idempotency_key(idempotency_key: str) -> Iterator[None]:
    """Attach the idempotency key to every log line emitted in this context."""
    with structlog.contextvars.bound_contextvars(idempotency_key=idempotency_key):
        yield
