"""
Structured logging for the engine.

structlog runs over stdlib logging. Every event carries the request
correlation ID and acting user when set, so the separate commits of one
lifecycle transition can be followed across log lines.
"""

import logging
import sys
import time
from contextvars import ContextVar
from typing import Any, Optional
from uuid import uuid4

import structlog
from structlog.types import EventDict, Processor

from src.core.config import get_settings

correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="")
actor_id_ctx: ContextVar[Optional[str]] = ContextVar("actor_id", default=None)

# Operations slower than this log at warning level
SLOW_OPERATION_MS = 500

QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "botocore", "aiosqlite")


def add_request_context(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Attach correlation ID and actor ID from the current context."""
    correlation_id = correlation_id_ctx.get()
    if correlation_id:
        event_dict.setdefault("correlation_id", correlation_id)
    actor_id = actor_id_ctx.get()
    if actor_id:
        event_dict.setdefault("actor_id", actor_id)
    return event_dict


def build_processors(console: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_request_context,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if console:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors.append(structlog.processors.JSONRenderer())
    return processors


def configure_logging() -> None:
    """
    Configure structlog and the stdlib root logger.

    Development gets a colored console renderer; every other environment
    emits one JSON object per line.
    """
    settings = get_settings()

    structlog.configure(
        processors=build_processors(console=settings.is_development),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """
    Set the correlation ID for the current request.

    Returns:
        The given ID, or a new UUID when none was given
    """
    correlation_id = correlation_id or str(uuid4())
    correlation_id_ctx.set(correlation_id)
    return correlation_id


def get_correlation_id() -> str:
    return correlation_id_ctx.get()


def set_actor_id(actor_id: Optional[str]) -> None:
    actor_id_ctx.set(actor_id)


def clear_context() -> None:
    """Reset request context so it does not leak into the next request."""
    correlation_id_ctx.set("")
    actor_id_ctx.set(None)


class PerformanceLogger:
    """
    Times a block and logs its outcome.

    Failures log at error level with the exception type; successful blocks
    slower than ``SLOW_OPERATION_MS`` log at warning level.
    """

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        operation: str,
        **context: Any,
    ):
        self.logger = logger
        self.operation = operation
        self.context = context
        self.start_time = 0.0

    def __enter__(self) -> "PerformanceLogger":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        duration_ms = round((time.perf_counter() - self.start_time) * 1000, 2)

        if exc_type is not None:
            self.logger.error(
                "Operation failed",
                operation=self.operation,
                duration_ms=duration_ms,
                error_type=exc_type.__name__,
                **self.context,
            )
            return

        log = self.logger.warning if duration_ms > SLOW_OPERATION_MS else self.logger.info
        log(
            "Operation completed",
            operation=self.operation,
            duration_ms=duration_ms,
            **self.context,
        )


def log_performance(
    logger: structlog.stdlib.BoundLogger,
    operation: str,
    **context: Any,
) -> PerformanceLogger:
    """
    Example:
        >>> with log_performance(logger, "transaction_scan", window=1000):
        ...     events = await log.latest_window(1000)
    """
    return PerformanceLogger(logger, operation, **context)
