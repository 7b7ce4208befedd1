"""Structured logging utilities for the SSH key enforcer.

All log lines are emitted through structlog. Key-lifecycle handlers bind an
``event_id`` for the duration of one platform event so that every line written
while handling it (engine, ledger, platform client) can be correlated.
"""

import logging
import sys
import time
from contextvars import ContextVar
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

# Context variable for platform event tracking
event_id_var: ContextVar[Optional[str]] = ContextVar("event_id", default=None)


def add_event_id(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add event_id to log context if available."""
    event_id = event_id_var.get()
    if event_id:
        event_dict["event_id"] = event_id
    return event_dict


def add_timestamp(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add epoch timestamp to log entries."""
    event_dict["timestamp"] = time.time()
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True
) -> None:
    """Configure structured logging for the service.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output JSON format. If False, use console format.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_event_id,
        add_timestamp,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.extend([
            structlog.dev.ConsoleRenderer(colors=True),
        ])

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "enforcer") -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Logger name (typically module name)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


class PerformanceLogger:
    """Context manager for timing a batch operation (e.g. the expiry sweep)."""

    def __init__(
        self,
        operation: str,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
        warn_after_ms: float = 60_000,
    ):
        self.operation = operation
        self.logger = logger or get_logger()
        self.warn_after_ms = warn_after_ms
        self.start_time: float = 0
        self.end_time: float = 0

    def __enter__(self) -> "PerformanceLogger":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.end_time = time.perf_counter()
        duration_ms = (self.end_time - self.start_time) * 1000

        if exc_type is not None:
            self.logger.error(
                f"{self.operation}_failed",
                operation=self.operation,
                duration_ms=duration_ms,
                error=str(exc_val),
            )
        else:
            log_method = self.logger.warning if duration_ms > self.warn_after_ms else self.logger.info
            log_method(
                f"{self.operation}_completed",
                operation=self.operation,
                duration_ms=duration_ms,
            )

    @property
    def duration_ms(self) -> float:
        """Get duration in milliseconds."""
        if self.end_time == 0:
            return (time.perf_counter() - self.start_time) * 1000
        return (self.end_time - self.start_time) * 1000


def set_event_id(event_id: str) -> None:
    """Bind a platform event ID to all subsequent logs in this context."""
    event_id_var.set(event_id)


def clear_event_id() -> None:
    """Clear event ID from context."""
    event_id_var.set(None)


# Initialize logging with sensible defaults; reconfigured by main.py from env
configure_logging()
