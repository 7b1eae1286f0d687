"""Structured JSON logging for the tracker components, built on structlog."""

import logging
import sys

import structlog

SERVICE_NAME = "traffic-tracker"

_configured_level: int | None = None


def configure_logging(component: str, level: str = "INFO") -> structlog.BoundLogger:
    """Configure structlog once per level and return a logger bound to the component.

    Every tracker component calls this from its constructor; repeated calls with
    the same level only hand out a new bound logger.
    """
    global _configured_level
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    if _configured_level != numeric_level:
        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.dev.set_exc_info,
                structlog.processors.format_exc_info,
                structlog.processors.TimeStamper(fmt="iso", utc=True),
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
            cache_logger_on_first_use=False,
        )
        _configured_level = numeric_level
    return structlog.get_logger(service=SERVICE_NAME, component=component)
