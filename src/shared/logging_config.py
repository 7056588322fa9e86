"""
Logging configuration for the Synapse Feed Cache.

Provides structured logging with correlation IDs. Every module logs through
structlog; this module routes structlog events into the stdlib root handler
and picks a renderer per environment.
"""

import logging
import sys
from contextvars import ContextVar
from typing import Optional, Union
from uuid import uuid4

import structlog

# Context variable for correlation tracking
correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = {
    'httpx': logging.WARNING,
    'httpcore': logging.WARNING,
    'sqlalchemy': logging.WARNING,
    'aiosqlite': logging.WARNING,
    'asyncio': logging.WARNING,
    'uvicorn': logging.WARNING,
}


def add_correlation_id(logger, method_name, event_dict):
    """Merge the current correlation id into every event."""
    value = correlation_id.get()
    if value and 'correlation_id' not in event_dict:
        event_dict['correlation_id'] = value
    return event_dict


def setup_logging(level: Union[str, int] = logging.INFO, format_type: str = 'console') -> None:
    """
    Configure stdlib logging and structlog.

    Args:
        level: Logging level name or number
        format_type: 'json' for machine-readable output, 'console' for humans
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        add_correlation_id,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt='iso', utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if format_type == 'json':
        renderer = structlog.processors.JSONRenderer()
        shared_processors.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for logger_name, logger_level in NOISY_LOGGERS.items():
        logging.getLogger(logger_name).setLevel(logger_level)

    structlog.get_logger(__name__).info(
        "Logging system initialized",
        level=logging.getLevelName(level),
        format_type=format_type,
    )


def setup_logging_from_settings(settings) -> None:
    """Configure logging from a Settings instance."""
    format_type = settings.monitoring.log_format
    if settings.is_production():
        format_type = 'json'
    setup_logging(level=settings.monitoring.log_level.value, format_type=format_type)


class CorrelationContext:
    """Context manager that sets the correlation id for the enclosed work."""

    def __init__(self, correlation_id_value: str = None):
        self.correlation_id_value = correlation_id_value or str(uuid4())
        self.token = None

    def __enter__(self):
        self.token = correlation_id.set(self.correlation_id_value)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.token:
            correlation_id.reset(self.token)


def get_correlation_id() -> Optional[str]:
    """Get current correlation ID."""
    return correlation_id.get()
