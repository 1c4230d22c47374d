"""
Structured logging for the oracle validation engine.

Events carry the emitting ``component``. Events logged inside
``validation_context`` also carry the symbols and cache key of the
validation pass in progress, including events from collector tasks spawned
within it.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Sequence

import structlog
from structlog.types import Processor

from .config import MonitoringConfig


class OracleLogger:
    """Logger for one engine component."""

    def __init__(self, component: str):
        self.logger = structlog.get_logger(component)
        self.component = component

    def info(self, message: str, **context: Any) -> None:
        self.logger.info(message, component=self.component, **context)

    def warning(self, message: str, **context: Any) -> None:
        self.logger.warning(message, component=self.component, **context)

    def error(self, message: str, **context: Any) -> None:
        self.logger.error(message, component=self.component, **context)

    def debug(self, message: str, **context: Any) -> None:
        self.logger.debug(message, component=self.component, **context)


@contextmanager
def validation_context(symbols: Sequence[str], cache_key: str) -> Iterator[None]:
    """Tag every event logged during one validation pass."""
    with structlog.contextvars.bound_contextvars(
        symbols=list(symbols),
        cache_key=cache_key,
    ):
        yield


def configure_logging(monitoring: Optional[MonitoringConfig] = None) -> None:
    """Install the structlog processor chain for the given monitoring settings."""
    monitoring = monitoring or MonitoringConfig()
    level = getattr(logging, monitoring.log_level.upper())

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if monitoring.json_logs:
        processors: list[Processor] = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


configure_logging()
