"""
Logging utilities for Matrix Python agents.
"""

import logging
import os
import sys
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import Processor

if TYPE_CHECKING:
    from .config import MatrixConfig


class AgentLogger:
    """Agent-specific logger with context."""

    def __init__(self, agent_name: str):
        self.logger = structlog.get_logger(agent_name)
        self.agent_name = agent_name

    def info(self, message: str, **context: Any) -> None:
        """Log info message."""
        self.logger.info(message, agent=self.agent_name, **context)

    def warning(self, message: str, **context: Any) -> None:
        """Log warning message."""
        self.logger.warning(message, agent=self.agent_name, **context)

    def error(self, message: str, **context: Any) -> None:
        """Log error message."""
        self.logger.error(message, agent=self.agent_name, **context)

    def debug(self, message: str, **context: Any) -> None:
        """Log debug message."""
        self.logger.debug(message, agent=self.agent_name, **context)

    def exception(self, message: str, **context: Any) -> None:
        """Log exception with traceback."""
        self.logger.exception(message, agent=self.agent_name, **context)

    def bind(self, **context: Any) -> "AgentLogger":
        """Create a new logger with additional bound context."""
        new_logger = AgentLogger(self.agent_name)
        new_logger.logger = self.logger.bind(**context)
        return new_logger


def configure_logging(
    level: str = "INFO",
    json_format: bool = False,
) -> None:
    """Configure structured logging for the application."""

    # Set up standard logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors: list[Processor] = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        # Import-time loggers must see configure_from_config()
        cache_logger_on_first_use=False,
    )


def configure_from_config(config: "MatrixConfig") -> None:
    """Apply the monitoring section of a MatrixConfig."""
    configure_logging(
        level=config.monitoring.log_level,
        json_format=config.monitoring.json_logs or config.is_production(),
    )


# Configure on import with environment defaults
configure_logging(
    level=os.environ.get("MATRIX_MONITORING__LOG_LEVEL", "INFO"),
    json_format=os.environ.get("MATRIX_MONITORING__JSON_LOGS", "").lower() in ("1", "true"),
)
