"""
Structured Logging for BatchServe

This module configures structlog on top of the standard library so that the
scheduler, backend and transport emit key-value events that render either as
colored console lines or as JSON documents.
"""

import json
import logging
import sys
from datetime import datetime
from typing import Optional

import structlog

from .config import LoggingConfig, get_config

_configured = False


class JSONFormatter(logging.Formatter):
    """JSON formatter for records emitted by non-structlog libraries."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry)


class ConsoleFormatter(logging.Formatter):
    """Console formatter with level colors."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
        "GRAY": "\033[90m",
    }

    def format(self, record: logging.LogRecord) -> str:
        level_color = self.COLORS.get(record.levelname, "")
        reset_color = self.COLORS["RESET"]
        gray_color = self.COLORS["GRAY"]

        timestamp = datetime.utcnow().strftime("%H:%M:%S.%f")[:-3]

        message = record.getMessage()
        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"

        return (
            f"{gray_color}{timestamp}{reset_color} "
            f"{level_color}{record.levelname:8}{reset_color} "
            f"{record.name:28} "
            f"{message}"
        )


def setup_logging(config: Optional[LoggingConfig] = None, force: bool = False):
    """Setup structured logging for BatchServe."""
    global _configured
    if _configured and not force:
        return

    config = config or get_config().logging
    json_output = config.log_format == "json"

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            (
                structlog.processors.JSONRenderer()
                if json_output
                else structlog.dev.ConsoleRenderer(colors=False)
            ),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.log_level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(JSONFormatter() if json_output else ConsoleFormatter())
    root_logger.addHandler(console_handler)

    _configured = True

    logging.getLogger("batchserve").info(
        f"Logging initialized - log_level={config.log_level}, log_format={config.log_format}"
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
