"""Tests for logging setup."""

import json
import logging

from batchserve.config import LoggingConfig
from batchserve.logging import ConsoleFormatter, JSONFormatter, get_logger, setup_logging


def make_record(message="batch cut"):
    return logging.LogRecord("batchserve.test", logging.INFO, __file__, 10, message, None, None)


class TestFormatters:
    def test_json_formatter(self):
        data = json.loads(JSONFormatter().format(make_record()))
        assert data["level"] == "INFO"
        assert data["logger"] == "batchserve.test"
        assert data["message"] == "batch cut"

    def test_console_formatter(self):
        line = ConsoleFormatter().format(make_record())
        assert "INFO" in line
        assert "batch cut" in line


class TestSetupLogging:
    def test_json_handler(self):
        setup_logging(LoggingConfig(log_level="WARNING", log_format="json"), force=True)
        root = logging.getLogger()

        assert root.level == logging.WARNING
        assert isinstance(root.handlers[0].formatter, JSONFormatter)

        setup_logging(LoggingConfig(), force=True)

    def test_get_logger_accepts_key_values(self):
        setup_logging(LoggingConfig(), force=True)
        get_logger("batchserve.test").info("Structured event", batch_id="batch_000001")
