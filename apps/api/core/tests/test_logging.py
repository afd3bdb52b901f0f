"""Tests for structured logging setup."""

import json
import logging

import structlog

from apps.api.core.logging import bind_upload_context, clear_upload_context, setup_logging


class TestStructuredLogging:
    """Test structlog outputs structured JSON."""

    def test_setup_logging_configures_structlog(self):
        """After setup, structlog.get_logger() should return a bound logger."""
        setup_logging(log_level="DEBUG", json_output=True)
        logger = structlog.get_logger()
        assert logger is not None
        assert logging.getLogger().level == logging.DEBUG

    def test_setup_logging_dev_mode(self):
        """Dev mode should configure console renderer without errors."""
        setup_logging(log_level="WARNING", json_output=False)
        logger = structlog.get_logger()
        assert logger is not None
        assert logging.getLogger().level == logging.WARNING

    def test_json_output_includes_bound_upload_context(self, capsys):
        setup_logging(log_level="INFO", json_output=True)
        bind_upload_context(request_id="req-1", filename="выписка.csv")
        try:
            structlog.get_logger("ingest-test").info("statement_parsed", transactions=3)
        finally:
            clear_upload_context()

        line = capsys.readouterr().out.strip().splitlines()[-1]
        event = json.loads(line)
        assert event["event"] == "statement_parsed"
        assert event["transactions"] == 3
        assert event["request_id"] == "req-1"
        assert event["filename"] == "выписка.csv"
        assert event["level"] == "info"
