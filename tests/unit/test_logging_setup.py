"""
Unit tests for logging setup.
"""

import logging

import json_log_formatter
import pytest

from persistence.storeguard.config import GuardConfig
from persistence.storeguard.main import setup_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    saved_handlers = root.handlers[:]
    saved_level = root.level
    yield root
    for handler in root.handlers:
        if handler not in saved_handlers:
            handler.close()
    root.handlers = saved_handlers
    root.setLevel(saved_level)


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_json_format_by_default(self, root_logger):
        setup_logging(GuardConfig.from_env({}))

        assert len(root_logger.handlers) == 1
        assert isinstance(root_logger.handlers[0].formatter, json_log_formatter.JSONFormatter)
        assert root_logger.level == logging.INFO

    def test_text_format(self, root_logger):
        setup_logging(GuardConfig.from_env({"LOG_FORMAT": "text", "LOG_LEVEL": "debug"}))

        formatter = root_logger.handlers[0].formatter
        assert not isinstance(formatter, json_log_formatter.JSONFormatter)
        assert root_logger.level == logging.DEBUG

    def test_log_file_handler(self, root_logger, tmp_dir):
        log_file = tmp_dir / "guard.log"

        setup_logging(GuardConfig.from_env({"LOG_FILE": str(log_file)}))
        logging.getLogger("persistence.storeguard").warning("written to file")
        for handler in root_logger.handlers:
            handler.flush()

        assert any(isinstance(h, logging.FileHandler) for h in root_logger.handlers)
        assert "written to file" in log_file.read_text()

    def test_no_log_file_in_test_mode(self, root_logger, tmp_dir):
        log_file = tmp_dir / "guard.log"

        setup_logging(GuardConfig.from_env({"APP_ENV": "test", "LOG_FILE": str(log_file)}))

        assert not any(isinstance(h, logging.FileHandler) for h in root_logger.handlers)
        assert not log_file.exists()
