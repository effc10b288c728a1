"""Tests for logger setup."""

import logging
from unittest.mock import patch

from tunesync.utils.logging import setup_logger

def test_setup_logger_console_only():
    with patch.dict("os.environ", {"LOG_LEVEL": "debug"}, clear=False):
        logger = setup_logger("tunesync.tests.console")

    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 1
    assert "%(funcName)s:%(lineno)d" in logger.handlers[0].formatter._fmt

def test_setup_logger_file_handler(tmp_path):
    with patch.dict("os.environ", {"LOG_DIR": str(tmp_path / "logs")}):
        logger = setup_logger("tunesync.tests.file", level="warning")

    assert logger.level == logging.WARNING
    assert any(isinstance(h, logging.FileHandler) for h in logger.handlers)
    assert len(list((tmp_path / "logs").iterdir())) == 1
    for handler in logger.handlers:
        handler.close()

def test_setup_logger_is_idempotent():
    first = setup_logger("tunesync.tests.repeat")
    second = setup_logger("tunesync.tests.repeat")

    assert first is second
    assert len(second.handlers) == 1
