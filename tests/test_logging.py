# tests/test_logging.py

import logging
import sys

import pytest
import structlog

from frequencia.config import AppConfig
from frequencia.logging import setup_logging, setup_logging_from_config


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    urllib3_level = logging.getLogger("urllib3").level
    yield
    root.handlers = handlers
    root.setLevel(level)
    logging.getLogger("urllib3").setLevel(urllib3_level)
    structlog.reset_defaults()


def test_stdlib_logs_go_to_stderr():
    setup_logging(log_level="info")

    root = logging.getLogger()
    assert root.level == logging.INFO
    assert [h.stream for h in root.handlers] == [sys.stderr]
    assert logging.getLogger("urllib3").level == logging.WARNING


def test_debug_level_lets_request_logs_through():
    setup_logging_from_config(AppConfig(log_level="DEBUG", log_json=True))

    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("urllib3").level == logging.DEBUG


def test_unknown_level_falls_back_to_info():
    setup_logging(log_level="chatty")
    assert logging.getLogger().level == logging.INFO
