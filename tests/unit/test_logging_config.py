"""Unit tests for logging setup."""
import logging

import structlog

from tradeloop.core.config import LoggingConfig
from tradeloop.utils.logging_config import setup_logging


def test_file_handler_added(tmp_path):
    path = tmp_path / "logs" / "tradeloop.log"
    root = logging.getLogger()
    before = list(root.handlers)

    try:
        setup_logging(LoggingConfig(_env_file=None, log_level="DEBUG", log_file=str(path)))

        added = [h for h in root.handlers if h not in before]
        file_handlers = [h for h in added if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 1
        assert file_handlers[0].level == logging.DEBUG
        assert path.parent.is_dir()
    finally:
        for handler in root.handlers[:]:
            if handler not in before:
                root.removeHandler(handler)
                handler.close()
        structlog.reset_defaults()


def test_stdout_only_by_default():
    root = logging.getLogger()
    before = list(root.handlers)

    try:
        setup_logging(LoggingConfig(_env_file=None))
        added = [h for h in root.handlers if h not in before]
        assert not any(isinstance(h, logging.FileHandler) for h in added)
    finally:
        for handler in root.handlers[:]:
            if handler not in before:
                root.removeHandler(handler)
        structlog.reset_defaults()
