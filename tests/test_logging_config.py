"""Tests for the shared logging setup."""

from __future__ import annotations

import logging

import pytest

from httpfeed_core.logging_config import parse_level, setup_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    level, handlers = root.level, list(root.handlers)
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


class TestParseLevel:
    def test_names_are_case_insensitive(self):
        assert parse_level("debug") == logging.DEBUG
        assert parse_level(" Warning ") == logging.WARNING

    def test_numbers_pass_through(self):
        assert parse_level(logging.ERROR) == logging.ERROR
        assert parse_level("15") == 15

    def test_unknown_name_rejected(self):
        with pytest.raises(ValueError, match="Unknown log level"):
            parse_level("loud")


class TestSetupLogging:
    def test_level_from_name(self, root_logger):
        setup_logging("warning")
        assert root_logger.level == logging.WARNING

    def test_repeated_setup_keeps_one_handler(self, root_logger):
        setup_logging("info")
        setup_logging("debug")
        assert len(root_logger.handlers) == 1
        assert root_logger.level == logging.DEBUG

    def test_custom_format(self, root_logger, capsys):
        setup_logging("info", fmt="%(levelname)s:%(name)s:%(message)s")
        logging.getLogger("httpfeed.test").info("hello %s", "feed")
        assert capsys.readouterr().out == "INFO:httpfeed.test:hello feed\n"

    def test_default_format(self, root_logger, capsys):
        setup_logging("info")
        logging.getLogger("httpfeed.test").warning("careful")
        line = capsys.readouterr().out
        assert " | W | httpfeed.test" in line
        assert line.endswith("| careful\n")
