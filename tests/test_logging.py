"""Tests for the logging setup."""

import logging

import pytest

from komic import logging_config


@pytest.fixture
def restore_root():
    root = logging.getLogger()
    level = root.level
    yield root
    for handler in list(logging_config._handlers):
        root.removeHandler(handler)
        handler.close()
    logging_config._handlers.clear()
    root.setLevel(level)


def test_setup_writes_to_the_log_file(restore_root, tmp_path):
    log_file = logging_config.setup_logging("warning", tmp_path / "logs" / "komic.log")

    logging_config.get_logger("komic.test").debug("chapter 12 published")

    assert log_file.exists()
    assert "chapter 12 published" in log_file.read_text(encoding="utf-8")
    assert logging_config._handlers[1].level == logging.WARNING


def test_setup_twice_replaces_handlers(restore_root, tmp_path):
    logging_config.setup_logging("INFO", tmp_path / "first.log")
    logging_config.setup_logging("INFO", tmp_path / "second.log")

    installed = [h for h in restore_root.handlers if h in logging_config._handlers]
    assert len(installed) == 2
    assert logging.getLogger("httpx").level == logging.WARNING


def test_level_comes_from_environment(restore_root, tmp_path, monkeypatch):
    monkeypatch.setenv("KOMIC_LOG_LEVEL", "error")

    logging_config.setup_logging(log_file=tmp_path / "komic.log")

    assert logging_config._handlers[1].level == logging.ERROR
