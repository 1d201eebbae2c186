from __future__ import annotations

import logging

import pytest

from record_store.logging_setup import ROOT_LOGGER_NAME, setup_logging


@pytest.fixture(autouse=True)
def restore_logger():
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    handlers = list(logger.handlers)
    level = logger.level
    yield
    setup_logging("WARNING")
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)


def test_setup_logging_is_idempotent():
    logger = setup_logging("DEBUG")
    count = len(logger.handlers)

    setup_logging("DEBUG")

    assert len(logger.handlers) == count
    assert logger.level == logging.DEBUG


def test_file_logging_writes_records(tmp_path):
    log_path = tmp_path / "logs" / "record_store.log"
    setup_logging("INFO", log_file_enabled=True, log_file_path=str(log_path))

    logging.getLogger("record_store.db").info("store db path: %s", "x.db")
    for handler in logging.getLogger(ROOT_LOGGER_NAME).handlers:
        handler.flush()

    assert "store db path: x.db" in log_path.read_text(encoding="utf-8")


def test_unknown_level_is_rejected():
    with pytest.raises(ValueError):
        setup_logging("LOUD")


def test_file_logging_requires_path():
    with pytest.raises(ValueError):
        setup_logging("INFO", log_file_enabled=True)
