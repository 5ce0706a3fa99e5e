import logging

import pytest
from rich.logging import RichHandler

from marksheet_ai.logs import LOGGER_NAME, LogBuffer, attach_buffer, configure_logging, detach_buffer


@pytest.fixture
def buffer_logger():
    logger = logging.getLogger(f"{LOGGER_NAME}.tests")
    logger.setLevel(logging.DEBUG)
    buffer = attach_buffer(LogBuffer(max_entries=3), logger.name)
    yield logger, buffer
    detach_buffer(buffer, logger.name)


def test_buffer_keeps_newest_first(buffer_logger):
    logger, buffer = buffer_logger
    for number in range(5):
        logger.debug("message %d", number)
    entries = buffer.entries()
    assert [entry.message for entry in entries] == ["message 4", "message 3", "message 2"]
    assert entries[0].level == "DEBUG"
    assert len({entry.id for entry in entries}) == 3


def test_buffer_records_structured_data(buffer_logger):
    logger, buffer = buffer_logger
    logger.info("Calling model", extra={"data": {"model": "gpt-4o"}})
    logger.info("plain")
    first, second = buffer.entries()[1], buffer.entries()[0]
    assert first.data == {"model": "gpt-4o"}
    assert second.data is None


def test_subscribe_and_clear(buffer_logger):
    logger, buffer = buffer_logger
    snapshots = []
    unsubscribe = buffer.subscribe(snapshots.append)
    logger.warning("one")
    buffer.clear()
    unsubscribe()
    logger.warning("two")
    assert [[entry.message for entry in snapshot] for snapshot in snapshots] == [["one"], []]
    assert [entry.message for entry in buffer.entries()] == ["two"]


def test_configure_logging_replaces_rich_handler():
    logger = logging.getLogger(LOGGER_NAME)
    try:
        configure_logging(debug=False)
        configure_logging(debug=True)
        assert sum(isinstance(handler, RichHandler) for handler in logger.handlers) == 1
        assert logger.level == logging.DEBUG
        configure_logging(debug=False)
        assert logger.level == logging.INFO
    finally:
        for handler in list(logger.handlers):
            if isinstance(handler, RichHandler):
                logger.removeHandler(handler)
        logger.setLevel(logging.NOTSET)
