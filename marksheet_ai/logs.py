"""
Logging setup for the CLI and a bounded in-memory buffer of recent debug
entries that front ends can display.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "marksheet_ai"
DEFAULT_BUFFER_SIZE = 100


@dataclass(frozen=True)
class LogEntry:
    id: str
    timestamp: float
    level: str
    message: str
    data: Any = None


Listener = Callable[[List[LogEntry]], None]


class LogBuffer(logging.Handler):
    """
    Keep the most recent log entries, newest first.

    Structured payloads can be attached with ``logger.debug(msg, extra={"data": ...})``.
    """

    def __init__(self, max_entries: int = DEFAULT_BUFFER_SIZE, level: int = logging.DEBUG) -> None:
        super().__init__(level)
        self.max_entries = max_entries
        self._entries: List[LogEntry] = []
        self._listeners: List[Listener] = []

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = LogEntry(
                id=uuid.uuid4().hex[:10],
                timestamp=record.created or time.time(),
                level=record.levelname,
                message=record.getMessage(),
                data=getattr(record, "data", None),
            )
        except Exception:
            self.handleError(record)
            return
        self._entries = [entry, *self._entries][: self.max_entries]
        self._notify()

    def entries(self) -> List[LogEntry]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries = []
        self._notify()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.entries()
        for listener in list(self._listeners):
            listener(snapshot)


def configure_logging(debug: bool = False, console: Optional[Console] = None) -> logging.Logger:
    """
    Route the package logger to a Rich handler; DEBUG when `debug` is set.

    Calling it again replaces the previously installed Rich handler.
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=debug,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    return logger


def attach_buffer(buffer: LogBuffer, logger_name: str = LOGGER_NAME) -> LogBuffer:
    logging.getLogger(logger_name).addHandler(buffer)
    return buffer


def detach_buffer(buffer: LogBuffer, logger_name: str = LOGGER_NAME) -> None:
    logging.getLogger(logger_name).removeHandler(buffer)
