"""Leveled logging sinks.

A sink is a :class:`Logger`: ``log(level, message)`` filters by the sink's
level and hands the line to ``write(timestamp, pid, level, message)``, which
each sink implements. A sink's level may be unset, in which case nothing is
filtered and reading ``level`` raises :class:`LevelNotSet`.

:class:`SinkHandler` bridges the stdlib ``logging`` tree used throughout the
package to any sink.
"""

import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import IntEnum
from io import StringIO
from pathlib import Path

import click

from .errors import LevelNotSet

NOTICE = 25
TRACE = 5

logging.addLevelName(NOTICE, "NOTICE")
logging.addLevelName(TRACE, "TRACE")


class Level(IntEnum):
    """Sink levels, numbered like their stdlib counterparts."""
    CRITICAL = logging.CRITICAL
    ERROR = logging.ERROR
    WARNING = logging.WARNING
    NOTICE = 25
    INFO = logging.INFO
    DEBUG = logging.DEBUG
    TRACE = 5

    @classmethod
    def parse(cls, name: str) -> "Level":
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown log level '{name}'") from None

    @classmethod
    def from_stdlib(cls, levelno: int) -> "Level":
        """Closest level at or below a stdlib level number."""
        for level in sorted(cls, reverse=True):
            if levelno >= level:
                return level
        return cls.TRACE


def format_line(timestamp: float, pid: int, level: Level, message: str) -> str:
    stamp = datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S%z")
    return f"{stamp} [{pid}] {level.name} {message}"


class Logger(ABC):
    def __init__(self, level: Level | None = None):
        self._level = level

    @property
    def level(self) -> Level:
        if self._level is None:
            raise LevelNotSet(f"{type(self).__name__} has no level set")
        return self._level

    @level.setter
    def level(self, level: Level) -> None:
        self._level = Level(level)

    def unset_level(self) -> None:
        self._level = None

    def is_level_set(self) -> bool:
        return self._level is not None

    def is_enabled_for(self, level: Level) -> bool:
        return self._level is None or level >= self._level

    def log(self, level: Level, message: str) -> None:
        if self.is_enabled_for(level):
            self.log_line(level, message)

    def log_line(self, level: Level, message: str) -> None:
        """Write one line now, bypassing the level filter."""
        self.write(time.time(), os.getpid(), level, message)

    @abstractmethod
    def write(self, timestamp: float, pid: int, level: Level, message: str) -> None:
        ...

    def critical(self, message: str) -> None:
        self.log(Level.CRITICAL, message)

    def error(self, message: str) -> None:
        self.log(Level.ERROR, message)

    def warning(self, message: str) -> None:
        self.log(Level.WARNING, message)

    def notice(self, message: str) -> None:
        self.log(Level.NOTICE, message)

    def info(self, message: str) -> None:
        self.log(Level.INFO, message)

    def debug(self, message: str) -> None:
        self.log(Level.DEBUG, message)

    def trace(self, message: str) -> None:
        self.log(Level.TRACE, message)


class MemoryLogger(Logger):
    """Keeps lines in a string buffer."""

    def __init__(self, level: Level | None = None):
        super().__init__(level)
        self._buffer = StringIO()
        self._lock = threading.Lock()

    def write(self, timestamp: float, pid: int, level: Level, message: str) -> None:
        with self._lock:
            self._buffer.write(format_line(timestamp, pid, level, message) + "\n")

    def getvalue(self) -> str:
        with self._lock:
            return self._buffer.getvalue()

    @property
    def lines(self) -> list[str]:
        return self.getvalue().splitlines()


class FileLogger(Logger):
    """Appends lines to a file, creating parent directories on first write."""

    def __init__(self, path: Path, level: Level | None = None):
        super().__init__(level)
        self.path = Path(path)
        self._lock = threading.Lock()

    def write(self, timestamp: float, pid: int, level: Level, message: str) -> None:
        line = format_line(timestamp, pid, level, message)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")


class ConsoleLogger(Logger):
    """Echoes messages to stderr; errors and worse are prefixed."""

    def write(self, timestamp: float, pid: int, level: Level, message: str) -> None:
        if level >= Level.ERROR:
            message = f"{level.name.capitalize()}: {message}"
        click.echo(message, err=True)


class SinkHandler(logging.Handler):
    """Forwards stdlib log records to a sink, keeping their time and pid."""

    def __init__(self, sink: Logger):
        super().__init__(logging.NOTSET)
        self.sink = sink

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = Level.from_stdlib(record.levelno)
            if self.sink.is_enabled_for(level):
                self.sink.write(record.created, record.process or os.getpid(), level, self.format(record))
        except Exception:
            self.handleError(record)


def setup_logging(debug: bool = False, sink: Logger | None = None) -> logging.Logger:
    """Wire the ``pkgtxn`` logger to a sink.

    Without a sink, warnings (or everything with ``debug``) go to the
    console. Calling it again replaces the previous wiring.
    """
    logger = logging.getLogger("pkgtxn")
    for handler in list(logger.handlers):
        if isinstance(handler, SinkHandler):
            logger.removeHandler(handler)

    if sink is None:
        sink = ConsoleLogger(Level.DEBUG if debug else Level.WARNING)
    elif debug and sink.is_level_set() and sink.level > Level.DEBUG:
        sink.level = Level.DEBUG

    handler = SinkHandler(sink)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s" if debug else "%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(TRACE if debug else logging.INFO)
    return logger


__all__ = [
    "ConsoleLogger",
    "FileLogger",
    "Level",
    "Logger",
    "MemoryLogger",
    "NOTICE",
    "SinkHandler",
    "TRACE",
    "format_line",
    "setup_logging",
]
