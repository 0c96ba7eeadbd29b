import logging
import os

import pytest

from pkgtxn.errors import LevelNotSet
from pkgtxn.logger import (
    ConsoleLogger,
    FileLogger,
    Level,
    MemoryLogger,
    SinkHandler,
    format_line,
    setup_logging,
)


@pytest.fixture
def restore_pkgtxn_logger():
    logger = logging.getLogger("pkgtxn")
    handlers, level = list(logger.handlers), logger.level
    yield logger
    logger.handlers = handlers
    logger.setLevel(level)


class TestLevel:
    """Test level parsing and stdlib mapping."""

    def test_parse(self):
        assert Level.parse("notice") is Level.NOTICE
        assert Level.parse(" Trace ") is Level.TRACE
        with pytest.raises(ValueError, match="Unknown log level 'loud'"):
            Level.parse("loud")

    def test_from_stdlib(self):
        assert Level.from_stdlib(logging.ERROR) is Level.ERROR
        assert Level.from_stdlib(35) is Level.WARNING
        assert Level.from_stdlib(1) is Level.TRACE

    def test_ordering(self):
        assert Level.TRACE < Level.DEBUG < Level.INFO < Level.NOTICE < Level.WARNING < Level.ERROR < Level.CRITICAL


class TestLoggerLevel:
    """Test level handling shared by every sink."""

    def test_unset_level_raises(self):
        sink = MemoryLogger()
        assert not sink.is_level_set()
        with pytest.raises(LevelNotSet):
            _ = sink.level

    def test_set_and_unset(self):
        sink = MemoryLogger()
        sink.level = Level.INFO
        assert sink.level is Level.INFO
        sink.unset_level()
        with pytest.raises(LevelNotSet):
            _ = sink.level

    def test_unset_level_logs_everything(self):
        sink = MemoryLogger()
        sink.trace("deep")
        sink.critical("bad")
        assert len(sink.lines) == 2

    def test_filtering(self):
        sink = MemoryLogger(Level.NOTICE)
        sink.info("hidden")
        sink.notice("shown")
        sink.error("also shown")
        assert [line.split(" ", 2)[2] for line in sink.lines] == ["NOTICE shown", "ERROR also shown"]

    def test_log_line_bypasses_filter(self):
        sink = MemoryLogger(Level.ERROR)
        sink.log_line(Level.DEBUG, "forced")
        assert sink.lines[0].endswith("DEBUG forced")


class TestSinks:
    """Test line format and sink output."""

    def test_format_line(self):
        assert format_line(0, 42, Level.INFO, "hello") == "1970-01-01T00:00:00+0000 [42] INFO hello"

    def test_memory_logger_includes_pid(self):
        sink = MemoryLogger()
        sink.warning("careful")
        assert f"[{os.getpid()}] WARNING careful" in sink.getvalue()

    def test_file_logger_appends(self, temp_dir):
        path = temp_dir / "logs" / "pkgtxn.log"
        sink = FileLogger(path, Level.INFO)
        sink.info("first")
        sink.debug("skipped")
        FileLogger(path).error("second")
        lines = path.read_text().splitlines()
        assert len(lines) == 2
        assert lines[0].endswith("INFO first")
        assert lines[1].endswith("ERROR second")

    def test_console_logger_prefixes_errors(self, capsys):
        sink = ConsoleLogger(Level.INFO)
        sink.info("working")
        sink.error("failed")
        assert capsys.readouterr().err == "working\nError: failed\n"


class TestStdlibBridge:
    """Test routing the logging tree into sinks."""

    def test_sink_handler(self):
        sink = MemoryLogger(Level.WARNING)
        logger = logging.getLogger("pkgtxn.tests.bridge")
        logger.setLevel(logging.DEBUG)
        handler = SinkHandler(sink)
        logger.addHandler(handler)
        try:
            logger.info("quiet")
            logger.warning("loud")
            logger.log(25, "notice level")
        finally:
            logger.removeHandler(handler)
        assert [line.split(" ", 3)[3] for line in sink.lines] == ["loud"]

    def test_setup_logging_replaces_handlers(self, restore_pkgtxn_logger):
        first, second = MemoryLogger(Level.INFO), MemoryLogger(Level.INFO)
        setup_logging(sink=first)
        setup_logging(sink=second)
        logging.getLogger("pkgtxn.goal").info("resolved")

        assert first.lines == []
        assert second.lines[0].endswith("INFO resolved")
        sinks = [h for h in restore_pkgtxn_logger.handlers if isinstance(h, SinkHandler)]
        assert len(sinks) == 1

    def test_setup_logging_debug(self, restore_pkgtxn_logger):
        sink = MemoryLogger(Level.WARNING)
        setup_logging(debug=True, sink=sink)
        logging.getLogger("pkgtxn.index").debug("details")
        assert sink.level is Level.DEBUG
        assert sink.lines[0].endswith("DEBUG pkgtxn.index: details")
