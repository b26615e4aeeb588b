"""
Unit tests for logging helpers.
"""

import logging

import pytest

from config import IndexSettings, Settings
from navgraph import HNSWIndex
from navgraph.utils.logging import get_logger, log_duration, set_level, setup_logger


class Collector(logging.Handler):

    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.messages = []

    def emit(self, record):
        self.messages.append(record.getMessage())


@pytest.fixture
def collector():
    handler = Collector()
    root = get_logger("navgraph")
    old_level = root.level
    root.addHandler(handler)
    yield handler
    root.removeHandler(handler)
    root.setLevel(old_level)


class TestLoggers:

    def test_module_logger_uses_package_handlers(self, collector):
        get_logger("navgraph.some.module").warning("careful")
        assert "careful" in collector.messages

    def test_package_logger_does_not_propagate(self):
        assert get_logger("navgraph").propagate is False

    def test_set_level(self, collector):
        set_level("ERROR")
        get_logger("navgraph.x").warning("hidden")
        assert collector.messages == []

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            setup_logger("navgraph-test", level="LOUD")

    def test_log_duration(self, collector):
        set_level("DEBUG")
        with log_duration(get_logger("navgraph.timing"), "work"):
            pass
        assert any(m.startswith("work took") for m in collector.messages)

    def test_settings_apply_level(self, collector):
        settings = Settings(index=IndexSettings(dimensions=2), log_level="WARNING")
        HNSWIndex.from_settings(settings)
        assert get_logger("navgraph").level == logging.WARNING
