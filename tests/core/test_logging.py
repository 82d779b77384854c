"""Tests for structured logging setup."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from tasksync.core.logging import (
    _NOISE_LOGGERS,
    LOG_FILENAME,
    add_otel_context,
    configure_logging,
)

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    root = logging.getLogger()
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()
    root.setLevel(logging.WARNING)


class TestConfigureLogging:
    def test_sets_root_level_and_single_console_handler(self):
        configure_logging("DEBUG", "text")
        configure_logging("DEBUG", "text")

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1

    def test_unknown_level_falls_back_to_info(self):
        configure_logging("LOUD", "text")
        assert logging.getLogger().level == logging.INFO

    def test_noise_loggers_are_quieted(self):
        configure_logging("DEBUG", "json")
        for name in _NOISE_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_log_root_gets_json_file(self, tmp_path: Path):
        log_root = tmp_path / "logs"
        configure_logging("INFO", "text", log_root)

        logging.getLogger("tasksync.test").info("Created event: %s", "Essay")

        lines = (log_root / LOG_FILENAME).read_text().splitlines()
        record = json.loads(lines[-1])
        assert record["event"] == "Created event: Essay"
        assert record["logger"] == "tasksync.test"
        assert record["level"] == "info"


class TestAddOtelContext:
    def test_no_active_span_leaves_event_untouched(self):
        event_dict = {"event": "test"}
        result = add_otel_context(None, "info", event_dict)
        assert "trace_id" not in result
        assert "span_id" not in result
