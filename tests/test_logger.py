"""Unit tests for structured JSON logging."""
import sys
import json
import logging
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from logger import JSONFormatter, setup_logging


def _record(msg="Turn delivered", level=logging.INFO, exc_info=None, **extra):
    record = logging.LogRecord("services.turn_orchestrator", level, __file__, 10, msg, (), exc_info)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:

    def test_basic_fields(self):
        data = json.loads(JSONFormatter().format(_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "services.turn_orchestrator"
        assert data["message"] == "Turn delivered"
        assert data["timestamp"].endswith("Z")
        assert "exception" not in data

    def test_extra_fields_are_included(self):
        data = json.loads(JSONFormatter().format(_record(attempt=2, delay_s=4.0, error_code="API_ERROR")))

        assert data["attempt"] == 2
        assert data["delay_s"] == 4.0
        assert data["error_code"] == "API_ERROR"

    def test_reserved_attributes_are_skipped(self):
        data = json.loads(JSONFormatter().format(_record()))

        for key in ["args", "msg", "levelno", "pathname", "lineno"]:
            assert key not in data

    def test_non_serializable_extra(self):
        data = json.loads(JSONFormatter().format(_record(path=Path("/tmp/x"))))

        assert data["path"] == "/tmp/x"

    def test_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            exc_info = sys.exc_info()

        data = json.loads(JSONFormatter().format(_record(level=logging.ERROR, exc_info=exc_info)))

        assert "RuntimeError: boom" in data["exception"]


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)


def test_setup_logging_replaces_handlers(restore_root_logger):
    root = restore_root_logger
    root.addHandler(logging.NullHandler())

    setup_logging("WARNING")

    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, JSONFormatter)
    assert root.level == logging.WARNING
