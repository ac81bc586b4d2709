"""
Tests for logging setup and schema validation helpers.
"""

import json
import logging

import pytest

from promptwire.agents.utils import GenerationLogFilter, LogLevel, init_logging, validate_data


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


class TestGenerationLogFilter:
    """Tests for the record normalizing filter."""

    def test_adds_provider_placeholder(self):
        """Test records without provider get '-'."""
        record = logging.LogRecord("promptwire.test", logging.INFO, __file__, 1, "msg", None, None)

        assert GenerationLogFilter().filter(record)
        assert record.provider == "-"

    def test_keeps_provider_and_renames_root(self):
        """Test provider is kept and root becomes DefaultLogger."""
        record = logging.LogRecord("root", logging.INFO, __file__, 1, "msg", None, None)
        record.provider = "openai"

        GenerationLogFilter().filter(record)

        assert record.provider == "openai"
        assert record.name == "DefaultLogger"


class TestInitLogging:
    """Tests for init_logging."""

    def test_plain_handler(self, restore_root_logger):
        """Test a single filtered stream handler is installed."""
        init_logging(level=logging.DEBUG)

        assert restore_root_logger.level == logging.DEBUG
        assert len(restore_root_logger.handlers) == 1
        assert any(isinstance(f, GenerationLogFilter) for f in restore_root_logger.handlers[0].filters)

    def test_log_level_enum(self, restore_root_logger):
        """Test a LogLevel is mapped to a logging level."""
        init_logging(level=LogLevel.ERRORS)

        assert restore_root_logger.level == logging.ERROR
        assert LogLevel.NONE.to_logging_level() > logging.CRITICAL

    def test_json_format(self, restore_root_logger):
        """Test JSON output includes the provider field."""
        init_logging(json_format=True)
        handler = restore_root_logger.handlers[0]
        record = logging.LogRecord("promptwire.x", logging.INFO, __file__, 1, "hello", None, None)
        handler.filter(record)

        data = json.loads(handler.format(record))

        assert data["message"] == "hello"
        assert data["provider"] == "-"


class TestValidateData:
    """Tests for JSON schema validation."""

    SCHEMA = {
        "type": "object",
        "properties": {"answer": {"type": "integer"}},
        "required": ["answer"],
    }

    def test_valid(self):
        """Test valid data passes."""
        assert validate_data({"answer": 5}, self.SCHEMA) == (True, None)

    def test_invalid_reports_path(self):
        """Test the error message names the failing path."""
        is_valid, error = validate_data({"answer": "five"}, self.SCHEMA)

        assert not is_valid
        assert error.startswith("Structured output invalid at 'answer'")

    def test_missing_required(self):
        """Test a top-level failure has no path."""
        is_valid, error = validate_data({}, self.SCHEMA)

        assert not is_valid
        assert error.startswith("Structured output invalid: ")

    def test_no_schema(self):
        """Test a missing schema accepts anything."""
        assert validate_data("anything", None) == (True, None)

    def test_broken_schema(self):
        """Test an invalid schema is reported, not raised."""
        is_valid, error = validate_data({}, {"type": "nonsense"})

        assert not is_valid
        assert error.startswith("Invalid output schema")
