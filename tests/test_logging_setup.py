# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Tests for logging setup."""

import json
import logging
import sys
import tempfile
from pathlib import Path

import pytest

from cargo_precache.logging_setup import StructuredFormatter, setup_logging


pytestmark = pytest.mark.usefixtures("restore_root_logger")


def test_setup_logging_creates_directory():
    """Test that setup_logging creates the log directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        log_dir = Path(tmpdir) / "logs" / "nested"
        assert not log_dir.exists()

        setup_logging(log_dir=log_dir, console_output=False)

        assert log_dir.is_dir()
        logging.getLogger().handlers[0].close()


def test_no_log_file_without_log_dir():
    """Test that no file handler is installed when log_dir is None."""
    assert setup_logging(console_output=False) is None
    assert logging.getLogger().handlers == []


def test_console_goes_to_stderr():
    """Test that console output never mixes with dry-run output on stdout."""
    setup_logging()
    handlers = logging.getLogger().handlers
    assert len(handlers) == 1
    assert handlers[0].stream is sys.stderr


def test_logging_produces_json():
    """Test that logs are written in JSON format."""
    with tempfile.TemporaryDirectory() as tmpdir:
        log_dir = Path(tmpdir)

        log_file = setup_logging(log_dir=log_dir, log_level=logging.INFO, console_output=False)

        logger = logging.getLogger("test_logger")
        logger.info("Test message")
        logging.getLogger().handlers[0].flush()

        log_lines = [line for line in log_file.read_text().splitlines() if line]
        assert len(log_lines) >= 1
        for line in log_lines:
            json.loads(line)

        last = json.loads(log_lines[-1])
        assert last["level"] == "INFO"
        assert last["logger"] == "test_logger"
        assert last["message"] == "Test message"
        assert last["timestamp"].endswith("Z")
        logging.getLogger().handlers[0].close()


def test_log_level_filtering():
    """Test that the log level is applied to the root logger."""
    setup_logging(log_level=logging.WARNING, console_output=False)
    assert logging.getLogger().level == logging.WARNING


def test_structured_formatter_extra_fields():
    """Test that extra_fields are merged into the JSON record."""
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "deleted %s", ("path",), None)
    record.extra_fields = {"meta_hash": "0123456789abcdef", "path": Path("/t")}

    data = json.loads(StructuredFormatter().format(record))

    assert data["message"] == "deleted path"
    assert data["meta_hash"] == "0123456789abcdef"
    assert data["path"] == str(Path("/t"))


def test_structured_formatter_exception():
    """Test that exception info is included."""
    try:
        raise ValueError("bad fingerprint")
    except ValueError:
        record = logging.LogRecord(
            "x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
        )

    data = json.loads(StructuredFormatter().format(record))

    assert "ValueError: bad fingerprint" in data["exception"]
