"""
Unit tests for JSON logging.
"""

import json
import logging
import os
import shutil
import sys
import tempfile

from balance_tracker.logging_config import (
    LOG_FILE_NAME,
    ROOT_LOGGER,
    JSONFormatter,
    StructuredLogger,
    setup_logging,
)


def make_record(msg="Checked balance", level=logging.INFO, exc_info=None, **fields):
    record = logging.LogRecord(
        name=f"{ROOT_LOGGER}.batch",
        level=level,
        pathname=__file__,
        lineno=10,
        msg=msg,
        args=(),
        exc_info=exc_info
    )
    if fields:
        record.extra_fields = fields
    return record


class TestJSONFormatter:
    """One JSON object per record."""

    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(make_record()))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "balance_tracker.batch"
        assert entry["message"] == "Checked balance"
        assert "timestamp" in entry

    def test_extra_fields_merged(self):
        entry = json.loads(JSONFormatter().format(make_record(tracked_key_id=3, balance=12.5)))

        assert entry["tracked_key_id"] == 3
        assert entry["balance"] == 12.5

    def test_credentials_never_logged(self):
        fingerprint = "a" * 64
        record = make_record(api_key="sk-plaintext", api_key_hash=fingerprint, tracked_key_id=1)

        output = JSONFormatter().format(record)
        entry = json.loads(output)

        assert "sk-plaintext" not in output
        assert "api_key" not in entry
        assert entry["api_key_hash"] == "a" * 12

    def test_exception_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = make_record(level=logging.ERROR, exc_info=sys.exc_info())

        entry = json.loads(JSONFormatter().format(record))

        assert "RuntimeError: boom" in entry["exc_info"]


class TestSetupLogging:
    """Handler wiring of the package logger."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        logger = logging.getLogger(ROOT_LOGGER)
        for handler in logger.handlers:
            handler.close()
        logger.handlers = []
        logger.setLevel(logging.NOTSET)
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_stdout_only(self, monkeypatch):
        monkeypatch.delenv("TRACKER_LOG_DIR", raising=False)

        logger = setup_logging("debug")

        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1

    def test_repeated_setup_replaces_handlers(self, monkeypatch):
        monkeypatch.delenv("TRACKER_LOG_DIR", raising=False)

        setup_logging()
        logger = setup_logging()

        assert len(logger.handlers) == 1

    def test_log_dir_writes_file(self):
        log_dir = os.path.join(self.temp_dir, "logs")
        setup_logging("INFO", log_dir)

        StructuredLogger("batch").warning("Auto-disabled tracking", tracked_key_id=7)
        for handler in logging.getLogger(ROOT_LOGGER).handlers:
            handler.flush()

        with open(os.path.join(log_dir, LOG_FILE_NAME), encoding="utf-8") as f:
            entry = json.loads(f.readline())
        assert entry["level"] == "WARNING"
        assert entry["message"] == "Auto-disabled tracking"
        assert entry["tracked_key_id"] == 7

    def test_log_dir_from_env(self, monkeypatch):
        monkeypatch.setenv("TRACKER_LOG_DIR", self.temp_dir)

        logger = setup_logging()

        assert len(logger.handlers) == 2


class TestStructuredLogger:
    """Keyword fields travel on the record."""

    def test_fields_attached(self, caplog):
        with caplog.at_level(logging.DEBUG, logger=ROOT_LOGGER):
            StructuredLogger("tracking").debug("Added new tracking", tracked_key_id=2)

        record = caplog.records[-1]
        assert record.name == "balance_tracker.tracking"
        assert record.extra_fields == {"tracked_key_id": 2}
