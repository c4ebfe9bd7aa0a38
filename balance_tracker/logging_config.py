"""
JSON logging for the tracker.

Every record is one JSON object. Keyword fields passed through
`StructuredLogger` are merged into it; plaintext credentials are dropped
and fingerprints shortened before anything is written.
"""

import json
import logging
import os
import sys
from datetime import datetime
from typing import Any, Dict, Optional

ROOT_LOGGER = "balance_tracker"
LOG_DIR_ENV = "TRACKER_LOG_DIR"
LOG_FILE_NAME = "balance_tracker.log"

# Fields that must never reach a log sink
_SECRET_FIELDS = frozenset({"api_key", "secret", "api_key_encrypted"})
_FINGERPRINT_FIELD = "api_key_hash"
_FINGERPRINT_PREFIX = 12


def _redact(fields: Dict[str, Any]) -> Dict[str, Any]:
    redacted = {k: v for k, v in fields.items() if k not in _SECRET_FIELDS}
    fingerprint = redacted.get(_FINGERPRINT_FIELD)
    if isinstance(fingerprint, str):
        redacted[_FINGERPRINT_FIELD] = fingerprint[:_FINGERPRINT_PREFIX]
    return redacted


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }

        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            log_entry.update(_redact(extra_fields))

        if record.exc_info:
            log_entry["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None) -> logging.Logger:
    """Configure the package logger once per process.

    Records go to stdout and, when `log_dir` (or `TRACKER_LOG_DIR`) is
    set, also to `<log_dir>/balance_tracker.log`.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level.upper())

    for handler in logger.handlers:
        handler.close()
    logger.handlers = []

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(JSONFormatter())
    logger.addHandler(stream_handler)

    log_dir = log_dir or os.getenv(LOG_DIR_ENV)
    if log_dir:
        try:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(os.path.join(log_dir, LOG_FILE_NAME), encoding="utf-8")
        except OSError as e:
            sys.stderr.write(f"Failed to setup file logging: {e}\n")
        else:
            file_handler.setFormatter(JSONFormatter())
            logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


class StructuredLogger:
    """Logger wrapper that attaches keyword arguments as JSON fields."""

    def __init__(self, name: str):
        self.logger = get_logger(name)

    def _log(self, level: int, msg: str, fields: Dict[str, Any]) -> None:
        self.logger.log(level, msg, extra={"extra_fields": fields})

    def debug(self, msg: str, **kwargs):
        self._log(logging.DEBUG, msg, kwargs)

    def info(self, msg: str, **kwargs):
        self._log(logging.INFO, msg, kwargs)

    def warning(self, msg: str, **kwargs):
        self._log(logging.WARNING, msg, kwargs)

    def error(self, msg: str, **kwargs):
        self._log(logging.ERROR, msg, kwargs)
