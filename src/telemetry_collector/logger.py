"""Structured logging for the telemetry collector."""
import logging
import json
import sys
import time
from typing import Optional
from contextlib import contextmanager

PACKAGE_LOGGER = "telemetry_collector"
TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(PACKAGE_LOGGER)


# JSON formatter for structured logging
class JSONFormatter(logging.Formatter):
    def format(self, record):
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        if record.exc_info:
            log_data["traceback"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_logging(level: str = "INFO", fmt: str = "text") -> logging.Logger:
    """
    Attach a single stderr handler to the package logger.

    The scheduler appends stdout and stderr to one log file, so every
    record goes to stderr. Calling this again replaces the handler.

    Args:
        level: Log level name (unknown names fall back to INFO)
        fmt: "json" for JSONFormatter, anything else for plain text
    """
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    for existing in list(logger.handlers):
        logger.removeHandler(existing)

    handler = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def log_cycle_complete(node_count: int, latest: str, archive: str, duration_ms: float):
    """Log a finished cycle with its output files."""
    logger.info(f"Cycle complete: {node_count} nodes written", extra={
        "extra_fields": {
            "node_count": node_count,
            "latest_file": latest,
            "archive_file": archive,
            "duration_ms": round(duration_ms, 2),
        }
    })


def log_error(stage: str, error_type: str, error_message: str, exc_info: Optional[bool] = False):
    """Log a failed cycle stage with context."""
    logger.error(f"Error in {stage}: {error_message}", exc_info=exc_info, extra={
        "extra_fields": {
            "stage": stage,
            "error_type": error_type,
            "error_message": error_message[:500],  # Truncate long errors
        }
    })


@contextmanager
def track_duration():
    """Context manager to track operation duration."""
    start_time = time.monotonic()
    yield lambda: (time.monotonic() - start_time) * 1000  # Return duration in ms
