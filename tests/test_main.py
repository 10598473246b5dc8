"""
Tests for the telemetry_collector command line entry point and logging

Tests cover:
- Exit codes for success, failed cycles and invalid configuration
- JSON and text log formatting
- Structured cycle/error log helpers
"""

import sys
import os
import json
import logging
from pathlib import Path
from unittest.mock import patch

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from telemetry_collector import __main__ as cli
from telemetry_collector.errors import EmptyFeedError, FeedUnavailableError
from telemetry_collector.logger import (
    JSONFormatter,
    configure_logging,
    log_cycle_complete,
    log_error,
    track_duration,
)


@pytest.fixture
def env(tmp_path):
    values = {"TELEMETRY_OUTPUT_DIR": str(tmp_path / "out")}
    with patch.dict(os.environ, values, clear=True):
        yield values


class TestMain:
    """Test exit codes."""

    def test_success(self, env):
        with patch.object(cli, "run_cycle") as mock_cycle:
            assert cli.main() == 0
            mock_cycle.assert_called_once()

    @pytest.mark.parametrize("error", [
        FeedUnavailableError("down"),
        EmptyFeedError("no nodes"),
        PermissionError("read-only"),
    ])
    def test_failed_cycle(self, env, error):
        with patch.object(cli, "run_cycle", side_effect=error):
            assert cli.main() == 1

    def test_invalid_config(self, env):
        os.environ["TELEMETRY_CHAIN"] = "nowhere"
        with patch.object(cli, "run_cycle") as mock_cycle:
            assert cli.main() == 2
            mock_cycle.assert_not_called()

    def test_unexpected_error_propagates(self, env):
        with patch.object(cli, "run_cycle", side_effect=RuntimeError("bug")):
            with pytest.raises(RuntimeError):
                cli.main()


class TestLogging:
    """Test log configuration and helpers."""

    def make_record(self, **extra):
        record = logging.LogRecord("telemetry_collector", logging.INFO, __file__, 1, "hello", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_formatter_basic(self):
        data = json.loads(JSONFormatter().format(self.make_record()))
        assert data["message"] == "hello"
        assert data["level"] == "INFO"
        assert data["logger"] == "telemetry_collector"

    def test_json_formatter_extra_fields(self):
        record = self.make_record(extra_fields={"node_count": 3})
        data = json.loads(JSONFormatter().format(record))
        assert data["node_count"] == 3

    def test_configure_logging_replaces_handler(self):
        logger = configure_logging("DEBUG", "json")
        logger = configure_logging("WARNING", "text")

        assert logger.level == logging.WARNING
        assert len(logger.handlers) == 1
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_cycle_and_error_helpers(self):
        logger = logging.getLogger("telemetry_collector")
        with patch.object(logger, "info") as mock_info, patch.object(logger, "error") as mock_error:
            log_cycle_complete(3, "latest.csv", "archive.csv", 12.345)
            log_error("cycle", "FeedUnavailableError", "x" * 1000)

        fields = mock_info.call_args.kwargs["extra"]["extra_fields"]
        assert fields["node_count"] == 3
        assert fields["duration_ms"] == 12.35
        error_fields = mock_error.call_args.kwargs["extra"]["extra_fields"]
        assert len(error_fields["error_message"]) == 500

    def test_track_duration(self):
        with track_duration() as elapsed_ms:
            pass
        assert elapsed_ms() >= 0
