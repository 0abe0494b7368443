"""Unit tests for video_research.logging - structured logging setup."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import pytest
import structlog

from video_research.logging import (
    _VALID_LEVELS,
    _redact_secrets,
    configure_logging,
    generate_run_id,
    topic_logging_context,
)

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture(autouse=True)
def _reset_structlog() -> None:
    """Reset structlog state between tests."""
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.WARNING)


class TestGenerateRunId:
    def test_short_hex_string(self) -> None:
        run_id = generate_run_id()
        assert len(run_id) == 12
        int(run_id, 16)

    def test_unique(self) -> None:
        assert len({generate_run_id() for _ in range(50)}) == 50


class TestConfigureLogging:
    """configure_logging wires structlog onto the stdlib root logger."""

    def test_sets_root_level(self) -> None:
        configure_logging(level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_level_is_case_insensitive(self) -> None:
        configure_logging(level="warning")
        assert logging.getLogger().level == logging.WARNING

    def test_invalid_level_raises(self) -> None:
        with pytest.raises(ValueError, match="Invalid log level"):
            configure_logging(level="VERBOSE")

    def test_valid_levels(self) -> None:
        assert {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} == _VALID_LEVELS

    def test_httpx_never_logs_below_warning(self) -> None:
        configure_logging(level="DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_binds_run_id(self) -> None:
        configure_logging(run_id="abc123")
        assert structlog.contextvars.get_contextvars()["run_id"] == "abc123"

    def test_json_log_file(self, tmp_path: Path) -> None:
        log_file = tmp_path / "run.log"
        configure_logging(level="INFO", fmt="json", log_file=log_file, run_id="r1")
        structlog.get_logger("test").info("file_event", count=3, api_key="secret")
        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = log_file.read_text(encoding="utf-8").strip().splitlines()
        entry = json.loads(lines[-1])
        assert entry["event"] == "file_event"
        assert entry["count"] == 3
        assert entry["run_id"] == "r1"
        assert entry["api_key"] == "***"


class TestRedactSecrets:
    def test_masks_known_keys(self) -> None:
        event = {"event": "x", "api_key": "k", "Token": "t", "topic": "fitness"}
        redacted = _redact_secrets(None, "info", event)
        assert redacted["api_key"] == "***"
        assert redacted["Token"] == "***"
        assert redacted["topic"] == "fitness"

    def test_leaves_empty_values(self) -> None:
        assert _redact_secrets(None, "info", {"key": None})["key"] is None


class TestTopicLoggingContext:
    """topic_logging_context binds and unbinds topic metadata."""

    def test_binds_topic_and_phase(self) -> None:
        with topic_logging_context("fitness", phase="discovery", strategy="standard"):
            bound = structlog.contextvars.get_contextvars()
            assert bound["topic"] == "fitness"
            assert bound["phase"] == "discovery"
            assert bound["strategy"] == "standard"

    def test_unbinds_on_exit(self) -> None:
        with topic_logging_context("fitness", phase="analysis", extra_key=1):
            pass
        bound = structlog.contextvars.get_contextvars()
        assert "topic" not in bound
        assert "phase" not in bound
        assert "extra_key" not in bound

    def test_nested_block_restores_outer_phase(self) -> None:
        with topic_logging_context("fitness", phase="discovery"):
            with topic_logging_context("fitness", phase="search", strategy="fast"):
                assert structlog.contextvars.get_contextvars()["phase"] == "search"
            bound = structlog.contextvars.get_contextvars()
            assert bound["topic"] == "fitness"
            assert bound["phase"] == "discovery"
            assert "strategy" not in bound

    def test_reraises_and_unbinds(self) -> None:
        with (
            pytest.raises(RuntimeError, match="boom"),
            topic_logging_context("fitness"),
        ):
            raise RuntimeError("boom")
        assert "topic" not in structlog.contextvars.get_contextvars()
