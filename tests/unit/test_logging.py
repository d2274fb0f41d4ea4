"""Tests for secgate.core.logging — structlog setup and scrubbing."""

from __future__ import annotations

import io
import json
import logging

import structlog

from secgate.core.logging import _clip_long_values, _scrub_secrets, configure_logging, run_logging


class TestScrubbing:
    def test_redacts_string_values(self) -> None:
        out = _scrub_secrets(None, "info", {"event": "normalized", "detail": "password=hunter2"})
        assert "hunter2" not in out["detail"]

    def test_suppresses_sensitive_keys(self) -> None:
        out = _scrub_secrets(None, "info", {"event": "x", "report_key": "abc", "token": "t"})
        assert out["report_key"] == "[SUPPRESSED]"
        assert out["token"] == "[SUPPRESSED]"

    def test_leaves_non_strings(self) -> None:
        assert _scrub_secrets(None, "info", {"event": "x", "count": 3})["count"] == 3

    def test_clips_long_values(self) -> None:
        out = _clip_long_values(None, "info", {"event": "x", "description": "a" * 5000})
        assert len(out["description"]) < 1100
        assert out["description"].endswith("chars clipped]")

    def test_keeps_tracebacks_whole(self) -> None:
        tb = "Traceback\n" * 500
        assert _clip_long_values(None, "error", {"event": "x", "exception": tb})["exception"] == tb


class TestConfigureLogging:
    def test_json_lines(self) -> None:
        buf = io.StringIO()
        configure_logging(level="INFO", json_output=True, stream=buf)
        structlog.get_logger("secgate.test").info("gate_started", detail="secret=abc")

        doc = json.loads(buf.getvalue().strip().splitlines()[-1])
        assert doc["event"] == "gate_started"
        assert doc["level"] == "info"
        assert "abc" not in doc["detail"]

    def test_run_id_bound_inside_block_only(self) -> None:
        buf = io.StringIO()
        configure_logging(json_output=True, stream=buf)
        log = structlog.get_logger("secgate.test")
        with run_logging("run-123"):
            log.info("inside")
        log.info("outside")

        inside, outside = (json.loads(line) for line in buf.getvalue().strip().splitlines()[-2:])
        assert inside["run_id"] == "run-123"
        assert "run_id" not in outside

    def test_level_applied(self) -> None:
        configure_logging(level="WARNING", json_output=False, stream=io.StringIO())
        assert logging.getLogger().level == logging.WARNING

    def test_unknown_level_falls_back_to_info(self) -> None:
        configure_logging(level="chatty", stream=io.StringIO())
        assert logging.getLogger().level == logging.INFO
