#!/usr/bin/env python3
"""Tests for console/file logging."""

import io
import json
from datetime import datetime

import pytest

from deskfix.logging import (
    ConsoleLineRenderer,
    configure_logging,
    get_logger,
    label_for,
    log_ok,
    log_phase,
    shutdown_logging,
)


class TestLabels:
    @pytest.mark.parametrize(
        "event_dict,label",
        [
            ({"level": "info"}, "INFO"),
            ({"level": "warning"}, "WARN"),
            ({"level": "error"}, "ERR"),
            ({"level": "info", "outcome": "ok"}, "OK"),
        ],
    )
    def test_label_for(self, event_dict, label):
        assert label_for(event_dict) == label

    def test_plain_line(self):
        renderer = ConsoleLineRenderer(colors=False)
        assert renderer(None, "info", {"event": "hello", "level": "info"}) == "[INFO] hello"

    def test_colored_line(self):
        renderer = ConsoleLineRenderer(colors=True)
        line = renderer(None, "warning", {"event": "careful", "level": "warning"})
        assert line.startswith("\033[1;33m[WARN] careful")
        assert line.endswith("\033[0m")


class TestConfigureLogging:
    def test_console_and_file(self, tmp_path):
        buf = io.StringIO()
        log_file = tmp_path / "run.log"
        configure_logging(log_file, color=True, stream=buf)
        log = get_logger("deskfix.test")

        log.info("starting")
        log.warning("DISPLAY not set")
        log_ok(log, "terminal running")
        log.error("boom")
        shutdown_logging()

        console = buf.getvalue().splitlines()
        # StringIO is not a terminal, so no escape codes
        assert console == [
            "[INFO] starting",
            "[WARN] DISPLAY not set",
            "[OK] terminal running",
            "[ERR] boom",
        ]

        records = [json.loads(line) for line in log_file.read_text().splitlines()]
        assert [r["level"] for r in records] == ["INFO", "WARN", "OK", "ERR"]
        assert records[0]["event"] == "starting"
        assert "timestamp" in records[0]
        assert all("outcome" not in r for r in records)

    def test_file_write_failure_is_swallowed(self, tmp_path):
        buf = io.StringIO()
        # Parent is a regular file, so the log can never be opened.
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        configure_logging(blocker / "run.log", color=False, stream=buf)
        get_logger("deskfix.test").info("still printed")
        shutdown_logging()
        assert "[INFO] still printed" in buf.getvalue()

    def test_file_timestamps_use_local_time(self, tmp_path):
        log_file = tmp_path / "run.log"
        configure_logging(log_file, color=False, stream=io.StringIO())
        get_logger("deskfix.test").info("tick")
        shutdown_logging()
        record = json.loads(log_file.read_text().splitlines()[0])
        stamp = datetime.strptime(record["timestamp"], "%Y-%m-%d %H:%M:%S")
        assert abs((datetime.now() - stamp).total_seconds()) < 60

    def test_log_file_appends(self, tmp_path):
        log_file = tmp_path / "run.log"
        log_file.write_text('{"event": "earlier"}\n')
        configure_logging(log_file, color=False, stream=io.StringIO())
        get_logger("deskfix.test").info("later")
        shutdown_logging()
        lines = log_file.read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[1])["event"] == "later"


class TestLogPhase:
    def test_banner(self, console_log):
        log = get_logger("deskfix.test")
        with log_phase(log, "Clean caches"):
            pass
        assert "[INFO] === Phase: Clean caches ===" in console_log.getvalue()

    def test_reraises(self, console_log):
        log = get_logger("deskfix.test")
        with pytest.raises(RuntimeError):
            with log_phase(log, "Broken"):
                raise RuntimeError("nope")
