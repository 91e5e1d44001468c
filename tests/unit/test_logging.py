"""Unit tests for the sync event log."""

from __future__ import annotations

import io
from datetime import datetime

from rich.console import Console

from lifeboard.core.logging import SyncEventLog, Verbosity, read_events


def capture(verbosity: Verbosity, log_dir=None):
    buffer = io.StringIO()
    console = Console(file=buffer, width=200, color_system=None)
    return SyncEventLog(log_dir, verbosity=verbosity, console=console), buffer


class TestSyncEventLog:
    def test_writes_jsonl_per_run(self, tmp_path):
        """Every event of a run lands in its JSONL file in order."""
        log, _ = capture(Verbosity.QUIET, tmp_path / "logs")
        log.run_start("run-1", "limitless", datetime(1970, 1, 1), False)
        log.stream_fetched("run-1", "limitless", "lifelog", items=3, pages=1, stop_reason="exhausted")
        log.record_rejected("run-1", "limitless", "lifelog", "invalid_timestamp", "start_time", "log-9")
        log.child_skipped("run-1", "limitless", "log-1", "node 0: invalid_value")
        log.run_finish("run-1", "limitless", {"inserted": 2, "updated": 0, "rejected": 1, "fatal_error": None})

        path = log.path_for("run-1")
        assert path == tmp_path / "logs" / "run-1.jsonl"
        events = read_events(path)
        assert [e["event"] for e in events] == [
            "run_start",
            "stream_fetched",
            "record_rejected",
            "child_skipped",
            "run_finish",
        ]
        assert all(e["run_id"] == "run-1" for e in events)
        assert all("timestamp" in e for e in events)
        assert events[0]["since"] == "1970-01-01T00:00:00"
        assert events[2]["reason"] == "invalid_timestamp"
        assert events[2]["external_id"] == "log-9"
        assert events[4]["inserted"] == 2

    def test_runs_get_separate_files(self, tmp_path):
        """Each run id gets its own file."""
        log, _ = capture(Verbosity.QUIET, tmp_path)
        log.run_start("a", "bee", datetime(2024, 1, 1), False)
        log.run_start("b", "bee", datetime(2024, 1, 1), True)
        assert len(read_events(tmp_path / "a.jsonl")) == 1
        assert read_events(tmp_path / "b.jsonl")[0]["force_full_sync"] is True

    def test_no_log_dir_writes_nothing(self, tmp_path):
        """Without a log dir events are not persisted."""
        log, _ = capture(Verbosity.QUIET)
        log.run_start("run-1", "bee", datetime(2024, 1, 1), False)
        assert log.path_for("run-1") is None
        assert list(tmp_path.iterdir()) == []

    def test_quiet_prints_nothing(self):
        """Quiet mode keeps the console silent."""
        log, buffer = capture(Verbosity.QUIET)
        log.run_finish("r", "bee", {"inserted": 1})
        assert buffer.getvalue() == ""

    def test_default_prints_summary_only(self):
        """Default verbosity prints only the run summary."""
        log, buffer = capture(Verbosity.DEFAULT)
        log.run_start("r", "bee", datetime(2024, 1, 1), False)
        log.run_finish("r", "bee", {"inserted": 4, "updated": 1, "rejected": 0})
        output = buffer.getvalue()
        assert "Syncing" not in output
        assert "bee: 4 new, 1 updated, 0 rejected" in output

    def test_verbose_prints_progress(self):
        """Verbose mode adds per-stream progress but not rejections."""
        log, buffer = capture(Verbosity.VERBOSE)
        log.stream_fetched("r", "bee", "fact", items=7, pages=2, stop_reason="short_page")
        log.record_rejected("r", "bee", "fact", "invalid_value", "content", "f-1")
        output = buffer.getvalue()
        assert "fact: 7 items in 2 pages (short_page)" in output
        assert "f-1" not in output

    def test_debug_prints_rejections(self):
        """Debug mode prints each rejection."""
        log, buffer = capture(Verbosity.DEBUG)
        log.record_rejected("r", "bee", "fact", "invalid_value", "content", "f-1")
        assert "fact f-1: invalid_value (content)" in buffer.getvalue()

    def test_fatal_summary(self):
        """A fatal run is summarized as failed."""
        log, buffer = capture(Verbosity.DEFAULT)
        log.run_finish("r", "limitless", {"fatal_error": "limitless: HTTP 401 from /lifelogs"})
        assert "limitless: failed" in buffer.getvalue()
