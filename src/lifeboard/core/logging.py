"""Logging setup and the per-run sync event log."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from enum import IntEnum
from pathlib import Path
from typing import Any

from rich.console import Console


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


class Verbosity(IntEnum):
    """Verbosity levels for console output."""

    QUIET = -1    # Nothing on the console
    DEFAULT = 0   # Run summary only
    VERBOSE = 1   # + per-stream fetch progress
    DEBUG = 2     # + every rejected record and skipped child


class SyncEventLog:
    """Structured event log for sync runs.

    Writes one JSONL file per run to ``log_dir`` and optionally echoes
    events to the console via Rich based on verbosity level. Safe to share
    between threads; each run writes its own file.
    """

    def __init__(
        self,
        log_dir: Path | None = None,
        verbosity: Verbosity = Verbosity.QUIET,
        console: Console | None = None,
    ):
        self.log_dir = log_dir
        self.verbosity = verbosity
        self.console = console or Console(stderr=True)
        self._lock = threading.Lock()

        if log_dir is not None:
            log_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, run_id: str) -> Path | None:
        if self.log_dir is None:
            return None
        return self.log_dir / f"{run_id}.jsonl"

    def _write_event(self, run_id: str, event: dict[str, Any]) -> None:
        """Append a JSON event to the run's JSONL file."""
        path = self.path_for(run_id)
        if path is None:
            return
        event["run_id"] = run_id
        event["timestamp"] = datetime.now(timezone.utc).isoformat()
        line = json.dumps(event, default=str)
        with self._lock, open(path, "a", encoding="utf-8") as f:
            f.write(line + "\n")

    def _console_print(self, message: str, min_verbosity: Verbosity) -> None:
        if self.verbosity >= min_verbosity and self.verbosity > Verbosity.QUIET:
            self.console.print(message)

    # -- Run lifecycle --

    def run_start(self, run_id: str, source: str, since: datetime, force_full_sync: bool) -> None:
        self._write_event(run_id, {
            "event": "run_start",
            "source": source,
            "since": since.isoformat(),
            "force_full_sync": force_full_sync,
        })
        self._console_print(
            f"[bold]Syncing[/bold] {source} (since {since.isoformat()})",
            Verbosity.VERBOSE,
        )

    def stream_fetched(
        self,
        run_id: str,
        source: str,
        record_type: str,
        items: int,
        pages: int,
        stop_reason: str,
        error: str | None = None,
    ) -> None:
        self._write_event(run_id, {
            "event": "stream_fetched",
            "source": source,
            "record_type": record_type,
            "items": items,
            "pages": pages,
            "stop_reason": stop_reason,
            "error": error,
        })
        style = "yellow" if error else "dim"
        suffix = f", error: {error}" if error else ""
        self._console_print(
            f"  [{style}]{record_type}: {items} items in {pages} pages ({stop_reason}{suffix})[/{style}]",
            Verbosity.VERBOSE,
        )

    def record_rejected(
        self,
        run_id: str,
        source: str,
        record_type: str,
        reason: str,
        field: str,
        external_id: str | None,
    ) -> None:
        self._write_event(run_id, {
            "event": "record_rejected",
            "source": source,
            "record_type": record_type,
            "reason": reason,
            "field": field,
            "external_id": external_id,
        })
        self._console_print(
            f"    [red]-[/red] {record_type} {external_id or '?'}: {reason} ({field})",
            Verbosity.DEBUG,
        )

    def child_skipped(self, run_id: str, source: str, parent_external_id: str, reason: str) -> None:
        self._write_event(run_id, {
            "event": "child_skipped",
            "source": source,
            "parent_external_id": parent_external_id,
            "reason": reason,
        })
        self._console_print(
            f"    [dim]skipped child of {parent_external_id}: {reason}[/dim]",
            Verbosity.DEBUG,
        )

    def run_finish(self, run_id: str, source: str, summary: dict[str, Any]) -> None:
        self._write_event(run_id, {"event": "run_finish", "source": source, **summary})
        if summary.get("fatal_error"):
            message = f"[red]{source}: failed[/red] {summary['fatal_error']}"
        else:
            message = (
                f"[green]{source}:[/green] {summary.get('inserted', 0)} new, "
                f"{summary.get('updated', 0)} updated, {summary.get('rejected', 0)} rejected"
            )
        self._console_print(message, Verbosity.DEFAULT)


def read_events(path: Path) -> list[dict[str, Any]]:
    """Load all events from a JSONL run log."""
    events = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                events.append(json.loads(line))
    return events
