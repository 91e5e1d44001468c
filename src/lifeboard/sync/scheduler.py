"""Interval scheduler for periodic syncs."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from lifeboard.config import SOURCE_NAMES
from lifeboard.sync.orchestrator import SyncOrchestrator, SyncResult

logger = logging.getLogger(__name__)


class Scheduler:
    """Runs each enabled source every ``sync_interval_seconds``.

    A source is due immediately on start, then again once its interval has
    elapsed since its last run began. A source whose previous run is still
    going is not resubmitted.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        tick_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.orchestrator = orchestrator
        self.tick_seconds = tick_seconds
        self.clock = clock
        self.intervals = self._intervals()
        self._last_started: dict[str, float] = {}
        self._running: dict[str, Future[SyncResult]] = {}

    def _intervals(self) -> dict[str, int]:
        settings = self.orchestrator.settings
        intervals = {}
        for name in SOURCE_NAMES:
            source = settings.source(name)
            if source.enabled and source.sync_interval_seconds:
                intervals[name] = source.sync_interval_seconds
        return intervals

    def due_sources(self, now: float | None = None) -> list[str]:
        now = self.clock() if now is None else now
        due = []
        for name, interval in self.intervals.items():
            running = self._running.get(name)
            if running is not None and not running.done():
                continue
            last = self._last_started.get(name)
            if last is None or now - last >= interval:
                due.append(name)
        return due

    def tick(self, pool: ThreadPoolExecutor, now: float | None = None) -> list[str]:
        """Submit every due source; returns the names submitted."""
        now = self.clock() if now is None else now
        submitted = []
        for name in self.due_sources(now):
            self._last_started[name] = now
            future = pool.submit(self.orchestrator.sync_one, name, False, "schedule")
            future.add_done_callback(lambda f, name=name: self._log_result(name, f))
            self._running[name] = future
            submitted.append(name)
        return submitted

    def _log_result(self, name: str, future: Future[SyncResult]) -> None:
        error = future.exception()
        if error is not None:
            logger.error("Scheduled sync of %s crashed: %s", name, error)
            return
        result = future.result()
        if result.fatal:
            logger.error("Scheduled sync of %s failed: %s", name, result.fatal_error)
        else:
            logger.info(
                "Scheduled sync of %s: %d new, %d updated, %d rejected",
                name, result.inserted, result.updated, result.rejected,
            )

    def run(self, stop_event: threading.Event | None = None) -> None:
        """Loop until ``stop_event`` is set, then cancel in-flight runs."""
        stop = stop_event or threading.Event()
        if not self.intervals:
            logger.warning("No enabled source has sync_interval_seconds set; nothing to schedule")
            return
        logger.info(
            "Scheduling %s",
            ", ".join(f"{name} every {secs}s" for name, secs in sorted(self.intervals.items())),
        )
        workers = self.orchestrator.settings.sync_concurrency
        with ThreadPoolExecutor(max_workers=workers) as pool:
            self.tick(pool)
            while not stop.wait(self.tick_seconds):
                self.tick(pool)
            self.orchestrator.cancel()
        logger.info("Scheduler stopped")


def install_signal_handlers(stop_event: threading.Event) -> None:
    """Set ``stop_event`` on SIGINT/SIGTERM. Main thread only."""

    def handle(signum: int, frame: Any) -> None:
        logger.info("Received %s, stopping", signal.Signals(signum).name)
        stop_event.set()

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)
