"""Sync orchestrator.

Per source, one run walks the states::

    idle -> fetching -> normalizing -> persisting -> rolling_up
         -> advancing_watermark -> done

with ``failed`` reachable from ``fetching`` on a ``FatalSourceError``.
Per-record problems are counted as rejections and never fail the run.

Runs for the same source are serialized by a non-blocking lock (a second
caller gets an unsuccessful result); runs for different sources proceed in
parallel on a thread pool.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from lifeboard.config import SOURCE_NAMES
from lifeboard.core.dates import EPOCH, utcnow
from lifeboard.core.errors import (
    PERSISTENCE_ERROR,
    FatalSourceError,
    PersistenceConflictError,
    SyncInProgressError,
    UnknownSourceError,
    ValidationError,
)
from lifeboard.db.models import new_id
from lifeboard.services import runs
from lifeboard.sources.base import RawRecord, SourceStream
from lifeboard.sync.materialize import materialize_children
from lifeboard.sync.normalize import MOOD, RECORD_SPECS, CanonicalRecord, normalize
from lifeboard.sync.pagination import WalkResult, walk_pages
from lifeboard.sync.reconcile import dedupe, upsert
from lifeboard.sync.rollup import ROLLUP_RECORD_TYPES, observed_count

if TYPE_CHECKING:
    from lifeboard.context import LifeboardContext

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    NORMALIZING = "normalizing"
    PERSISTING = "persisting"
    ROLLING_UP = "rolling_up"
    ADVANCING_WATERMARK = "advancing_watermark"
    DONE = "done"
    FAILED = "failed"


@dataclass
class SyncResult:
    """Outcome of one sync run for one source.

    ``success`` is False only for fatal runs, skipped (disabled) sources,
    and runs rejected because another run for the source was in progress.
    A successful run can still be ``partial`` (a stream stopped before its
    source ran out of data) or have rejections. A stream whose first page
    cannot be fetched fails the run.
    """

    source: str
    success: bool = False
    state: SyncState = SyncState.IDLE
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    rejected: int = 0
    # Same-batch redeliveries collapsed by last-write-wins
    duplicates: int = 0
    partial: bool = False
    skipped: bool = False
    fatal_error: str | None = None
    message: str | None = None
    fetch_errors: list[str] = field(default_factory=list)
    rejection_reasons: dict[str, int] = field(default_factory=dict)
    children_inserted: int = 0
    children_skipped: int = 0
    days: list[date] = field(default_factory=list)
    watermark_before: datetime | None = None
    watermark_after: datetime | None = None
    run_id: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def fatal(self) -> bool:
        return self.fatal_error is not None

    def reject(self, reason: str) -> None:
        self.rejected += 1
        self.rejection_reasons[reason] = self.rejection_reasons.get(reason, 0) + 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "success": self.success,
            "state": self.state.value,
            "fetched": self.fetched,
            "inserted": self.inserted,
            "updated": self.updated,
            "rejected": self.rejected,
            "duplicates": self.duplicates,
            "partial": self.partial,
            "skipped": self.skipped,
            "fatal_error": self.fatal_error,
            "message": self.message,
            "fetch_errors": list(self.fetch_errors),
            "rejection_reasons": dict(self.rejection_reasons),
            "children_inserted": self.children_inserted,
            "children_skipped": self.children_skipped,
            "days": [day.isoformat() for day in self.days],
            "watermark_before": self.watermark_before.isoformat() if self.watermark_before else None,
            "watermark_after": self.watermark_after.isoformat() if self.watermark_after else None,
            "run_id": self.run_id,
        }


@dataclass
class _Batch:
    """Raw items fetched from one stream."""

    record_type: str
    items: list[RawRecord]
    # Stopped before the source ran out (fetch error, max pages, cancel)
    truncated: bool = False


class SyncOrchestrator:
    """Drives sync runs for every configured source."""

    def __init__(self, context: LifeboardContext):
        self.context = context
        self.settings = context.settings
        self.database = context.database
        self.watermarks = context.watermarks
        self.rollups = context.rollups
        self.event_log = context.event_log
        self._locks = {name: threading.Lock() for name in SOURCE_NAMES}
        self._cancel = threading.Event()

    # -- Public operations --

    def sync_one(self, source: str, force_full_sync: bool = False, trigger: str = "api") -> SyncResult:
        """Sync one source.

        Raises:
            UnknownSourceError: If ``source`` is not a configured source.
        """
        if source not in SOURCE_NAMES:
            msg = f"Unknown source: {source}"
            raise UnknownSourceError(msg)

        if not self.settings.source(source).enabled:
            return SyncResult(source=source, skipped=True, message=f"{source} is disabled")

        lock = self._locks[source]
        if not lock.acquire(blocking=False):
            error = SyncInProgressError(f"A sync for {source} is already running")
            logger.info("%s", error)
            return SyncResult(source=source, message=str(error))
        try:
            return self._run(source, force_full_sync, trigger)
        finally:
            lock.release()

    def sync_all(self, force_full_sync: bool = False, trigger: str = "api") -> dict[str, SyncResult]:
        """Sync every source concurrently; one result per source."""
        results: dict[str, SyncResult] = {}
        with ThreadPoolExecutor(max_workers=self.settings.sync_concurrency) as pool:
            futures = {
                pool.submit(self.sync_one, name, force_full_sync, trigger): name
                for name in SOURCE_NAMES
            }
            for future in as_completed(futures):
                name = futures[future]
                try:
                    results[name] = future.result()
                except Exception as exc:
                    logger.exception("Sync of %s crashed", name)
                    results[name] = SyncResult(
                        source=name, state=SyncState.FAILED, fatal_error=str(exc)
                    )
        return {name: results[name] for name in SOURCE_NAMES}

    def record_mood(self, payload: dict[str, Any], trigger: str = "input") -> SyncResult:
        """Store one manually entered mood and update its day's rollup.

        Raises:
            ValidationError: If the payload is not a valid mood entry.
        """
        record = normalize(MOOD, payload, self.context.tz)
        if not self.settings.mood.enabled:
            return SyncResult(source="mood", skipped=True, message="mood is disabled")

        lock = self._locks["mood"]
        if not lock.acquire(blocking=False):
            return SyncResult(source="mood", message="A sync for mood is already running")
        try:
            return self._run("mood", False, trigger, provided=[record])
        finally:
            lock.release()

    def cancel(self) -> None:
        """Stop in-flight runs at their next page boundary; later runs fetch nothing."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # -- Run pipeline --

    def _run(
        self,
        source: str,
        force_full_sync: bool,
        trigger: str,
        provided: list[CanonicalRecord] | None = None,
    ) -> SyncResult:
        run_id = new_id()
        result = SyncResult(source=source, run_id=run_id, started_at=utcnow())
        with self.database.session() as session:
            runs.create_run(session, run_id, source, trigger)
            runs.start_run(session, run_id)

        before = self.watermarks.ensure(source)
        result.watermark_before = before
        since = EPOCH if force_full_sync else before
        self.event_log.run_start(run_id, source, since, force_full_sync)

        ceilings: dict[str, datetime] = {}
        try:
            if provided is None:
                result.state = SyncState.FETCHING
                try:
                    batches = self._fetch(source, since, result)
                except FatalSourceError as exc:
                    return self._fail(result, exc)
                result.state = SyncState.NORMALIZING
                records, ceilings = self._normalize(source, batches, result)
            else:
                result.fetched = len(provided)
                records = provided

            records, result.duplicates = dedupe(records)

            result.state = SyncState.PERSISTING
            persisted = self._persist(source, records, result)

            result.state = SyncState.ROLLING_UP
            result.days = self._roll_up(persisted)

            result.state = SyncState.ADVANCING_WATERMARK
            result.watermark_after = self._advance(source, persisted, before, ceilings)
        except Exception as exc:
            logger.exception("%s: run %s aborted in %s", source, run_id, result.state.value)
            self._finish(result, error=f"{type(exc).__name__}: {exc}")
            raise

        result.state = SyncState.DONE
        result.success = True
        self._finish(result)
        return result

    def _fetch(self, source: str, since: datetime, result: SyncResult) -> list[_Batch]:
        client = self.context.build_source(source)
        try:
            batches = []
            for stream in client.streams():
                walk = self._walk(source, stream, since)
                self.event_log.stream_fetched(
                    result.run_id or "",
                    source,
                    stream.record_type,
                    items=len(walk.items),
                    pages=walk.pages,
                    stop_reason=walk.stop_reason,
                    error=str(walk.error) if walk.error else None,
                )
                if walk.error is not None and walk.pages == 0:
                    raise FatalSourceError(
                        source, f"{stream.record_type}: no page fetched: {walk.error}"
                    ) from walk.error
                if walk.partial:
                    result.partial = True
                if walk.error is not None:
                    result.fetch_errors.append(f"{stream.record_type}: {walk.error}")
                result.fetched += len(walk.items)
                batches.append(_Batch(stream.record_type, walk.items, truncated=walk.partial))
            return batches
        finally:
            client.close()

    def _walk(self, source: str, stream: SourceStream, since: datetime) -> WalkResult:
        def fetch(cursor: Any, limit: int):
            return stream.fetch_page(since, cursor, limit)

        return walk_pages(
            fetch,
            limit=self.settings.page_limit_for(source),
            max_pages=self.settings.max_pages_for(source),
            initial_cursor=stream.initial_cursor,
            cancel_event=self._cancel,
        )

    def _normalize(
        self, source: str, batches: list[_Batch], result: SyncResult
    ) -> tuple[list[CanonicalRecord], dict[str, datetime]]:
        """Normalize every batch.

        Returns the records plus, for each truncated batch, the modification
        instant of its last record. Nothing past that point was fetched, so
        the watermark must not move beyond it.
        """
        records = []
        ceilings: dict[str, datetime] = {}
        for batch in batches:
            spec = RECORD_SPECS[batch.record_type]
            last: datetime | None = None
            for raw in batch.items:
                try:
                    record = normalize(spec, raw, self.context.tz)
                except ValidationError as exc:
                    result.reject(exc.reason)
                    logger.warning("%s: rejected %s %s: %s", source, batch.record_type, exc.external_id, exc)
                    self.event_log.record_rejected(
                        result.run_id or "", source, batch.record_type, exc.reason, exc.field, exc.external_id
                    )
                    continue
                records.append(record)
                if record.last_modified is not None:
                    last = record.last_modified
            if batch.truncated and last is not None:
                ceilings[batch.record_type] = last
        return records, ceilings

    def _persist(self, source: str, records: list[CanonicalRecord], result: SyncResult) -> list[CanonicalRecord]:
        """Upsert each record in its own transaction, then its children."""
        persisted = []
        for record in records:
            try:
                with self.database.session() as session:
                    outcome = upsert(session, record)
            except (SQLAlchemyError, PersistenceConflictError) as exc:
                result.reject(PERSISTENCE_ERROR)
                logger.warning("%s: failed to store %s %s: %s", source, record.record_type, record.external_id, exc)
                self.event_log.record_rejected(
                    result.run_id or "", source, record.record_type, PERSISTENCE_ERROR, "record", record.external_id
                )
                continue

            if outcome.inserted:
                result.inserted += 1
            else:
                result.updated += 1
            persisted.append(record)

            if record.children:
                self._materialize(source, record, outcome.record_id, result)
        return persisted

    def _materialize(self, source: str, record: CanonicalRecord, parent_id: str, result: SyncResult) -> None:
        def on_skip(reason: str) -> None:
            logger.warning("%s: skipped child of %s: %s", source, record.external_id, reason)
            self.event_log.child_skipped(result.run_id or "", source, record.external_id, reason)

        try:
            with self.database.session() as session:
                children = materialize_children(session, record, parent_id, on_skip=on_skip)
        except SQLAlchemyError as exc:
            logger.warning("%s: children of %s not stored: %s", source, record.external_id, exc)
            on_skip(f"{PERSISTENCE_ERROR}: {exc}")
            result.children_skipped += len(record.children)
            return
        result.children_inserted += children.inserted
        result.children_skipped += children.skipped

    def _roll_up(self, persisted: list[CanonicalRecord]) -> list[date]:
        """Apply the stored per-day count for every day the batch touched."""
        touched = sorted(
            {
                (record.record_type, record.day)
                for record in persisted
                if record.day is not None and record.record_type in ROLLUP_RECORD_TYPES
            },
            key=lambda pair: (pair[1], pair[0]),
        )
        for record_type, day in touched:
            with self.database.session() as session:
                count = observed_count(session, record_type, day)
            self.rollups.apply(day, ROLLUP_RECORD_TYPES[record_type], True, count)
        return sorted({day for _, day in touched})

    def _advance(
        self,
        source: str,
        persisted: list[CanonicalRecord],
        before: datetime,
        ceilings: dict[str, datetime],
    ) -> datetime:
        # Rejected records do not hold the watermark back; a record that keeps
        # failing with an unchanged modification time is never retried.
        candidates = []
        for record in persisted:
            if record.last_modified is None:
                continue
            ceiling = ceilings.get(record.record_type)
            if ceiling is not None and record.last_modified > ceiling:
                candidates.append(ceiling)
            else:
                candidates.append(record.last_modified)
        if not candidates:
            return before
        return self.watermarks.advance(source, max(candidates))

    # -- Run bookkeeping --

    def _fail(self, result: SyncResult, exc: FatalSourceError) -> SyncResult:
        logger.error("%s", exc)
        result.state = SyncState.FAILED
        result.success = False
        result.fatal_error = str(exc)
        result.watermark_after = result.watermark_before
        self._finish(result, error=str(exc))
        return result

    def _finish(self, result: SyncResult, error: str | None = None) -> None:
        result.finished_at = utcnow()
        summary = result.to_dict()
        run_id = result.run_id or ""
        try:
            with self.database.session() as session:
                if error is None:
                    runs.complete_run(session, run_id, summary)
                else:
                    runs.fail_run(session, run_id, error, summary)
        except SQLAlchemyError:
            logger.exception("%s: could not record run %s", result.source, run_id)
        self.event_log.run_finish(run_id, result.source, summary)


def summarize_rejections(results: dict[str, SyncResult]) -> Counter[str]:
    """Total rejection counts by reason across several results."""
    totals: Counter[str] = Counter()
    for result in results.values():
        totals.update(result.rejection_reasons)
    return totals
