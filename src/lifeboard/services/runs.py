"""Sync run history."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from lifeboard.core.dates import utcnow
from lifeboard.db.models import SyncRun


def create_run(session: Session, run_id: str, source: str, trigger: str = "api") -> SyncRun:
    """Create a new run.

    Args:
        session: Database session.
        run_id: Run ID (also names the run's JSONL event log).
        source: Source being synced.
        trigger: What started the run (api, schedule, cli).

    Returns:
        Created SyncRun with status 'pending'.
    """
    run = SyncRun(id=run_id, source=source, trigger=trigger, status="pending")
    run.stats = {}
    session.add(run)
    session.flush()
    return run


def _require_run(session: Session, run_id: str) -> SyncRun:
    run = session.get(SyncRun, run_id)
    if run is None:
        msg = f"Run {run_id} not found"
        raise ValueError(msg)
    return run


def start_run(session: Session, run_id: str) -> SyncRun:
    """Mark a run as started."""
    run = _require_run(session, run_id)
    run.status = "running"
    run.started_at = utcnow()
    return run


def complete_run(session: Session, run_id: str, stats: dict[str, Any]) -> SyncRun:
    """Mark a run as completed.

    Args:
        session: Database session.
        run_id: Run ID.
        stats: Outcome counts (inserted, updated, rejected, ...).

    Returns:
        Updated SyncRun with status 'completed'.
    """
    run = _require_run(session, run_id)
    run.status = "completed"
    run.completed_at = utcnow()
    run.stats = stats
    return run


def fail_run(
    session: Session, run_id: str, error: str, stats: dict[str, Any] | None = None
) -> SyncRun:
    """Mark a run as failed."""
    run = _require_run(session, run_id)
    run.status = "failed"
    run.completed_at = utcnow()
    run.error_message = error
    if stats is not None:
        run.stats = stats
    return run


def get_run(session: Session, run_id: str) -> SyncRun | None:
    return session.get(SyncRun, run_id)


def get_runs(
    session: Session,
    source: str | None = None,
    limit: int = 10,
    status: str | None = None,
) -> list[SyncRun]:
    """Get recent runs, newest first.

    Args:
        session: Database session.
        source: Optional source filter.
        limit: Maximum runs to return.
        status: Optional status filter.
    """
    stmt = select(SyncRun).order_by(SyncRun.created_at.desc(), SyncRun.started_at.desc()).limit(limit)
    if source:
        stmt = stmt.where(SyncRun.source == source)
    if status:
        stmt = stmt.where(SyncRun.status == status)
    return list(session.scalars(stmt))


def get_latest_run(session: Session, source: str) -> SyncRun | None:
    """Get the most recent run for a source."""
    stmt = (
        select(SyncRun)
        .where(SyncRun.source == source)
        .order_by(SyncRun.created_at.desc(), SyncRun.started_at.desc())
        .limit(1)
    )
    return session.scalar(stmt)
