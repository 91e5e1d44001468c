"""Sync watermark store.

The only writer of ``sync_watermarks``. ``advance`` is a single conditional
upsert that keeps the larger of the stored and proposed instants, so the
watermark never moves backwards even under concurrent callers.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import case, select
from sqlalchemy.sql import func

from lifeboard.core.dates import EPOCH, to_utc_naive
from lifeboard.db.engine import Database, dialect_insert
from lifeboard.db.models import SyncWatermark

logger = logging.getLogger(__name__)


class WatermarkStore:
    """Per-source "synced through" instants."""

    def __init__(self, database: Database):
        self.database = database

    def get(self, source: str) -> datetime:
        """Stored watermark, or the epoch when the source has never synced."""
        with self.database.session() as session:
            value = session.scalar(select(SyncWatermark.watermark).where(SyncWatermark.source == source))
        return value if value is not None else EPOCH

    def ensure(self, source: str) -> datetime:
        """Create the source's row at the epoch if missing; return the current value."""
        with self.database.session() as session:
            stmt = (
                dialect_insert(session, SyncWatermark)
                .values(source=source, watermark=EPOCH)
                .on_conflict_do_nothing(index_elements=[SyncWatermark.source])
            )
            session.execute(stmt)
        return self.get(source)

    def advance(self, source: str, instant: datetime) -> datetime:
        """Move the watermark forward to ``instant``; earlier instants are ignored.

        Returns the stored value after the call.
        """
        instant = to_utc_naive(instant)
        with self.database.session() as session:
            stmt = dialect_insert(session, SyncWatermark).values(source=source, watermark=instant)
            stmt = stmt.on_conflict_do_update(
                index_elements=[SyncWatermark.source],
                set_={
                    "watermark": case(
                        (stmt.excluded.watermark > SyncWatermark.watermark, stmt.excluded.watermark),
                        else_=SyncWatermark.watermark,
                    ),
                    "updated_at": func.now(),
                },
            )
            session.execute(stmt)
        stored = self.get(source)
        if stored > instant:
            logger.debug("%s: watermark stays at %s (proposed %s)", source, stored, instant)
        return stored

    def all(self) -> dict[str, datetime]:
        with self.database.session() as session:
            rows = session.execute(select(SyncWatermark.source, SyncWatermark.watermark)).all()
        return {source: watermark for source, watermark in rows}
