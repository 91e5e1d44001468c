"""Daily rollup updater.

``apply`` is one atomic upsert per (day, source): the presence flag is OR-ed
in and the count keeps the larger of the stored and observed values, so
repeated or concurrent application never lowers a count.
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import case, func, or_, select
from sqlalchemy.orm import Session

from lifeboard.core.errors import UnknownSourceError
from lifeboard.db.engine import Database, dialect_insert
from lifeboard.db.models import RECORD_MODELS, DailyRollup, new_id

logger = logging.getLogger(__name__)

# source -> (presence flag column, count column or None)
ROLLUP_COLUMNS: dict[str, tuple[str, str | None]] = {
    "limitless": ("has_limitless_data", "limitless_entry_count"),
    "bee": ("has_bee_data", "bee_conversation_count"),
    "weather": ("has_weather_data", None),
    "mood": ("has_mood_data", None),
}

# Record types that feed the rollup, and the source they count toward.
# Bee facts, todos and locations do not contribute.
ROLLUP_RECORD_TYPES: dict[str, str] = {
    "lifelog": "limitless",
    "conversation": "bee",
    "weather": "weather",
    "mood": "mood",
}


class RollupUpdater:
    """Maintains ``daily_rollups``."""

    def __init__(self, database: Database):
        self.database = database

    def apply(self, day: date, source: str, present: bool, count: int = 0) -> None:
        """Merge one observation into the day's rollup row."""
        if source not in ROLLUP_COLUMNS:
            msg = f"No rollup columns for source: {source}"
            raise UnknownSourceError(msg)
        if count < 0:
            msg = f"count must be non-negative, got {count}"
            raise ValueError(msg)

        flag_column, count_column = ROLLUP_COLUMNS[source]
        with self.database.session() as session:
            values: dict[str, object] = {"id": new_id(), "day": day, flag_column: present}
            if count_column is not None:
                values[count_column] = count
            stmt = dialect_insert(session, DailyRollup).values(**values)

            flag = getattr(DailyRollup, flag_column)
            changes: dict[str, object] = {
                flag_column: or_(flag, stmt.excluded[flag_column]),
                "updated_at": func.now(),
            }
            if count_column is not None:
                current = getattr(DailyRollup, count_column)
                observed = stmt.excluded[count_column]
                changes[count_column] = case((observed > current, observed), else_=current)
            stmt = stmt.on_conflict_do_update(index_elements=[DailyRollup.day], set_=changes)
            session.execute(stmt)
        logger.debug("rollup %s %s present=%s count=%d", day, source, present, count)

    def get(self, day: date) -> DailyRollup | None:
        with self.database.session() as session:
            return session.scalar(select(DailyRollup).where(DailyRollup.day == day))


def observed_count(session: Session, record_type: str, day: date) -> int:
    """Rows of ``record_type`` stored for ``day``."""
    model = RECORD_MODELS[record_type]
    stmt = select(func.count()).select_from(model).where(model.day == day)  # type: ignore[attr-defined]
    return int(session.scalar(stmt) or 0)
