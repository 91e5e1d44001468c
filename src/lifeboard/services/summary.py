"""Daily narrative summary, rendered from a template and cached on the rollup."""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import select, update
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from lifeboard.db.models import DailyRollup, MoodEntry, WeatherEntry

logger = logging.getLogger(__name__)


class _Placeholders(dict):
    """Leaves unknown ``{placeholders}`` in the template untouched."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def _format_number(value: float | None) -> str:
    if value is None:
        return "N/A"
    return f"{value:g}"


def render_summary(session: Session, day: date, template: str) -> str:
    rollup = session.scalar(select(DailyRollup).where(DailyRollup.day == day))
    mood = session.scalar(select(MoodEntry).where(MoodEntry.day == day))
    weather = session.scalar(select(WeatherEntry).where(WeatherEntry.day == day).order_by(WeatherEntry.location))

    values = _Placeholders(
        date=day.isoformat(),
        mood_score=mood.mood_score if mood is not None else "N/A",
        mood_text=(mood.mood_text if mood is not None and mood.mood_text else "not recorded"),
        weather_condition=(weather.condition if weather is not None and weather.condition else "not available"),
        weather_temp_high=_format_number(weather.temperature_high if weather is not None else None),
        limitless_entry_count=rollup.limitless_entry_count if rollup is not None else 0,
        bee_conversation_count=rollup.bee_conversation_count if rollup is not None else 0,
    )
    return template.format_map(values)


def build_daily_summary(session: Session, day: date, template: str, refresh: bool = False) -> str:
    """Return the day's summary, rendering and caching it if needed.

    Args:
        session: Database session.
        day: Calendar day.
        template: ``str.format`` template; see ``DEFAULT_SUMMARY_TEMPLATE``.
        refresh: Re-render even if a cached summary exists.
    """
    if not refresh:
        cached = session.scalar(select(DailyRollup.narrative_summary).where(DailyRollup.day == day))
        if cached:
            return cached

    summary = render_summary(session, day, template)
    # Days without a rollup row have no activity; render without caching
    stmt = (
        update(DailyRollup)
        .where(DailyRollup.day == day)
        .values(narrative_summary=summary, updated_at=func.now())
    )
    if session.execute(stmt).rowcount:
        logger.info("Stored daily summary for %s", day)
    return summary
