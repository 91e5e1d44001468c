"""Read-only queries for calendar rendering."""

from __future__ import annotations

import calendar
from datetime import date, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from lifeboard.db.models import (
    ContentNode,
    Conversation,
    DailyRollup,
    Fact,
    LifelogEntry,
    LocationPing,
    MoodEntry,
    SyncWatermark,
    Todo,
    WeatherEntry,
)


def get_rollups(session: Session, start: date, end: date) -> list[DailyRollup]:
    """Rollup rows with ``start <= day <= end``, oldest first."""
    if end < start:
        msg = f"end {end} is before start {start}"
        raise ValueError(msg)
    stmt = (
        select(DailyRollup)
        .where(DailyRollup.day >= start, DailyRollup.day <= end)
        .order_by(DailyRollup.day)
    )
    return list(session.scalars(stmt))


def get_month(session: Session, year: int, month: int) -> dict[str, Any]:
    """Calendar grid data for one month: one entry per day with data.

    Raises:
        ValueError: If ``month`` is not 1-12.
    """
    if not 1 <= month <= 12:
        msg = f"Invalid month: {month}"
        raise ValueError(msg)
    last_day = calendar.monthrange(year, month)[1]
    rollups = get_rollups(session, date(year, month, 1), date(year, month, last_day))
    return {
        "year": year,
        "month": month,
        "days": [
            {
                "date": rollup.day.isoformat(),
                "has_data": bool(rollup.data_types),
                "data_types": rollup.data_types,
                "entry_count": rollup.entry_count,
            }
            for rollup in rollups
        ],
    }


def get_day(session: Session, day: date) -> dict[str, Any]:
    """Everything stored for one calendar day, grouped by source."""
    rollup = session.scalar(select(DailyRollup).where(DailyRollup.day == day))
    modules: dict[str, Any] = {}

    entries = list(
        session.scalars(
            select(LifelogEntry)
            .where(LifelogEntry.day == day)
            .options(selectinload(LifelogEntry.content_nodes))
            .order_by(LifelogEntry.start_time)
        )
    )
    if entries:
        modules["limitless"] = {
            "entries": [_lifelog_dict(entry) for entry in entries],
            "count": len(entries),
        }

    conversations = list(
        session.scalars(
            select(Conversation)
            .where(Conversation.day == day)
            .options(selectinload(Conversation.utterances))
            .order_by(Conversation.start_time)
        )
    )
    facts = list(session.scalars(select(Fact).where(Fact.day == day)))
    todos = list(session.scalars(select(Todo).where(Todo.day == day)))
    locations = list(
        session.scalars(select(LocationPing).where(LocationPing.day == day).order_by(LocationPing.recorded_at))
    )
    if conversations or facts or todos or locations:
        modules["bee"] = {
            "conversations": [_conversation_dict(c) for c in conversations],
            "facts": [_columns(f, "external_id", "content", "is_confirmed") for f in facts],
            "todos": [_columns(t, "external_id", "text", "alarm_at", "completed") for t in todos],
            "locations": [
                _columns(p, "external_id", "latitude", "longitude", "address", "recorded_at") for p in locations
            ],
            "count": len(conversations),
        }

    weather = session.scalar(select(WeatherEntry).where(WeatherEntry.day == day).order_by(WeatherEntry.location))
    if weather is not None:
        modules["weather"] = _columns(
            weather,
            "location", "temperature_high", "temperature_low", "condition",
            "description", "humidity", "icon_code", "sunrise", "sunset",
        )

    mood = session.scalar(select(MoodEntry).where(MoodEntry.day == day))
    if mood is not None:
        modules["mood"] = _columns(mood, "mood_score", "mood_text", "notes", "recorded_at")

    return {
        "date": day.isoformat(),
        "summary": rollup.narrative_summary if rollup is not None else None,
        "data_types": rollup.data_types if rollup is not None else [],
        "modules": modules,
    }


def get_watermarks(session: Session) -> dict[str, datetime]:
    rows = session.execute(select(SyncWatermark.source, SyncWatermark.watermark).order_by(SyncWatermark.source))
    return {source: watermark for source, watermark in rows}


def _columns(obj: Any, *names: str) -> dict[str, Any]:
    return {name: getattr(obj, name) for name in names}


def _lifelog_dict(entry: LifelogEntry) -> dict[str, Any]:
    data = _columns(
        entry, "id", "external_id", "title", "markdown_content", "start_time", "end_time", "is_starred"
    )
    data["content_nodes"] = [_node_dict(node) for node in _tree_order(entry.content_nodes)]
    return data


def _node_dict(node: ContentNode) -> dict[str, Any]:
    return _columns(
        node, "id", "parent_id", "node_key", "position", "depth", "node_type",
        "content", "start_time", "end_time", "start_offset_ms", "end_offset_ms", "speaker_name",
    )


def _tree_order(nodes: list[ContentNode]) -> list[ContentNode]:
    """Depth-first source order, rebuilt from parent links and positions."""
    children: dict[str | None, list[ContentNode]] = {}
    for node in nodes:
        children.setdefault(node.parent_id, []).append(node)
    for siblings in children.values():
        siblings.sort(key=lambda n: n.position)

    ordered: list[ContentNode] = []
    stack = list(reversed(children.get(None, [])))
    while stack:
        node = stack.pop()
        ordered.append(node)
        stack.extend(reversed(children.get(node.id, [])))
    return ordered


def _conversation_dict(conversation: Conversation) -> dict[str, Any]:
    data = _columns(
        conversation, "id", "external_id", "start_time", "end_time", "summary",
        "short_summary", "device_type", "state",
    )
    data["primary_location"] = conversation.primary_location
    data["utterances"] = [
        _columns(u, "external_id", "position", "speaker", "text", "spoken_at")
        for u in conversation.utterances
    ]
    return data
