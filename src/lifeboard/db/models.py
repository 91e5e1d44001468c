"""Database models for Lifeboard.

Source records (one table per record type) are keyed by ``external_id``,
the upsert conflict key. Child records hang off their parent with cascading
deletes. ``SyncWatermark`` and ``DailyRollup`` hold derived sync state, and
``SyncRun`` tracks run history.
"""

import json
from datetime import date, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


def new_id() -> str:
    return str(uuid4())


class LifeboardBase(DeclarativeBase):
    """Base class for all Lifeboard models."""


class SourceRecordMixin:
    """Columns shared by every top-level source record table."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    # Calendar day in the configured timezone; None for undated records (facts)
    day: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    # Modification marker: 1 on insert, bumped on every update
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )


# -- Limitless --


class LifelogEntry(SourceRecordMixin, LifeboardBase):
    """A Limitless lifelog entry."""

    __tablename__ = "lifelog_entries"

    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    markdown_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_starred: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    content_nodes: Mapped[list["ContentNode"]] = relationship(
        "ContentNode",
        back_populates="entry",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (Index("idx_lifelog_entries_start_time", "start_time"),)


class ContentNode(LifeboardBase):
    """A node in a lifelog entry's content tree."""

    __tablename__ = "lifelog_content_nodes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    entry_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("lifelog_entries.id", ondelete="CASCADE"), nullable=False
    )
    parent_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("lifelog_content_nodes.id", ondelete="CASCADE"), nullable=True
    )
    # Source node id, or the positional path ("0.2.1") when the source has none
    node_key: Mapped[str] = mapped_column(String(255), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    depth: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    node_type: Mapped[str] = mapped_column(String(50), nullable=False, default="unknown")
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    start_offset_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    end_offset_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    speaker_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    speaker_identifier: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    entry: Mapped[LifelogEntry] = relationship("LifelogEntry", back_populates="content_nodes")

    __table_args__ = (
        UniqueConstraint("entry_id", "node_key", name="uq_content_node_entry_key"),
        Index("idx_content_nodes_entry", "entry_id"),
        Index("idx_content_nodes_parent", "parent_id"),
    )


# -- Bee --


class Conversation(SourceRecordMixin, LifeboardBase):
    """A Bee conversation."""

    __tablename__ = "bee_conversations"

    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    device_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    short_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    state: Mapped[str | None] = mapped_column(String(50), nullable=True)
    primary_location_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    utterances: Mapped[list["Utterance"]] = relationship(
        "Utterance",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Utterance.position",
    )

    @property
    def primary_location(self) -> dict[str, Any] | None:
        """Get deserialized primary location."""
        if self.primary_location_json is None:
            return None
        return json.loads(self.primary_location_json)  # type: ignore[no-any-return]

    __table_args__ = (Index("idx_bee_conversations_start_time", "start_time"),)


class Utterance(LifeboardBase):
    """One utterance inside a Bee conversation."""

    __tablename__ = "bee_utterances"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    conversation_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("bee_conversations.id", ondelete="CASCADE"), nullable=False
    )
    external_id: Mapped[str] = mapped_column(String(64), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    speaker: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    start_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    end_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    spoken_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_realtime: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    conversation: Mapped[Conversation] = relationship("Conversation", back_populates="utterances")

    __table_args__ = (
        UniqueConstraint("conversation_id", "external_id", name="uq_utterance_conversation_id"),
        Index("idx_bee_utterances_conversation", "conversation_id"),
        Index("idx_bee_utterances_spoken_at", "spoken_at"),
    )


class Fact(SourceRecordMixin, LifeboardBase):
    """A fact Bee learned about the user."""

    __tablename__ = "bee_facts"

    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    source_created_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class Todo(SourceRecordMixin, LifeboardBase):
    """A Bee todo item."""

    __tablename__ = "bee_todos"

    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    alarm_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source_created_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class LocationPing(SourceRecordMixin, LifeboardBase):
    """A location snapshot recorded by Bee."""

    __tablename__ = "bee_locations"

    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


# -- Weather and mood --


class WeatherEntry(SourceRecordMixin, LifeboardBase):
    """Weather for one location on one day."""

    __tablename__ = "weather_entries"

    location: Mapped[str] = mapped_column(String(255), nullable=False)
    temperature_high: Mapped[float | None] = mapped_column(Float, nullable=True)
    temperature_low: Mapped[float | None] = mapped_column(Float, nullable=True)
    condition: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    humidity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    icon_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    sunrise: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    sunset: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    data_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def data(self) -> dict[str, Any]:
        """Get the raw provider response."""
        return json.loads(self.data_json) if self.data_json else {}  # type: ignore[no-any-return]

    __table_args__ = (
        UniqueConstraint("day", "location", name="uq_weather_day_location"),
    )


class MoodEntry(SourceRecordMixin, LifeboardBase):
    """A manually entered mood for one day."""

    __tablename__ = "mood_entries"

    mood_score: Mapped[int] = mapped_column(Integer, nullable=False)
    mood_text: Mapped[str | None] = mapped_column(String(50), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    recorded_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (UniqueConstraint("day", name="uq_mood_day"),)


# -- Sync state --


class SyncWatermark(LifeboardBase):
    """Instant through which a source is known to be fully synced."""

    __tablename__ = "sync_watermarks"

    source: Mapped[str] = mapped_column(String(64), primary_key=True)
    watermark: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )


class DailyRollup(LifeboardBase):
    """Per-day presence flags and counts for calendar rendering."""

    __tablename__ = "daily_rollups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    day: Mapped[date] = mapped_column(Date, nullable=False, unique=True)
    has_limitless_data: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_bee_data: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_weather_data: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_mood_data: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    limitless_entry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    bee_conversation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    narrative_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )

    @property
    def data_types(self) -> list[str]:
        """Names of sources with data on this day."""
        flags = [
            ("limitless", self.has_limitless_data),
            ("bee", self.has_bee_data),
            ("weather", self.has_weather_data),
            ("mood", self.has_mood_data),
        ]
        return [name for name, present in flags if present]

    @property
    def entry_count(self) -> int:
        return (self.limitless_entry_count or 0) + (self.bee_conversation_count or 0)


class SyncRun(LifeboardBase):
    """Execution tracking for sync runs."""

    __tablename__ = "sync_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    source: Mapped[str] = mapped_column(String(64), nullable=False)
    trigger: Mapped[str] = mapped_column(String(32), nullable=False, default="api")
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="pending"
    )  # pending/running/completed/failed
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    stats_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )

    @property
    def stats(self) -> dict[str, Any]:
        """Get deserialized run stats."""
        return json.loads(self.stats_json)  # type: ignore[no-any-return]

    @stats.setter
    def stats(self, value: dict[str, Any]) -> None:
        """Set serialized run stats."""
        self.stats_json = json.dumps(value, default=str)

    __table_args__ = (
        Index("idx_sync_runs_source", "source"),
        Index("idx_sync_runs_created_at", "created_at"),
    )


# Record type name -> model
RECORD_MODELS: dict[str, type[LifeboardBase]] = {
    "lifelog": LifelogEntry,
    "conversation": Conversation,
    "fact": Fact,
    "todo": Todo,
    "location": LocationPing,
    "weather": WeatherEntry,
    "mood": MoodEntry,
}
