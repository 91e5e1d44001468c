"""Database models and engine for Lifeboard.

- Source records: lifelogs, Bee conversations/facts/todos/locations, weather, mood
- Child records: lifelog content nodes, conversation utterances
- Sync state: watermarks, daily rollups, run history
"""

from lifeboard.db.engine import Database, create_store_engine, dialect_insert
from lifeboard.db.models import (
    RECORD_MODELS,
    ContentNode,
    Conversation,
    DailyRollup,
    Fact,
    LifeboardBase,
    LifelogEntry,
    LocationPing,
    MoodEntry,
    SyncRun,
    SyncWatermark,
    Todo,
    Utterance,
    WeatherEntry,
)

__all__ = [
    "RECORD_MODELS",
    "ContentNode",
    "Conversation",
    "DailyRollup",
    "Database",
    "Fact",
    "LifeboardBase",
    "LifelogEntry",
    "LocationPing",
    "MoodEntry",
    "SyncRun",
    "SyncWatermark",
    "Todo",
    "Utterance",
    "WeatherEntry",
    "create_store_engine",
    "dialect_insert",
]
