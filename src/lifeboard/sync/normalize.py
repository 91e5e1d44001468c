"""Record normalizer.

Each record type is described by a ``RecordSpec``: an ordered tuple of
candidate keys per column (the first present key wins), the id keys, which
column determines the calendar day, and which keys carry a modification
instant. ``normalize`` turns one raw record into a ``CanonicalRecord`` or
raises ``ValidationError`` with a reason code.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo
from typing import Any

from lifeboard.core.dates import day_bucket, parse_day, parse_instant
from lifeboard.core.errors import (
    INVALID_TIMESTAMP,
    INVALID_VALUE,
    MISSING_REQUIRED_FIELD,
    ValidationError,
)

logger = logging.getLogger(__name__)

TEXT = "text"
INT = "int"
FLOAT = "float"
BOOL = "bool"
INSTANT = "instant"
DATE = "date"
JSON = "json"

_TRUE_STRINGS = frozenset({"true", "1", "yes", "y", "on"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "n", "off", ""})


@dataclass(frozen=True)
class Field:
    """One column and the raw keys that may carry it, in priority order."""

    column: str
    keys: tuple[str, ...]
    kind: str = TEXT
    required: bool = False
    default: Any = None
    # Column to copy when no key is present (e.g. end_time <- start_time)
    fallback: str | None = None
    min_value: float | None = None
    max_value: float | None = None
    # False for values only used to derive the day or the external id
    stored: bool = True


@dataclass(frozen=True)
class RecordSpec:
    """How to read one source's raw record of one type."""

    source: str
    record_type: str
    fields: tuple[Field, ...]
    id_keys: tuple[str, ...] = ("id",)
    # Column holding the instant or date that decides the record's day
    day_column: str | None = None
    # Keys that carry the record's modification instant; empty means the
    # record does not take part in watermark tracking
    modified_keys: tuple[str, ...] = ()
    # Raw keys holding child records (first present list wins)
    children_keys: tuple[str, ...] = ()
    # Builds the external id from normalized values when the source has none
    id_builder: Callable[[dict[str, Any]], str] | None = None
    # Column that receives the whole raw record as JSON
    raw_column: str | None = None
    # Present but unconvertible optional values raise instead of defaulting
    strict: bool = False


@dataclass
class CanonicalRecord:
    """A normalized record ready for reconciliation."""

    source: str
    record_type: str
    external_id: str
    values: dict[str, Any]
    day: date | None = None
    last_modified: datetime | None = None
    children: list[Any] = field(default_factory=list)


# -- Field resolution --


def lookup(raw: Any, path: str) -> Any:
    """Resolve a dotted key path; numeric parts index into lists."""
    current = raw
    for part in path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return None
            current = current[part]
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return None
            current = current[index]
        else:
            return None
    return current


def first_present(raw: Any, keys: tuple[str, ...]) -> tuple[str | None, Any]:
    """Return the first key whose value is present (not None, not empty string)."""
    for key in keys:
        value = lookup(raw, key)
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        return key, value
    return None, None


def _convert(value: Any, kind: str) -> Any:
    """Convert a raw value to ``kind``; raises ValueError/TypeError on failure."""
    if kind == TEXT:
        if isinstance(value, (dict, list)):
            return json.dumps(value, default=str)
        return str(value)
    if kind == INT:
        if isinstance(value, bool):
            msg = "bool is not an int"
            raise TypeError(msg)
        if isinstance(value, float) and not value.is_integer():
            return int(round(value))
        return int(value)
    if kind == FLOAT:
        if isinstance(value, bool):
            msg = "bool is not a float"
            raise TypeError(msg)
        return float(value)
    if kind == BOOL:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value != 0
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
        msg = f"not a boolean: {value!r}"
        raise ValueError(msg)
    if kind == INSTANT:
        return parse_instant(value)
    if kind == DATE:
        return parse_day(value)
    if kind == JSON:
        return json.dumps(value, default=str)
    msg = f"unknown field kind: {kind}"
    raise ValueError(msg)


def _resolve_field(spec: RecordSpec, fld: Field, raw: dict[str, Any], values: dict[str, Any]) -> Any:
    key, value = first_present(raw, fld.keys)
    if key is None:
        if fld.fallback is not None and values.get(fld.fallback) is not None:
            return values[fld.fallback]
        if fld.required:
            reason = INVALID_TIMESTAMP if fld.kind in (INSTANT, DATE) else MISSING_REQUIRED_FIELD
            raise ValidationError(reason, fld.column, "missing")
        return fld.default

    try:
        converted = _convert(value, fld.kind)
    except (ValueError, TypeError, OverflowError) as exc:
        reason = INVALID_TIMESTAMP if fld.kind in (INSTANT, DATE) else INVALID_VALUE
        if fld.required or spec.strict:
            raise ValidationError(reason, fld.column, f"{key}={value!r}") from exc
        logger.debug("%s.%s: ignoring %s=%r (%s)", spec.source, spec.record_type, key, value, exc)
        return fld.default

    if fld.kind in (INT, FLOAT):
        too_low = fld.min_value is not None and converted < fld.min_value
        too_high = fld.max_value is not None and converted > fld.max_value
        if too_low or too_high:
            raise ValidationError(
                INVALID_VALUE, fld.column, f"{converted} outside [{fld.min_value}, {fld.max_value}]"
            )
    return converted


def external_id_of(raw: dict[str, Any], keys: tuple[str, ...]) -> str | None:
    _, value = first_present(raw, keys)
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    return str(value)


def normalize(spec: RecordSpec, raw: Any, tz: tzinfo) -> CanonicalRecord:
    """Normalize one raw record.

    Raises:
        ValidationError: ``missing_required_field`` for a missing external id
            or required field, ``invalid_timestamp`` for a missing or
            unparsable required instant, ``invalid_value`` for out-of-range
            or unconvertible values.
    """
    if not isinstance(raw, dict):
        raise ValidationError(MISSING_REQUIRED_FIELD, "record", f"not an object: {type(raw).__name__}")

    external_id = external_id_of(raw, spec.id_keys) if spec.id_keys else None
    if external_id is None and spec.id_builder is None:
        raise ValidationError(MISSING_REQUIRED_FIELD, "external_id")

    values: dict[str, Any] = {}
    try:
        for fld in spec.fields:
            values[fld.column] = _resolve_field(spec, fld, raw, values)
    except ValidationError as exc:
        exc.external_id = external_id
        raise

    day: date | None = None
    if spec.day_column is not None:
        anchor = values.get(spec.day_column)
        if isinstance(anchor, datetime):
            day = day_bucket(anchor, tz)
        elif isinstance(anchor, date):
            day = anchor
    values["day"] = day

    if external_id is None:
        assert spec.id_builder is not None
        external_id = spec.id_builder(values)

    columns = {fld.column: values[fld.column] for fld in spec.fields if fld.stored}
    columns["day"] = day
    if spec.raw_column is not None:
        columns[spec.raw_column] = json.dumps(raw, default=str)

    last_modified = None
    if spec.modified_keys:
        last_modified = _modified_instant(raw, spec.modified_keys)

    children: list[Any] = []
    if spec.children_keys:
        _, nested = first_present(raw, spec.children_keys)
        if isinstance(nested, list):
            children = nested

    return CanonicalRecord(
        source=spec.source,
        record_type=spec.record_type,
        external_id=external_id,
        values=columns,
        day=day,
        last_modified=last_modified,
        children=children,
    )


def _modified_instant(raw: dict[str, Any], keys: tuple[str, ...]) -> datetime | None:
    for key in keys:
        value = lookup(raw, key)
        if value is None:
            continue
        try:
            return parse_instant(value)
        except ValueError:
            continue
    return None


def normalize_child(spec: RecordSpec, raw: Any) -> dict[str, Any]:
    """Normalize a child record's columns (no day bucketing, no children)."""
    if not isinstance(raw, dict):
        raise ValidationError(MISSING_REQUIRED_FIELD, "record", f"not an object: {type(raw).__name__}")
    values: dict[str, Any] = {}
    for fld in spec.fields:
        values[fld.column] = _resolve_field(spec, fld, raw, values)
    return values


# -- Field tables --

LIFELOG = RecordSpec(
    source="limitless",
    record_type="lifelog",
    id_keys=("id", "lifelog_id", "limitless_id"),
    fields=(
        Field("title", ("title",)),
        Field("markdown_content", ("markdown", "markdown_content", "markdownContent")),
        Field("start_time", ("startTime", "start_time", "start", "created_at", "createdAt"), INSTANT, required=True),
        Field("end_time", ("endTime", "end_time", "end"), INSTANT, fallback="start_time"),
        Field("is_starred", ("isStarred", "is_starred", "starred"), BOOL, default=False),
    ),
    day_column="start_time",
    # The next fetch filters on start time, so the watermark must use it too
    modified_keys=("startTime", "start_time", "start"),
    children_keys=("contents", "content_nodes"),
)

CONTENT_NODE = RecordSpec(
    source="limitless",
    record_type="content_node",
    fields=(
        Field("node_type", ("type", "node_type", "nodeType"), default="unknown"),
        Field("content", ("content", "text")),
        Field("start_time", ("startTime", "start_time"), INSTANT),
        Field("end_time", ("endTime", "end_time"), INSTANT),
        Field("start_offset_ms", ("startOffsetMs", "start_offset_ms"), INT),
        Field("end_offset_ms", ("endOffsetMs", "end_offset_ms"), INT),
        Field("speaker_name", ("speakerName", "speaker_name")),
        Field("speaker_identifier", ("speakerIdentifier", "speaker_identifier")),
    ),
    children_keys=("children",),
    strict=True,
)

CONVERSATION = RecordSpec(
    source="bee",
    record_type="conversation",
    id_keys=("id", "conversation_id", "bee_id"),
    fields=(
        Field("start_time", ("start_time", "startTime", "created_at", "createdAt"), INSTANT, required=True),
        Field("end_time", ("end_time", "endTime"), INSTANT, fallback="start_time"),
        Field("device_type", ("device_type", "deviceType")),
        Field("summary", ("summary",)),
        Field("short_summary", ("short_summary", "shortSummary")),
        Field("state", ("state", "status")),
        Field("primary_location_json", ("primary_location", "primaryLocation"), JSON),
    ),
    day_column="start_time",
    modified_keys=("updated_at", "updatedAt", "end_time", "endTime", "start_time", "startTime"),
    children_keys=("transcriptions", "utterances"),
)

UTTERANCE = RecordSpec(
    source="bee",
    record_type="utterance",
    id_keys=("id", "utterance_id"),
    fields=(
        Field("speaker", ("speaker", "speaker_name"), default=""),
        Field("text", ("text", "content"), default=""),
        Field("start_seconds", ("start_seconds", "start", "startOffsetSeconds"), FLOAT),
        Field("end_seconds", ("end_seconds", "end", "endOffsetSeconds"), FLOAT),
        Field("spoken_at", ("spoken_at", "spokenAt", "timestamp"), INSTANT, required=True),
        # Explicit contract: realtime unless the source says otherwise
        Field("is_realtime", ("is_realtime", "isRealtime", "realtime"), BOOL, default=True),
    ),
    strict=True,
)

FACT = RecordSpec(
    source="bee",
    record_type="fact",
    id_keys=("id", "fact_id", "bee_id"),
    fields=(
        Field("content", ("content", "text"), default=""),
        # Explicit contract: a fact is confirmed unless the source says otherwise
        Field("is_confirmed", ("is_confirmed", "isConfirmed", "confirmed"), BOOL, default=True),
        Field("source_created_at", ("created_at", "createdAt"), INSTANT),
    ),
    day_column="source_created_at",
    modified_keys=("updated_at", "updatedAt", "created_at", "createdAt"),
)

TODO = RecordSpec(
    source="bee",
    record_type="todo",
    id_keys=("id", "todo_id", "bee_id"),
    fields=(
        Field("text", ("text", "content"), default=""),
        Field("alarm_at", ("alarm_at", "alarmAt"), INSTANT),
        Field("completed", ("completed", "is_completed", "done"), BOOL, default=False),
        Field("source_created_at", ("created_at", "createdAt"), INSTANT),
    ),
    day_column="source_created_at",
    modified_keys=("updated_at", "updatedAt", "created_at", "createdAt", "alarm_at", "alarmAt"),
)

LOCATION = RecordSpec(
    source="bee",
    record_type="location",
    id_keys=("id", "location_id", "bee_id"),
    fields=(
        Field("latitude", ("latitude", "lat"), FLOAT, required=True, min_value=-90, max_value=90),
        Field("longitude", ("longitude", "lng", "lon"), FLOAT, required=True, min_value=-180, max_value=180),
        Field("address", ("address",)),
        Field("recorded_at", ("recorded_at", "recordedAt", "timestamp", "created_at"), INSTANT, required=True),
    ),
    day_column="recorded_at",
    modified_keys=("updated_at", "updatedAt", "recorded_at", "recordedAt", "timestamp", "created_at"),
)


def _weather_id(values: dict[str, Any]) -> str:
    return f"{values['location']}@{values['day'].isoformat()}"


WEATHER = RecordSpec(
    source="weather",
    record_type="weather",
    id_keys=(),
    fields=(
        Field("observed_at", ("dt", "date", "observed_at"), INSTANT, required=True, stored=False),
        Field("location", ("location", "name"), required=True),
        Field("temperature_high", ("main.temp_max", "temperature_high"), FLOAT),
        Field("temperature_low", ("main.temp_min", "temperature_low"), FLOAT),
        Field("condition", ("weather.0.main", "condition")),
        Field("description", ("weather.0.description", "description")),
        Field("humidity", ("main.humidity", "humidity"), INT),
        Field("icon_code", ("weather.0.icon", "icon_code")),
        Field("sunrise", ("sys.sunrise", "sunrise"), INSTANT),
        Field("sunset", ("sys.sunset", "sunset"), INSTANT),
    ),
    day_column="observed_at",
    id_builder=_weather_id,
    raw_column="data_json",
)


def _mood_id(values: dict[str, Any]) -> str:
    return values["day"].isoformat()


MOOD = RecordSpec(
    source="mood",
    record_type="mood",
    id_keys=(),
    fields=(
        Field("date", ("date", "day"), DATE, required=True, stored=False),
        Field("mood_score", ("mood_score", "moodScore", "score"), INT, required=True, min_value=1, max_value=10),
        Field("mood_text", ("mood_text", "moodText")),
        Field("notes", ("notes",)),
        Field("recorded_at", ("recorded_at", "recordedAt"), INSTANT),
    ),
    day_column="date",
    id_builder=_mood_id,
)

RECORD_SPECS: dict[str, RecordSpec] = {
    spec.record_type: spec
    for spec in (LIFELOG, CONVERSATION, FACT, TODO, LOCATION, WEATHER, MOOD)
}

CHILD_SPECS: dict[str, RecordSpec] = {
    "lifelog": CONTENT_NODE,
    "conversation": UTTERANCE,
}


