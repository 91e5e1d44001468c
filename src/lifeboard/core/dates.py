"""Instant parsing and calendar-day bucketing.

All instants are stored as naive UTC datetimes. Day buckets are computed in
the configured timezone.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

EPOCH = datetime(1970, 1, 1)

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_NUMERIC = re.compile(r"^-?\d+(\.\d+)?$")

# Epoch values above this are milliseconds (year 5138 in seconds).
_MS_THRESHOLD = 100_000_000_000


def to_utc_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive input is assumed UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_instant(value: object) -> datetime:
    """Parse an ISO-8601 string, epoch number or datetime into naive UTC.

    Raises:
        ValueError: If the value cannot be interpreted as an instant.
    """
    if isinstance(value, datetime):
        return to_utc_naive(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, bool) or value is None:
        msg = f"not a timestamp: {value!r}"
        raise ValueError(msg)
    if isinstance(value, (int, float)):
        return _from_epoch(float(value))
    if not isinstance(value, str):
        msg = f"unsupported timestamp type: {type(value).__name__}"
        raise ValueError(msg)

    text = value.strip()
    if not text:
        msg = "empty timestamp"
        raise ValueError(msg)
    if _NUMERIC.match(text):
        return _from_epoch(float(text))
    if _DATE_ONLY.match(text):
        parsed_date = date.fromisoformat(text)
        return datetime(parsed_date.year, parsed_date.month, parsed_date.day)
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return to_utc_naive(parsed)


def _from_epoch(seconds: float) -> datetime:
    if abs(seconds) >= _MS_THRESHOLD:
        seconds = seconds / 1000.0
    try:
        aware = datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError) as exc:
        msg = f"epoch value out of range: {seconds}"
        raise ValueError(msg) from exc
    return aware.replace(tzinfo=None)


def parse_day(value: object) -> date:
    """Parse a calendar date from a ``YYYY-MM-DD`` string, date or datetime."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and _DATE_ONLY.match(value.strip()):
        return date.fromisoformat(value.strip())
    if isinstance(value, str):
        return parse_instant(value).date()
    msg = f"not a date: {value!r}"
    raise ValueError(msg)


def resolve_timezone(name: str) -> tzinfo:
    """Look up an IANA timezone, raising ValueError for unknown names."""
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        msg = f"Unknown timezone: {name}"
        raise ValueError(msg) from exc


def day_bucket(instant: datetime, tz: tzinfo) -> date:
    """Calendar day an instant (naive UTC) falls on in ``tz``."""
    return instant.replace(tzinfo=timezone.utc).astimezone(tz).date()


def format_api_timestamp(instant: datetime) -> str:
    """Format a naive UTC instant as ``YYYY-MM-DDTHH:MM:SSZ``."""
    return instant.replace(microsecond=0).isoformat() + "Z"


def utcnow() -> datetime:
    """Current instant as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
