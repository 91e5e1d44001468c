"""Tests for instant parsing and day bucketing."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from lifeboard.core.dates import (
    EPOCH,
    day_bucket,
    format_api_timestamp,
    parse_day,
    parse_instant,
    resolve_timezone,
    to_utc_naive,
)


class TestParseInstant:
    @pytest.mark.parametrize(
        "value",
        [
            "2024-03-15T10:00:00Z",
            "2024-03-15T10:00:00+00:00",
            "2024-03-15T12:00:00+02:00",
            1710496800,
            1710496800.0,
            "1710496800",
            1710496800000,
        ],
    )
    def test_equivalent_forms(self, value):
        """ISO strings, offsets and epoch seconds or milliseconds parse to the same instant."""
        assert parse_instant(value) == datetime(2024, 3, 15, 10, 0)

    def test_date_only_is_midnight(self):
        """A bare date parses as midnight UTC."""
        assert parse_instant("2024-03-15") == datetime(2024, 3, 15)

    def test_naive_string_assumed_utc(self):
        """Strings without an offset are taken as UTC."""
        assert parse_instant("2024-03-15T10:00:00") == datetime(2024, 3, 15, 10, 0)

    def test_aware_datetime(self):
        """Aware datetimes are converted to naive UTC."""
        value = datetime(2024, 3, 15, 5, 0, tzinfo=timezone(timedelta(hours=-5)))
        assert parse_instant(value) == datetime(2024, 3, 15, 10, 0)

    @pytest.mark.parametrize("value", ["", "   ", "not a date", None, True, [], {}])
    def test_rejects_garbage(self, value):
        """Empty, non-temporal and boolean values raise ValueError."""
        with pytest.raises(ValueError):
            parse_instant(value)


class TestParseDay:
    def test_iso_date(self):
        """ISO dates parse directly."""
        assert parse_day("2024-03-15") == date(2024, 3, 15)

    def test_datetime_string(self):
        """A datetime string yields its UTC date."""
        assert parse_day("2024-03-15T23:30:00Z") == date(2024, 3, 15)

    def test_date_passthrough(self):
        """date objects are returned unchanged."""
        assert parse_day(date(2024, 3, 15)) == date(2024, 3, 15)

    def test_rejects_number(self):
        """Integers are not accepted as days."""
        with pytest.raises(ValueError):
            parse_day(20240315)


class TestBucketing:
    def test_utc(self):
        """In UTC the day is the instant's date."""
        assert day_bucket(datetime(2024, 3, 15, 23, 59), timezone.utc) == date(2024, 3, 15)

    def test_west_of_utc(self):
        """Early UTC instants fall on the previous day west of UTC."""
        tz = timezone(timedelta(hours=-8))
        assert day_bucket(datetime(2024, 3, 15, 7, 0), tz) == date(2024, 3, 14)

    def test_east_of_utc(self):
        """Late UTC instants fall on the next day east of UTC."""
        tz = timezone(timedelta(hours=9))
        assert day_bucket(datetime(2024, 3, 15, 16, 0), tz) == date(2024, 3, 16)


class TestHelpers:
    def test_to_utc_naive_leaves_naive_alone(self):
        """Naive values are returned as-is."""
        value = datetime(2024, 3, 15, 10, 0)
        assert to_utc_naive(value) is value

    def test_format_api_timestamp(self):
        """API timestamps drop microseconds and end in Z."""
        assert format_api_timestamp(datetime(2024, 3, 15, 10, 0, 0, 123456)) == "2024-03-15T10:00:00Z"

    def test_epoch_is_naive(self):
        """EPOCH is the naive Unix epoch."""
        assert EPOCH == datetime(1970, 1, 1)
        assert EPOCH.tzinfo is None

    def test_resolve_utc(self):
        """UTC resolves to timezone.utc."""
        assert resolve_timezone("UTC") is timezone.utc

    def test_resolve_unknown(self):
        """Unknown zone names raise ValueError."""
        with pytest.raises(ValueError, match="Unknown timezone"):
            resolve_timezone("Mars/Olympus_Mons")
