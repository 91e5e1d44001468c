"""Tests for the pagination cursor walker."""

from __future__ import annotations

import threading

import pytest

from lifeboard.core.errors import FatalSourceError, TransientNetworkError
from lifeboard.sources.base import Page
from lifeboard.sync.pagination import (
    CANCELLED,
    EXHAUSTED,
    FETCH_ERROR,
    MAX_PAGES,
    SHORT_PAGE,
    walk_pages,
)


def paged(sizes: list[int], last_has_next: bool = False):
    """A fetcher serving pages of the given sizes with integer cursors."""
    calls = []

    def fetch(cursor, limit):
        index = cursor or 0
        calls.append((cursor, limit))
        start = sum(sizes[:index])
        items = [{"id": start + i} for i in range(sizes[index])]
        is_last = index == len(sizes) - 1
        return Page(items=items, next=None if is_last and not last_has_next else index + 1)

    fetch.calls = calls
    return fetch


class TestWalkPages:
    def test_accumulates_until_exhausted(self):
        """Pages of 50, 50, 12 with limit 50 yield all 112 items in order."""
        fetch = paged([50, 50, 12])
        result = walk_pages(fetch, limit=50, max_pages=10)
        assert len(result.items) == 112
        assert [item["id"] for item in result.items] == list(range(112))
        assert result.pages == 3
        assert result.stop_reason == EXHAUSTED
        assert not result.partial

    def test_cursor_threaded_through_calls(self):
        """Each page's next cursor is passed to the following fetch."""
        fetch = paged([2, 2, 1])
        walk_pages(fetch, limit=2, max_pages=10)
        assert fetch.calls == [(None, 2), (1, 2), (2, 2)]

    def test_initial_cursor_used_for_first_call(self):
        """The first fetch uses the stream's initial cursor."""
        calls = []

        def fetch(cursor, limit):
            calls.append(cursor)
            return Page(items=[], next=None)

        walk_pages(fetch, limit=5, max_pages=3, initial_cursor=1)
        assert calls == [1]

    def test_short_page_stops_even_with_cursor(self):
        """A page smaller than the limit ends the walk despite a next cursor."""
        fetch = paged([3, 1], last_has_next=True)
        result = walk_pages(fetch, limit=3, max_pages=10)
        assert len(result.items) == 4
        assert result.stop_reason == SHORT_PAGE
        assert not result.partial

    def test_empty_first_page(self):
        """An empty first page ends the walk as exhausted."""
        fetch = paged([0])
        result = walk_pages(fetch, limit=50, max_pages=10)
        assert result.items == []
        assert result.pages == 1
        assert result.stop_reason == EXHAUSTED

    def test_max_pages_bounds_the_walk(self):
        """Stopping at max_pages leaves data behind, so the batch is partial."""

        def endless(cursor, limit):
            n = cursor or 0
            return Page(items=[{"id": n * limit + i} for i in range(limit)], next=n + 1)

        result = walk_pages(endless, limit=5, max_pages=3)
        assert result.pages == 3
        assert len(result.items) == 15
        assert result.stop_reason == MAX_PAGES
        assert result.partial

    def test_fetch_error_returns_items_so_far(self):
        """A transient failure mid-walk keeps earlier pages and flags the batch partial."""

        def flaky(cursor, limit):
            if cursor == 1:
                raise TransientNetworkError("HTTP 503")
            return Page(items=[{"id": i} for i in range(limit)], next=1)

        result = walk_pages(flaky, limit=4, max_pages=10)
        assert len(result.items) == 4
        assert result.pages == 1
        assert result.stop_reason == FETCH_ERROR
        assert isinstance(result.error, TransientNetworkError)
        assert result.partial

    def test_fatal_error_propagates(self):
        """FatalSourceError is not swallowed as a partial batch."""

        def denied(cursor, limit):
            raise FatalSourceError("limitless", "HTTP 401", status_code=401)

        with pytest.raises(FatalSourceError):
            walk_pages(denied, limit=10, max_pages=10)

    def test_cancel_checked_before_each_page(self):
        """Cancelling mid-walk stops before the next page."""
        cancel = threading.Event()
        calls = []

        def fetch(cursor, limit):
            calls.append(cursor)
            cancel.set()
            return Page(items=[{"id": 1}, {"id": 2}], next="next")

        result = walk_pages(fetch, limit=2, max_pages=10, cancel_event=cancel)
        assert calls == [None]
        assert len(result.items) == 2
        assert result.stop_reason == CANCELLED
        assert result.partial

    def test_cancelled_before_start_fetches_nothing(self):
        """A walk cancelled up front makes no request."""
        cancel = threading.Event()
        cancel.set()

        def fetch(cursor, limit):
            raise AssertionError("should not fetch")

        result = walk_pages(fetch, limit=2, max_pages=10, cancel_event=cancel)
        assert result.pages == 0
        assert result.stop_reason == CANCELLED

    @pytest.mark.parametrize("limit,max_pages", [(0, 10), (10, 0)])
    def test_rejects_non_positive_bounds(self, limit, max_pages):
        """limit and max_pages must be positive."""
        with pytest.raises(ValueError):
            walk_pages(paged([1]), limit=limit, max_pages=max_pages)
