"""Pagination cursor walker."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from lifeboard.core.errors import FatalSourceError
from lifeboard.sources.base import Page, RawRecord

logger = logging.getLogger(__name__)

# Stop reasons
EXHAUSTED = "exhausted"
SHORT_PAGE = "short_page"
MAX_PAGES = "max_pages"
FETCH_ERROR = "fetch_error"
CANCELLED = "cancelled"


@dataclass
class WalkResult:
    """Items accumulated by one walk and why it stopped."""

    items: list[RawRecord] = field(default_factory=list)
    pages: int = 0
    stop_reason: str = EXHAUSTED
    error: Exception | None = None

    @property
    def partial(self) -> bool:
        """True when the walk stopped before the source ran out of data."""
        return self.stop_reason in (FETCH_ERROR, CANCELLED, MAX_PAGES)


def walk_pages(
    fetch: Callable[[Any, int], Page],
    limit: int,
    max_pages: int,
    initial_cursor: Any = None,
    cancel_event: threading.Event | None = None,
) -> WalkResult:
    """Drive ``fetch(cursor, limit)`` page by page.

    Stops when the next cursor is null, a page comes back with fewer than
    ``limit`` items, ``max_pages`` pages have been fetched, or the cancel
    event is set. A fetch error ends the walk with the items gathered so
    far and is reported on the result; ``FatalSourceError`` propagates.
    """
    if limit < 1 or max_pages < 1:
        msg = "limit and max_pages must be positive"
        raise ValueError(msg)

    result = WalkResult()
    cursor = initial_cursor
    while True:
        if cancel_event is not None and cancel_event.is_set():
            result.stop_reason = CANCELLED
            return result
        try:
            page = fetch(cursor, limit)
        except FatalSourceError:
            raise
        except Exception as exc:
            logger.warning("Fetch failed after %d pages: %s", result.pages, exc)
            result.stop_reason = FETCH_ERROR
            result.error = exc
            return result

        result.pages += 1
        result.items.extend(page.items)

        if page.next is None:
            result.stop_reason = EXHAUSTED
            return result
        if len(page.items) < limit:
            result.stop_reason = SHORT_PAGE
            return result
        if result.pages >= max_pages:
            logger.warning("Reached max pages (%d); more data may remain", max_pages)
            result.stop_reason = MAX_PAGES
            return result
        cursor = page.next
