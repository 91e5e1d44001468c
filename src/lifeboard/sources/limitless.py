"""Limitless lifelog client (cursor pagination)."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from lifeboard.config import LimitlessSettings
from lifeboard.core.dates import EPOCH, format_api_timestamp
from lifeboard.core.errors import FatalSourceError
from lifeboard.sources.base import HttpSourceClient, Page, SourceStream, dig, extract_items

NEXT_CURSOR_KEYS = ("nextCursor", "meta.lifelogs.nextCursor", "pagination.next_cursor")


class LimitlessClient(HttpSourceClient):
    """Fetches lifelog entries, oldest first, starting at the watermark."""

    name = "limitless"

    def __init__(self, settings: LimitlessSettings, **kwargs: Any):
        if not settings.api_key:
            raise FatalSourceError(self.name, "api_key is not configured")
        super().__init__(settings.api_key, settings.base_url, **kwargs)

    def streams(self) -> list[SourceStream]:
        return [SourceStream("lifelog", self.fetch_lifelogs)]

    def fetch_lifelogs(self, since: datetime, cursor: Any, limit: int) -> Page:
        params: dict[str, Any] = {"limit": limit, "cursor": cursor, "direction": "asc"}
        if since > EPOCH:
            params["start"] = format_api_timestamp(since)
        body = self.get_json("/lifelogs", params)
        items = extract_items(body, "lifelogs", "data.lifelogs")
        return Page(items=items, next=_next_cursor(body))


def _next_cursor(body: Any) -> str | None:
    for key in NEXT_CURSOR_KEYS:
        value = dig(body, key)
        if value:
            return str(value)
    return None
