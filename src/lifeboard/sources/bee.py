"""Bee wearable client (page-number pagination, one stream per sub-source)."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from lifeboard.config import BeeSettings
from lifeboard.core.errors import FatalSourceError, TransientNetworkError
from lifeboard.sources.base import HttpSourceClient, Page, RawRecord, SourceStream, dig, extract_items

logger = logging.getLogger(__name__)

# sub-source flag -> (record type, endpoint, response key)
SUB_SOURCES = (
    ("conversations", "conversation", "/conversations", "conversations"),
    ("facts", "fact", "/facts", "facts"),
    ("todos", "todo", "/todos", "todos"),
    ("locations", "location", "/locations", "locations"),
)


class BeeClient(HttpSourceClient):
    """Fetches Bee conversations, facts, todos and locations.

    Conversation list items usually omit transcripts, so each conversation
    is re-fetched from its detail endpoint. When the detail call fails the
    list item is used as-is.
    """

    name = "bee"

    def __init__(self, settings: BeeSettings, **kwargs: Any):
        if not settings.api_key:
            raise FatalSourceError(self.name, "api_key is not configured")
        super().__init__(settings.api_key, settings.base_url, **kwargs)
        self.settings = settings

    def streams(self) -> list[SourceStream]:
        streams = []
        for flag, record_type, endpoint, key in SUB_SOURCES:
            if not getattr(self.settings.sub_sources, flag):
                continue
            streams.append(
                SourceStream(record_type, self._page_fetcher(record_type, endpoint, key), initial_cursor=1)
            )
        return streams

    def _page_fetcher(self, record_type: str, endpoint: str, key: str):
        def fetch(since: datetime, page: Any, limit: int) -> Page:
            page_number = int(page or 1)
            body = self.get_json(endpoint, {"page": page_number, "limit": limit})
            items = extract_items(body, key)
            if record_type == "conversation" and self.settings.fetch_conversation_details:
                items = [self.conversation_detail(item) for item in items]
            return Page(items=items, next=_next_page(body, page_number, len(items), limit))

        return fetch

    def conversation_detail(self, item: RawRecord) -> RawRecord:
        """Merge the detail record for a conversation over its list item."""
        conversation_id = item.get("id")
        if conversation_id is None:
            return item
        try:
            body = self.get_json(f"/conversations/{conversation_id}")
        except (TransientNetworkError, FatalSourceError) as exc:
            logger.warning("bee: detail fetch failed for conversation %s: %s", conversation_id, exc)
            return item
        detail = body.get("conversation", body) if isinstance(body, dict) else None
        if not isinstance(detail, dict):
            return item
        return {**item, **detail}


def _next_page(body: Any, page: int, count: int, limit: int) -> int | None:
    if count < limit:
        return None
    total_pages = dig(body, "totalPages") or dig(body, "pagination.total_pages")
    if isinstance(total_pages, int) and page >= total_pages:
        return None
    return page + 1
