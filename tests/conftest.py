"""Shared test fixtures for Lifeboard."""

from __future__ import annotations

import math
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import httpx
import pytest

from lifeboard.config import Settings
from lifeboard.context import LifeboardContext
from lifeboard.db import Database
from lifeboard.sync.orchestrator import SyncOrchestrator

LIMITLESS_URL = "https://limitless.test/v1"
BEE_URL = "https://bee.test/v1/me"
WEATHER_URL = "https://weather.test/data/2.5"

LIFELOGS_PATH = "/v1/lifelogs"
BEE_PATH = "/v1/me"
WEATHER_PATH = "/data/2.5/weather"

Handler = Callable[[httpx.Request], httpx.Response]


class FakeApi:
    """Routes requests by URL path to canned handlers and records them.

    Unrouted paths answer 404, which the source clients treat as fatal.
    """

    def __init__(self):
        self.routes: dict[str, Handler] = {}
        self.requests: list[httpx.Request] = []

    def route(self, path: str, handler: Handler) -> None:
        self.routes[path] = handler

    def json(self, path: str, body: Any, status: int = 200) -> None:
        self.routes[path] = lambda request: httpx.Response(status, json=body)

    def status(self, path: str, status: int) -> None:
        self.routes[path] = lambda request: httpx.Response(status, json={"error": "nope"})

    def sequence(self, path: str, responses: list[httpx.Response | Handler]) -> None:
        """Answer with each response in turn, repeating the last one."""
        remaining = list(responses)

        def handle(request: httpx.Request) -> httpx.Response:
            item = remaining.pop(0) if len(remaining) > 1 else remaining[0]
            return item(request) if callable(item) else item

        self.routes[path] = handle

    def cursor_pages(
        self, path: str, items: list[dict[str, Any]], key: str = "lifelogs", filter_start: bool = False
    ) -> None:
        """Serve ``items`` with numeric-offset cursors, Limitless style.

        With ``filter_start`` only items whose ``startTime`` is at or after
        the ``start`` parameter are served, oldest first.
        """

        def handle(request: httpx.Request) -> httpx.Response:
            limit = int(request.url.params["limit"])
            start = int(request.url.params.get("cursor") or 0)
            served = items
            since = request.url.params.get("start")
            if filter_start and since:
                served = sorted(
                    (item for item in items if item["startTime"] >= since), key=lambda item: item["startTime"]
                )
            chunk = served[start:start + limit]
            next_cursor = str(start + limit) if start + limit < len(served) else None
            return httpx.Response(
                200,
                json={"data": {key: chunk}, "meta": {key: {"nextCursor": next_cursor, "count": len(chunk)}}},
            )

        self.routes[path] = handle

    def numbered_pages(self, path: str, items: list[dict[str, Any]], key: str) -> None:
        """Serve ``items`` with page numbers, Bee style."""

        def handle(request: httpx.Request) -> httpx.Response:
            page = int(request.url.params["page"])
            limit = int(request.url.params["limit"])
            chunk = items[(page - 1) * limit:page * limit]
            total_pages = max(1, math.ceil(len(items) / limit))
            return httpx.Response(
                200, json={key: chunk, "currentPage": page, "totalPages": total_pages}
            )

        self.routes[path] = handle

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.path == path]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(request.url.path)
        if handler is None:
            return httpx.Response(404, json={"error": f"no route for {request.url.path}"})
        return handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


def lifelog(n: int, start: datetime | None = None, **extra: Any) -> dict[str, Any]:
    """A Limitless lifelog ``n`` minutes after 09:00 on 2024-03-15."""
    begin = start or datetime(2024, 3, 15, 9, 0) + timedelta(minutes=n)
    record = {
        "id": f"log-{n}",
        "title": f"Entry {n}",
        "markdown": f"# Entry {n}",
        "startTime": begin.isoformat() + "Z",
        "endTime": (begin + timedelta(minutes=1)).isoformat() + "Z",
        "isStarred": False,
        "contents": [],
    }
    record.update(extra)
    return record


def conversation(n: int, start: datetime | None = None, **extra: Any) -> dict[str, Any]:
    """A Bee conversation ``n`` hours after 08:00 on 2024-03-15."""
    begin = start or datetime(2024, 3, 15, 8, 0) + timedelta(hours=n)
    record = {
        "id": 1000 + n,
        "start_time": begin.isoformat() + "Z",
        "end_time": (begin + timedelta(minutes=30)).isoformat() + "Z",
        "device_type": "bee",
        "summary": f"Conversation {n}",
        "short_summary": f"Chat {n}",
        "state": "COMPLETED",
        "transcriptions": [
            {
                "id": 1,
                "utterances": [
                    {"id": 10 * n + 1, "speaker": "A", "text": "hello", "spoken_at": begin.isoformat() + "Z"},
                    {"id": 10 * n + 2, "speaker": "B", "text": "hi", "spoken_at": begin.isoformat() + "Z"},
                ],
            }
        ],
    }
    record.update(extra)
    return record


def weather_reading(location: str = "Lisbon", dt: int = 1710500400) -> dict[str, Any]:
    """An OpenWeatherMap current-weather body (default 2024-03-15 11:00 UTC)."""
    return {
        "dt": dt,
        "name": location,
        "main": {"temp": 17.2, "temp_min": 12.5, "temp_max": 19.0, "humidity": 64},
        "weather": [{"main": "Clouds", "description": "scattered clouds", "icon": "03d"}],
        "sys": {"sunrise": 1710484800, "sunset": 1710528000},
    }


@pytest.fixture
def fake_api():
    return FakeApi()


@pytest.fixture
def make_lifelog():
    return lifelog


@pytest.fixture
def make_conversation():
    return conversation


@pytest.fixture
def make_weather():
    return weather_reading


@pytest.fixture
def settings(tmp_path):
    """Settings with every source enabled against fake hosts."""
    return Settings(
        storage_dir=tmp_path / "store",
        timezone="UTC",
        max_retries=1,
        retry_backoff=0,
        limitless={"enabled": True, "api_key": "limitless-key", "base_url": LIMITLESS_URL},
        bee={
            "enabled": True,
            "api_key": "bee-key",
            "base_url": BEE_URL,
            "fetch_conversation_details": False,
        },
        weather={"enabled": True, "api_key": "weather-key", "base_url": WEATHER_URL, "location": "Lisbon"},
    )


@pytest.fixture
def context(settings, fake_api):
    ctx = LifeboardContext.from_settings(settings, transport=fake_api.transport)
    yield ctx
    ctx.close()


@pytest.fixture
def orchestrator(context):
    return SyncOrchestrator(context)


@pytest.fixture
def database(tmp_path):
    """A standalone initialized SQLite store."""
    db = Database(f"sqlite:///{tmp_path / 'test.db'}")
    db.init_schema()
    yield db
    db.dispose()


@pytest.fixture
def session(database):
    with database.session() as s:
        yield s
