"""Source clients and the source registry."""

from __future__ import annotations

from typing import Any

import httpx

from lifeboard.config import SOURCE_NAMES, Settings
from lifeboard.core.errors import UnknownSourceError
from lifeboard.sources.base import HttpSourceClient, Page, SourceClient, SourceStream
from lifeboard.sources.bee import BeeClient
from lifeboard.sources.limitless import LimitlessClient
from lifeboard.sources.mood import MoodSource
from lifeboard.sources.weather import WeatherClient

SOURCE_CLIENTS: dict[str, type[SourceClient]] = {
    "limitless": LimitlessClient,
    "bee": BeeClient,
    "weather": WeatherClient,
    "mood": MoodSource,
}


def build_source(
    name: str, settings: Settings, transport: httpx.BaseTransport | None = None
) -> SourceClient:
    """Construct the client for a source from settings.

    Raises:
        UnknownSourceError: If ``name`` is not a known source.
        FatalSourceError: If the source's configuration is unusable.
    """
    if name not in SOURCE_NAMES:
        msg = f"Unknown source: {name}"
        raise UnknownSourceError(msg)
    client_class = SOURCE_CLIENTS[name]
    if not issubclass(client_class, HttpSourceClient):
        return client_class()
    kwargs: dict[str, Any] = {
        "timeout": settings.request_timeout,
        "max_retries": settings.max_retries,
        "retry_backoff": settings.retry_backoff,
        "transport": transport,
    }
    return client_class(settings.source(name), **kwargs)  # type: ignore[call-arg]


__all__ = [
    "SOURCE_CLIENTS",
    "BeeClient",
    "HttpSourceClient",
    "LimitlessClient",
    "MoodSource",
    "Page",
    "SourceClient",
    "SourceStream",
    "WeatherClient",
    "build_source",
]
