"""OpenWeatherMap current-weather client."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from lifeboard.config import WeatherSettings
from lifeboard.core.errors import FatalSourceError
from lifeboard.sources.base import HttpSourceClient, Page, SourceStream

SUPPORTED_PROVIDERS = ("openweathermap",)


class WeatherClient(HttpSourceClient):
    """Fetches the current weather for the configured location.

    One reading per run; the normalizer files it under the reading's day.
    """

    name = "weather"

    def __init__(self, settings: WeatherSettings, **kwargs: Any):
        if settings.provider not in SUPPORTED_PROVIDERS:
            raise FatalSourceError(self.name, f"unsupported provider: {settings.provider}")
        if not settings.api_key:
            raise FatalSourceError(self.name, "api_key is not configured")
        if not settings.location:
            raise FatalSourceError(self.name, "location is not configured")
        super().__init__(settings.api_key, settings.base_url, **kwargs)
        self.api_key = settings.api_key
        self.location = settings.location
        self.units = settings.units

    def auth_headers(self, api_key: str) -> dict[str, str]:
        # OpenWeatherMap takes the key as the appid query parameter
        return {}

    def streams(self) -> list[SourceStream]:
        return [SourceStream("weather", self.fetch_current)]

    def fetch_current(self, since: datetime, cursor: Any, limit: int) -> Page:
        body = self.get_json(
            "/weather", {"q": self.location, "appid": self.api_key, "units": self.units}
        )
        if not isinstance(body, dict):
            return Page(items=[])
        return Page(items=[{**body, "location": self.location}])
