"""Configuration settings for Lifeboard.

Settings come from (highest precedence first): an optional YAML config file,
environment variables prefixed ``LIFEBOARD_`` (nested with ``__``, e.g.
``LIFEBOARD_LIMITLESS__API_KEY``), and a ``.env`` file.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from lifeboard.core.dates import resolve_timezone

DEFAULT_SUMMARY_TEMPLATE = (
    "On {date}, your mood was {mood_score}/10 ({mood_text}). "
    "Weather: {weather_condition}, high of {weather_temp_high}. "
    "Limitless entries: {limitless_entry_count}. "
    "Bee conversations: {bee_conversation_count}."
)

SOURCE_NAMES = ("limitless", "bee", "weather", "mood")

_ENV_REF = re.compile(r"\$\{([^}]+)\}")


class SourceSettings(BaseModel):
    """Settings shared by every source."""

    enabled: bool = False
    api_key: str = ""
    base_url: str = ""
    # Scheduler interval; None means the source only syncs on demand
    sync_interval_seconds: int | None = Field(default=None, ge=1)
    page_limit: int | None = Field(default=None, ge=1)
    max_pages: int | None = Field(default=None, ge=1)


class LimitlessSettings(SourceSettings):
    base_url: str = "https://api.limitless.ai/v1"


class BeeSubSources(BaseModel):
    """Which Bee record kinds to fetch."""

    conversations: bool = True
    facts: bool = True
    todos: bool = True
    locations: bool = False


class BeeSettings(SourceSettings):
    base_url: str = "https://api.bee.computer/v1/me"
    sub_sources: BeeSubSources = Field(default_factory=BeeSubSources)
    fetch_conversation_details: bool = True


class WeatherSettings(SourceSettings):
    base_url: str = "https://api.openweathermap.org/data/2.5"
    provider: str = "openweathermap"
    location: str = ""
    units: str = "metric"


class MoodSettings(SourceSettings):
    enabled: bool = True


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LIFEBOARD_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage directory (default: .lifeboard in current directory)
    storage_dir: Path = Field(default=Path(".lifeboard"))
    # Empty means a SQLite file inside storage_dir
    database_url: str = ""
    timezone: str = "UTC"

    # Fetch bounds
    page_limit: int = Field(default=50, ge=1)
    max_pages: int = Field(default=10, ge=1)
    request_timeout: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=2, ge=0)
    retry_backoff: float = Field(default=1.0, ge=0)

    sync_concurrency: int = Field(default=4, ge=1)
    summary_template: str = DEFAULT_SUMMARY_TEMPLATE

    limitless: LimitlessSettings = Field(default_factory=LimitlessSettings)
    bee: BeeSettings = Field(default_factory=BeeSettings)
    weather: WeatherSettings = Field(default_factory=WeatherSettings)
    mood: MoodSettings = Field(default_factory=MoodSettings)

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        resolve_timezone(value)
        return value

    @property
    def db_path(self) -> Path:
        """Path to the default SQLite database."""
        return self.storage_dir / "lifeboard.db"

    @property
    def db_url(self) -> str:
        """SQLAlchemy URL for the store."""
        return self.database_url or f"sqlite:///{self.db_path}"

    @property
    def log_dir(self) -> Path:
        """Directory for per-run JSONL sync logs."""
        return self.storage_dir / "logs"

    def source(self, name: str) -> SourceSettings:
        """Get the settings block for a source by name."""
        if name not in SOURCE_NAMES:
            msg = f"Unknown source: {name}"
            raise KeyError(msg)
        return getattr(self, name)

    def page_limit_for(self, name: str) -> int:
        return self.source(name).page_limit or self.page_limit

    def max_pages_for(self, name: str) -> int:
        return self.source(name).max_pages or self.max_pages

    def ensure_storage_dir(self) -> None:
        """Create storage directory if it doesn't exist."""
        self.storage_dir.mkdir(parents=True, exist_ok=True)


def substitute_env_vars(value: Any) -> Any:
    """Replace ``${VAR}`` references in strings, recursing into containers.

    References to unset variables are left as written.
    """
    if isinstance(value, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), m.group(0)), value)
    if isinstance(value, dict):
        return {k: substitute_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [substitute_env_vars(v) for v in value]
    return value


def load_settings(config_file: Path | str | None = None, **overrides: Any) -> Settings:
    """Build Settings from an optional YAML file plus the environment.

    The file path falls back to ``LIFEBOARD_CONFIG_FILE``. Keyword overrides
    take precedence over the file.
    """
    path = config_file or os.environ.get("LIFEBOARD_CONFIG_FILE")
    data: dict[str, Any] = {}
    if path:
        config_path = Path(path).expanduser()
        if not config_path.exists():
            msg = f"Config file not found: {config_path}"
            raise FileNotFoundError(msg)
        with open(config_path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            msg = f"Config file must contain a mapping: {config_path}"
            raise ValueError(msg)
        data = substitute_env_vars(loaded)
    data.update(overrides)
    return Settings(**data)
