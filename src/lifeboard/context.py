"""Explicit application context.

Built once at startup from Settings and passed to every component that needs
storage, sources, or logging. Nothing in Lifeboard keeps module-level
connections or sync state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import tzinfo
from typing import Any

import httpx
from rich.console import Console

from lifeboard.config import Settings
from lifeboard.core.dates import resolve_timezone
from lifeboard.core.logging import SyncEventLog, Verbosity
from lifeboard.db.engine import Database
from lifeboard.sources import SourceClient, build_source
from lifeboard.sync.rollup import RollupUpdater
from lifeboard.sync.watermark import WatermarkStore

logger = logging.getLogger(__name__)


@dataclass
class LifeboardContext:
    settings: Settings
    database: Database
    watermarks: WatermarkStore
    rollups: RollupUpdater
    event_log: SyncEventLog
    tz: tzinfo
    # Injected into every source client; tests use httpx.MockTransport
    transport: httpx.BaseTransport | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        verbosity: Verbosity = Verbosity.QUIET,
        console: Console | None = None,
        transport: httpx.BaseTransport | None = None,
        init_schema: bool = True,
    ) -> LifeboardContext:
        """Open the store and wire up components.

        Args:
            settings: Loaded settings.
            verbosity: Console verbosity for sync events.
            console: Rich console for sync events (default: stderr).
            transport: Optional httpx transport for all source clients.
            init_schema: Create missing tables.
        """
        settings.ensure_storage_dir()
        database = Database(settings.db_url)
        if init_schema:
            database.init_schema()
        logger.debug("Opened store %s", database.engine.url.render_as_string(hide_password=True))
        return cls(
            settings=settings,
            database=database,
            watermarks=WatermarkStore(database),
            rollups=RollupUpdater(database),
            event_log=SyncEventLog(settings.log_dir, verbosity=verbosity, console=console),
            tz=resolve_timezone(settings.timezone),
            transport=transport,
        )

    def build_source(self, name: str) -> SourceClient:
        return build_source(name, self.settings, transport=self.transport)

    def close(self) -> None:
        self.database.dispose()

    def __enter__(self) -> LifeboardContext:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
