"""Lifeboard - incremental ingestion of personal activity data.

Usage:
    from lifeboard import LifeboardContext, SyncOrchestrator, load_settings

    settings = load_settings("lifeboard.yaml")
    with LifeboardContext.from_settings(settings) as context:
        orchestrator = SyncOrchestrator(context)
        result = orchestrator.sync_one("limitless")
        results = orchestrator.sync_all()
"""

from lifeboard.config import Settings, load_settings
from lifeboard.context import LifeboardContext
from lifeboard.sync.orchestrator import SyncOrchestrator, SyncResult, SyncState

__all__ = [
    "LifeboardContext",
    "Settings",
    "SyncOrchestrator",
    "SyncResult",
    "SyncState",
    "load_settings",
]

__version__ = "0.1.0"
