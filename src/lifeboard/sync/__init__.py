"""Sync engine: fetch, normalize, reconcile, materialize, roll up, advance."""

from lifeboard.sync.orchestrator import SyncOrchestrator, SyncResult, SyncState
from lifeboard.sync.pagination import WalkResult, walk_pages
from lifeboard.sync.rollup import RollupUpdater
from lifeboard.sync.scheduler import Scheduler
from lifeboard.sync.watermark import WatermarkStore

__all__ = [
    "RollupUpdater",
    "Scheduler",
    "SyncOrchestrator",
    "SyncResult",
    "SyncState",
    "WalkResult",
    "WatermarkStore",
    "walk_pages",
]
