"""Manual mood input.

Mood has nothing to fetch. Entries arrive through
``SyncOrchestrator.record_mood``.
"""

from __future__ import annotations

from lifeboard.sources.base import SourceClient, SourceStream


class MoodSource(SourceClient):
    name = "mood"

    def streams(self) -> list[SourceStream]:
        return []
