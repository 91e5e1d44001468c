"""Service layer for Lifeboard.

- calendar: month/day queries for the rendering layer
- runs: sync run history
- summary: daily narrative summary cache
"""

from lifeboard.services import calendar, runs, summary

__all__ = [
    "calendar",
    "runs",
    "summary",
]
