"""Lifeboard error types.

Per-record errors (``ValidationError``) are absorbed by the orchestrator and
counted as rejections. Source-level errors (``FatalSourceError``) abort a run.
``TransientNetworkError`` stops the affected stream for the current run only.
"""

from __future__ import annotations


class LifeboardError(Exception):
    """Base exception for Lifeboard."""

    pass


class TransientNetworkError(LifeboardError):
    """Network failure worth retrying on the next scheduled run."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class FatalSourceError(LifeboardError):
    """Authentication failure or unusable source configuration."""

    def __init__(self, source: str, message: str, status_code: int | None = None):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status_code = status_code


# Rejection reason codes
MISSING_REQUIRED_FIELD = "missing_required_field"
INVALID_TIMESTAMP = "invalid_timestamp"
INVALID_VALUE = "invalid_value"
PERSISTENCE_ERROR = "persistence_error"


class ValidationError(LifeboardError):
    """A single raw record could not be normalized."""

    def __init__(self, reason: str, field: str, detail: str = "", external_id: str | None = None):
        message = f"{reason}: {field}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.reason = reason
        self.field = field
        self.detail = detail
        self.external_id = external_id


class PersistenceConflictError(LifeboardError):
    """An upsert returned no row for its conflict key."""

    pass


class SyncInProgressError(LifeboardError):
    """Another run for the same source holds the source lock."""

    pass


class UnknownSourceError(LifeboardError):
    """The requested source is not configured."""

    pass
