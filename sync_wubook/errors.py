"""
Error taxonomy shared by the sync engines.

Batch operations (import, enrichment, FX linking) catch these per item and
record them in their summaries. Single-item operations (host mutations, the
orchestrator lock) let the caller-facing kinds propagate to the route layer.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for every error raised by sync_wubook."""


class ValidationError(SyncError):
    """Bad or missing caller input; no state was changed."""


class InvalidRequestError(ValidationError):
    """The request names something unsupported (e.g. an unknown action)."""


class NotFoundError(SyncError):
    """A referenced reservation or property does not exist."""


class UpstreamError(SyncError):
    """The external channel manager failed (network, HTTP status, bad body)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConflictError(SyncError):
    """A lease lock is held by someone else."""

    def __init__(self, message: str, holder: str | None = None) -> None:
        super().__init__(message)
        self.holder = holder


class ConfigurationError(SyncError):
    """A property is missing its credential or room mapping."""
