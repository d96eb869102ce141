"""Exception hierarchy for scheduling, building, uploading and rolling up archives.

- TransientIOError: record store or object storage connectivity; retried with backoff.
- ConsistencyViolation: overlapping/duplicate periods or an incomplete rollup; fatal for the tenant run.
- PartialBuildFailure: the record stream aborted mid-write; the temp artifact is always removed.
- PurgeError: source deletion failed after a successful archive; retried on a later run.
"""

from __future__ import annotations

__all__ = [
    "ArchiverError",
    "ConfigurationError",
    "TransientIOError",
    "StoreUnavailable",
    "UploadError",
    "ConsistencyViolation",
    "PartialBuildFailure",
    "BuildCancelled",
    "PurgeError",
]


class ArchiverError(RuntimeError):
    """Base exception for archiver failures."""


class ConfigurationError(ArchiverError):
    """Raised when configuration values are missing or invalid."""


class TransientIOError(ArchiverError):
    """Connectivity failure talking to the record store or object storage."""


class StoreUnavailable(TransientIOError):
    """Record store query or delete failed (connection loss, timeout)."""


class UploadError(TransientIOError):
    """Object storage rejected or failed an upload."""


class ConsistencyViolation(ArchiverError):
    """An archive write would break the non-overlapping timeline or rollup invariants."""


class PartialBuildFailure(ArchiverError):
    """Building an artifact aborted before the stream was fully written."""


class BuildCancelled(PartialBuildFailure):
    """The caller cancelled a build while records were still streaming."""


class PurgeError(ArchiverError):
    """Deleting source records for an archived period failed."""

    def __init__(self, message: str, *, archive_id: int | None = None) -> None:
        super().__init__(message)
        self.archive_id = archive_id
