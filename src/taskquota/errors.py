"""Exception taxonomy shared across the engine."""

from __future__ import annotations


class TaskQuotaError(Exception):
    """Base class for all taskquota errors."""


class StorageError(TaskQuotaError):
    """The completion log could not be read or written."""


class RemoteError(TaskQuotaError):
    """A call to the remote task API failed or was rejected.

    ``str(exc)`` is always a human-readable message suitable for display.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ValidationError(TaskQuotaError):
    """Malformed input, e.g. a missing task or user identifier."""
