"""Exceptions raised by the remote client and the sync engine."""

import math


class WorkflowyApiError(RuntimeError):
    """A remote call failed (network error or unexpected HTTP status)."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class AuthenticationError(WorkflowyApiError):
    """The API key is missing or was rejected."""


class NotFoundError(WorkflowyApiError):
    """The remote node does not exist (HTTP 404)."""


class SyncError(RuntimeError):
    """A full sync was refused before any remote call was made."""


class RateLimitedError(SyncError):
    """The export endpoint was called too recently."""

    def __init__(self, retry_after: float) -> None:
        self.retry_after = retry_after
        super().__init__(f"Rate limited. Please wait {self.retry_after_seconds} seconds.")

    @property
    def retry_after_seconds(self) -> int:
        return max(1, math.ceil(self.retry_after))


class SyncInProgressError(SyncError):
    """Another full sync holds a fresh lease."""

    def __init__(self) -> None:
        super().__init__("Sync already in progress.")


def error_type(exc: BaseException) -> str:
    """Short machine-readable name for an error, used in tool responses."""
    if isinstance(exc, AuthenticationError):
        return "authentication"
    if isinstance(exc, NotFoundError):
        return "not_found"
    if isinstance(exc, RateLimitedError):
        return "rate_limited"
    if isinstance(exc, SyncInProgressError):
        return "sync_in_progress"
    if isinstance(exc, WorkflowyApiError):
        return "remote_unavailable"
    return "internal"
