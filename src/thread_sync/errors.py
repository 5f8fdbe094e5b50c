"""Error taxonomy for the sync engine."""


class ThreadSyncError(Exception):
    """Base class for all sync engine errors."""


class NetworkError(ThreadSyncError):
    """Transient transport failure. The caller decides whether to retry."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthError(ThreadSyncError):
    """Credentials rejected. Fatal to the session and never retried here."""


class ConflictError(ThreadSyncError):
    """A mutation is already pending for this correlation id."""


class ReconciliationError(ThreadSyncError):
    """Malformed server payload. The merge was aborted."""


class CycleError(ThreadSyncError):
    """A parent chain loops back on itself."""


class ValidationError(ThreadSyncError, ValueError):
    """Local input rejected before any optimistic change was applied."""
