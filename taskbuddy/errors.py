"""Exception types raised by the remote API client and the sync engine."""


class TaskBuddyError(Exception):
    """Base class for taskbuddy errors."""


class ApiError(TaskBuddyError):
    """The remote API rejected a request."""

    def __init__(self, status: int | None, message: str):
        super().__init__(f"HTTP {status}: {message}" if status else message)
        self.status = status
        self.message = message

    @property
    def is_client_error(self) -> bool:
        return self.status is not None and 400 <= self.status < 500


class TransientApiError(ApiError):
    """Connection failure, timeout or 5xx; safe to retry on the next pass."""


class UnauthorizedError(ApiError):
    """The remote API answered 401. Callers treat this as "not logged in"."""

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(401, message)


class UnresolvedReferenceError(TaskBuddyError):
    """A queued operation targets a task that only exists locally."""

    def __init__(self, local_id: str):
        super().__init__(f"Task {local_id} was never created on the server")
        self.local_id = local_id


class SyncError(TaskBuddyError):
    """Fetching authoritative server state failed; the cache was left as is."""
