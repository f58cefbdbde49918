"""Error taxonomy shared by the client, the cache and the mutation pipeline."""
from __future__ import annotations


class TaskSyncError(Exception):
    """Base class for every failure surfaced by the synchronisation core."""

    kind = "error"


class AuthenticationError(TaskSyncError):
    """No valid session with the record service. Never retried."""

    kind = "authentication"


class RateLimitError(TaskSyncError):
    """The record service is throttling requests."""

    kind = "rate_limit"

    def __init__(self, message: str = "rate limited", *, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class TransientNetworkError(TaskSyncError):
    """Transport failure, timeout or 5xx answer."""

    kind = "transient"


class ValidationError(TaskSyncError):
    """The record service rejected the shape or values of a mutation."""

    kind = "validation"

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.detail = detail or message


class MutationInFlightError(TaskSyncError):
    """A commit for the same item id is still outstanding."""

    kind = "in_flight"

    def __init__(self, item_id: str) -> None:
        super().__init__(f"mutation already in flight for task {item_id}")
        self.item_id = item_id


class InvalidMoveError(TaskSyncError):
    """A board move targeted a bucket that cannot be assigned by the user."""

    kind = "invalid_move"


__all__ = [
    "AuthenticationError",
    "InvalidMoveError",
    "MutationInFlightError",
    "RateLimitError",
    "TaskSyncError",
    "TransientNetworkError",
    "ValidationError",
]
