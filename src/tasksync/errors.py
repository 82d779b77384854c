"""Error taxonomy for a sync run.

Every failure a run can end with is a ``SyncError`` carrying a
``SyncErrorKind`` tag.  The orchestrator and the CLI branch on ``kind``
rather than on the concrete exception class.
"""

from __future__ import annotations

import enum


class SyncErrorKind(enum.StrEnum):
    """Tag identifying why a sync run failed."""

    RATE_LIMITED = "rate_limited"
    RETRY_EXHAUSTED = "retry_exhausted"
    CONCURRENT_MODIFICATION = "concurrent_modification"
    DATE_PARSE = "date_parse"
    TRANSPORT = "transport"
    AUTHORIZATION = "authorization"
    DUPLICATE_IDENTITY = "duplicate_identity"


class SyncError(RuntimeError):
    """Base error for everything that can abort a sync run."""

    kind: SyncErrorKind = SyncErrorKind.TRANSPORT


class RateLimitedError(SyncError):
    """Raised by a remote store when the backend asked us to slow down.

    This is the only error the retry governor retries.
    """

    kind = SyncErrorKind.RATE_LIMITED

    def __init__(self, message: str = "rate limited", *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class RetryExhaustedError(SyncError):
    """Raised when every attempt of a retried operation was rate limited."""

    kind = SyncErrorKind.RETRY_EXHAUSTED

    def __init__(self, *, attempts: int, last_error: RateLimitedError) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up after {attempts} rate-limited attempt(s): {last_error}")


class ConcurrentModificationError(SyncError):
    """Raised when the row store changed under us during identity backfill."""

    kind = SyncErrorKind.CONCURRENT_MODIFICATION

    def __init__(self, *, row_index: int | None, detail: str) -> None:
        self.row_index = row_index
        self.detail = detail
        where = f"row {row_index}" if row_index is not None else "range"
        super().__init__(f"Row store was modified concurrently ({where}): {detail}")


class DateParseError(SyncError):
    """Raised when a task's due date/time cannot be resolved to an instant."""

    kind = SyncErrorKind.DATE_PARSE

    def __init__(self, raw_value: str, *, task_name: str | None = None) -> None:
        self.raw_value = raw_value
        self.task_name = task_name
        suffix = f" for task {task_name!r}" if task_name else ""
        super().__init__(f"Could not parse due date/time {raw_value!r}{suffix}")


class TransportError(SyncError):
    """Raised for any non-retryable remote failure."""

    kind = SyncErrorKind.TRANSPORT

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        self.message = message
        if status_code is not None:
            super().__init__(f"Remote request failed ({status_code}): {message}")
        else:
            super().__init__(message)


class AuthorizationError(SyncError):
    """Raised when credentials are missing/invalid or a token refresh fails."""

    kind = SyncErrorKind.AUTHORIZATION


class DuplicateIdentityError(SyncError):
    """Raised when two rows carry the same stored identity."""

    kind = SyncErrorKind.DUPLICATE_IDENTITY

    def __init__(self, identity: str, *, row_indexes: tuple[int, int]) -> None:
        self.identity = identity
        self.row_indexes = row_indexes
        first, second = row_indexes
        super().__init__(f"Identity {identity!r} appears on rows {first} and {second}")
