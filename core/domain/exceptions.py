"""
Domain exceptions for fee synchronization.

Feed adapters translate vendor errors into this hierarchy at the
boundary so the orchestration layer can decide what is retried,
what fails a single chunk and what fails the whole run.
"""
from typing import Optional


class FeeSyncError(Exception):
    """Base error for every fee sync failure."""


class FeedAuthenticationError(FeeSyncError):
    """
    Credentials were rejected or could not be resolved.

    Fatal: the run fails before any write.
    """


class TransientFeedError(FeeSyncError):
    """
    Throttling (429) or server-side (5xx) failure.

    Retried with exponential backoff by the feed controller.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class FeedRequestError(FeeSyncError):
    """Non-retryable request failure (other 4xx). Fails the current page or document."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedDocumentError(FeeSyncError):
    """A settlement document could not be parsed as a whole."""


class SyncAlreadyRunningError(FeeSyncError):
    """A run of the same kind is already in progress for this user."""

    def __init__(self, user_id: str, kind: str):
        super().__init__(f"A {kind} fee sync is already running for user {user_id}")
        self.user_id = user_id
        self.kind = kind


class InvalidStateTransitionError(FeeSyncError):
    """A sync run was asked to move to a state it cannot reach."""
