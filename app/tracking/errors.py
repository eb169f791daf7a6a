"""Project-native typed exceptions for tracking engine entry points."""

from __future__ import annotations


class TrackingError(Exception):
    """Base exception for tracking engine failures.

    Attributes:
        job_id: Optional job identifier the failure relates to.
    """

    def __init__(self, message: str, job_id: str | None = None):
        super().__init__(message)
        self.job_id = job_id


class TrackingInvalidArgumentError(TrackingError, ValueError):
    """Synchronous rejection of malformed `tracker_start` arguments."""


class TrackingAlreadyActiveError(TrackingInvalidArgumentError):
    """Tracking is already active for the requested job id."""


class TrackingSessionNotFoundError(TrackingError, LookupError):
    """No live or recently finished session exists for the requested job id."""
