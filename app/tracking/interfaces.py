"""Typed interfaces and session state for the job-status tracking engine."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from app.domain import JobHandle, Outcome, ProgressSnapshot, TrackingAnomaly

ProgressCallback = Callable[[ProgressSnapshot], None]
OutcomeCallback = Callable[[Outcome], None]


class TrackingState(str, Enum):
    """Dispatcher state machine states; every state except `idle`/`polling` is terminal."""

    IDLE = "idle"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class StatusClass(str, Enum):
    """Canonical classes for free-text upstream status tags."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ErrorClassification(str, Enum):
    """Canonical classes for transport-level tick failures."""

    NOT_MODIFIED = "not_modified"
    TRANSIENT = "transient"
    NON_RETRIABLE = "non_retriable"


@dataclass(frozen=True)
class TrackingConfig:
    """Budget and pacing configuration for one tracking session.

    Attributes:
        poll_interval_seconds: Fixed delay between ticks.
        max_attempts: Hard cap on charged attempts.
        max_wall_clock_seconds: Hard cap on elapsed tracking time.
        error_penalty_weight: Attempts charged per transient transport error.
    """

    poll_interval_seconds: float
    max_attempts: int
    max_wall_clock_seconds: float
    error_penalty_weight: int = 2


@dataclass(frozen=True)
class InterpretedStatus:
    """Interpreter output for one successfully fetched payload.

    Attributes:
        status_class: Canonical status class.
        snapshot: Freshly computed progress snapshot.
        reason: Remote failure reason for `failed` class.
        anomalies: Diagnostics events recorded while interpreting.
    """

    status_class: StatusClass
    snapshot: ProgressSnapshot
    reason: str | None = None
    anomalies: tuple[TrackingAnomaly, ...] = ()


@dataclass(frozen=True)
class TransportFailure:
    """Classified transport-level failure of one tick.

    Attributes:
        classification: Canonical error class.
        error_type: Exception type name for diagnostics.
        message: Exception message.
        status_code: Optional upstream HTTP status code.
        retry_after_seconds: Optional upstream retry delay hint.
    """

    classification: ErrorClassification
    error_type: str
    message: str
    status_code: int | None = None
    retry_after_seconds: float | None = None


@dataclass(frozen=True)
class TickResult:
    """Resolution of one poll tick: an interpretation, a transport failure, or nothing.

    An empty result means the fetch resolved after the session finalized.
    """

    interpreted: InterpretedStatus | None = None
    failure: TransportFailure | None = None

    @property
    def tick_retry_after_seconds(self) -> float:
        """Return upstream retry delay hint or zero."""

        if self.failure is None or self.failure.retry_after_seconds is None:
            return 0.0
        return float(self.failure.retry_after_seconds)


@dataclass
class TrackingSession:
    """Mutable state owned exclusively by the engine for one job handle.

    Attributes:
        job_handle: Tracked job identity.
        config: Session budget and pacing configuration.
        state: Current dispatcher state.
        attempt_count: Charged poll attempts so far.
        consecutive_error_count: Penalty-weighted transient error streak; reset on success.
        last_snapshot: Last snapshot produced, None until first success.
        finalized: Set exactly once when a terminal outcome is delivered.
        cancel_requested: Set when the caller requested cancellation.
        fetch_in_flight: True while one status fetch is outstanding.
        outcome: Terminal outcome once finalized.
        anomalies: Diagnostics timeline (unknown stages/tags, callback failures).
        outcome_future: Future resolved with the terminal outcome.
    """

    job_handle: JobHandle
    config: TrackingConfig
    state: TrackingState = TrackingState.IDLE
    attempt_count: int = 0
    consecutive_error_count: int = 0
    last_snapshot: ProgressSnapshot | None = None
    finalized: bool = False
    cancel_requested: bool = False
    fetch_in_flight: bool = False
    outcome: Outcome | None = None
    anomalies: list[TrackingAnomaly] = field(default_factory=list)
    outcome_future: asyncio.Future | None = field(default=None, repr=False)

    @property
    def job_id(self) -> str:
        """Return tracked job identifier."""

        return self.job_handle.job_id


@dataclass(frozen=True)
class TrackingSessionView:
    """Read-only copy of one tracking session for external consumers."""

    job_id: str
    state: TrackingState
    attempt_count: int
    consecutive_error_count: int
    last_snapshot: ProgressSnapshot | None
    finalized: bool
    outcome: Outcome | None
    anomalies: tuple[TrackingAnomaly, ...]

    @classmethod
    def from_session(cls, session: TrackingSession) -> TrackingSessionView:
        """Build an immutable view from live session state."""

        return cls(
            job_id=session.job_id,
            state=session.state,
            attempt_count=session.attempt_count,
            consecutive_error_count=session.consecutive_error_count,
            last_snapshot=session.last_snapshot,
            finalized=session.finalized,
            outcome=session.outcome,
            anomalies=tuple(session.anomalies),
        )

    def view_to_payload(self) -> dict[str, Any]:
        """Serialize view to a JSON-compatible payload."""

        return {
            "job_id": self.job_id,
            "state": self.state.value,
            "attempt_count": self.attempt_count,
            "consecutive_error_count": self.consecutive_error_count,
            "finalized": self.finalized,
            "last_snapshot": None if self.last_snapshot is None else self.last_snapshot.snapshot_to_payload(),
            "outcome": None if self.outcome is None else self.outcome.outcome_to_payload(),
            "anomalies": [anomaly.anomaly_to_payload() for anomaly in self.anomalies],
        }
