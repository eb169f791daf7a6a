"""Typed domain models shared across tracking layer boundaries.

This module provides the canonical data contracts produced by the tracking
engine. Rendering layers consume only these types and never raw status
payload fields.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class HealthStatus:
    """Health response contract used by health-check surfaces.

    Attributes:
        status: Overall status text for service health.
        detail: Additional message suitable for operational diagnostics.
    """

    status: str
    detail: str


@dataclass(frozen=True)
class JobHandle:
    """Identity of one tracked remote analysis job.

    Attributes:
        job_id: Opaque job identifier assigned by the remote service.
        started_at: Monotonic clock reading captured when tracking began.
    """

    job_id: str
    started_at: float


@dataclass(frozen=True)
class PipelineStage:
    """One step of the fixed, ordered remote analysis workflow.

    Attributes:
        stage_id: Stable stage identifier reported by the remote service.
        ordinal: Zero-based position in the stage sequence.
        estimated_duration_seconds: A priori expected duration used for ETA only.
    """

    stage_id: str
    ordinal: int
    estimated_duration_seconds: float = 0.0


@dataclass(frozen=True)
class ProgressSnapshot:
    """Canonical progress state derived from one successful tick.

    Attributes:
        current_stage_ordinal: Stage ordinal in `[0, total_stages]`; `total_stages` means completed.
        total_stages: Number of known pipeline stages.
        percentage: Integer progress in `[0, 100]`, non-decreasing per job.
        elapsed_seconds: Seconds since tracking started.
        estimated_remaining_seconds: Optional remaining-time estimate.
        stage_id: Stage identifier for display, None once past the last stage.
    """

    current_stage_ordinal: int
    total_stages: int
    percentage: int
    elapsed_seconds: float
    estimated_remaining_seconds: float | None = None
    stage_id: str | None = None

    def snapshot_is_complete(self) -> bool:
        """Return whether the snapshot points beyond the last known stage."""

        return self.current_stage_ordinal >= self.total_stages

    def snapshot_to_payload(self) -> dict[str, object]:
        """Serialize snapshot to a JSON-compatible payload."""

        return {
            "current_stage_ordinal": self.current_stage_ordinal,
            "total_stages": self.total_stages,
            "stage_id": self.stage_id,
            "percentage": self.percentage,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "estimated_remaining_seconds": self.estimated_remaining_seconds,
        }


class OutcomeKind(str, Enum):
    """Terminal outcome kinds for one tracking session."""

    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Outcome:
    """Terminal result delivered exactly once per tracking session.

    Attributes:
        kind: Terminal outcome kind.
        snapshot: Final snapshot for completed sessions.
        reason: Failure reason for failed sessions.
        attempt_count: Charged attempts at finalization.
    """

    kind: OutcomeKind
    snapshot: ProgressSnapshot | None = None
    reason: str | None = None
    attempt_count: int = 0

    @classmethod
    def completed(cls, snapshot: ProgressSnapshot, attempt_count: int = 0) -> Outcome:
        """Build a completed outcome carrying the final snapshot."""

        return cls(kind=OutcomeKind.COMPLETED, snapshot=snapshot, attempt_count=attempt_count)

    @classmethod
    def failed(cls, reason: str, attempt_count: int = 0) -> Outcome:
        """Build a failed outcome carrying the failure reason."""

        return cls(kind=OutcomeKind.FAILED, reason=reason, attempt_count=attempt_count)

    @classmethod
    def timed_out(cls, attempt_count: int) -> Outcome:
        """Build a timed-out outcome carrying the charged attempt count."""

        return cls(kind=OutcomeKind.TIMED_OUT, attempt_count=attempt_count)

    @classmethod
    def cancelled(cls, attempt_count: int = 0) -> Outcome:
        """Build a cancelled outcome."""

        return cls(kind=OutcomeKind.CANCELLED, attempt_count=attempt_count)

    def outcome_to_payload(self) -> dict[str, object]:
        """Serialize outcome to a JSON-compatible payload."""

        return {
            "kind": self.kind.value,
            "reason": self.reason,
            "attempt_count": self.attempt_count,
            "snapshot": None if self.snapshot is None else self.snapshot.snapshot_to_payload(),
        }
