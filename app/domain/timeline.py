"""Typed anomaly events recorded on a tracking session's diagnostics timeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


class AnomalyKind(str, Enum):
    """Kinds of non-fatal irregularities observed while tracking a job."""

    UNKNOWN_STATUS_TAG = "unknown_status_tag"
    UNKNOWN_STAGE_ID = "unknown_stage_id"
    CALLBACK_FAILED = "callback_failed"


@dataclass(frozen=True)
class TrackingAnomaly:
    """One anomaly observed for a tracked job.

    Attributes:
        kind: Anomaly kind.
        job_id: Tracked job identifier.
        details: Read-only kind-specific context (offending stage id, callback name, ...).
        observed_at_utc: Observation timestamp.
    """

    kind: AnomalyKind
    job_id: str
    details: Mapping[str, Any] = field(default_factory=dict)
    observed_at_utc: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        object.__setattr__(self, "details", MappingProxyType(dict(self.details)))

    @classmethod
    def unknown_status_tag(cls, job_id: str, status_tag: str) -> TrackingAnomaly:
        return cls(kind=AnomalyKind.UNKNOWN_STATUS_TAG, job_id=job_id, details={"status_tag": status_tag})

    @classmethod
    def unknown_stage_id(cls, job_id: str, stage_id: str, fallback_ordinal: int) -> TrackingAnomaly:
        return cls(
            kind=AnomalyKind.UNKNOWN_STAGE_ID,
            job_id=job_id,
            details={"stage_id": stage_id, "fallback_ordinal": fallback_ordinal},
        )

    @classmethod
    def callback_failed(cls, job_id: str, callback_name: str, error: Exception) -> TrackingAnomaly:
        return cls(
            kind=AnomalyKind.CALLBACK_FAILED,
            job_id=job_id,
            details={
                "callback": callback_name,
                "error_type": type(error).__name__,
                "error_message": str(error),
            },
        )

    def anomaly_to_payload(self) -> dict[str, object]:
        """Serialize anomaly to the JSON shape stored in run diagnostics."""

        return {
            "event": self.kind.value,
            "job_id": self.job_id,
            "at_utc": self.observed_at_utc.isoformat(),
            "details": dict(self.details),
        }
