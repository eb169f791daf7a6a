"""Status interpreter mapping raw upstream payloads onto the canonical progress model."""

from __future__ import annotations

import logging
import math
from typing import Final, Sequence

from app.adapters import RawStatusPayload
from app.domain import (
    DEFAULT_ANALYSIS_STAGES,
    PipelineStage,
    ProgressSnapshot,
    TrackingAnomaly,
    domain_validate_stage_sequence,
)

from .interfaces import InterpretedStatus, StatusClass

logger = logging.getLogger(__name__)

PROCESSING_STATUS_TAGS: Final[frozenset[str]] = frozenset(
    {"processing", "pending", "queued", "running", "started", "in_progress"}
)
COMPLETED_STATUS_TAGS: Final[frozenset[str]] = frozenset({"completed", "complete", "success", "succeeded", "done"})
FAILED_STATUS_TAGS: Final[frozenset[str]] = frozenset(
    {"failed", "failure", "error", "cancelled", "canceled", "aborted"}
)


def tracking_classify_status_tag(status_tag: str) -> StatusClass | None:
    """Return canonical class for a free-text status tag, or None when unrecognized.

    Args:
        status_tag: Upstream status tag (case-insensitive).

    Returns:
        StatusClass | None: Canonical class or None.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    normalized_tag = status_tag.strip().lower().replace("-", "_").replace(" ", "_")
    if normalized_tag in COMPLETED_STATUS_TAGS:
        return StatusClass.COMPLETED
    if normalized_tag in FAILED_STATUS_TAGS:
        return StatusClass.FAILED
    if normalized_tag in PROCESSING_STATUS_TAGS:
        return StatusClass.PROCESSING
    return None


class StatusInterpreter:
    """Translate raw status payloads into progress snapshots for one stage sequence.

    The interpreter is stateless; the previous snapshot is passed in on every
    call so percentage and stage ordinal never regress within one job.
    """

    def __init__(self, stages: Sequence[PipelineStage] = DEFAULT_ANALYSIS_STAGES):
        """Initialize interpreter with a validated stage sequence.

        Args:
            stages: Ordered pipeline stages.

        Raises:
            ValueError: Raised when the stage sequence violates ordinal invariants.
        """

        self._stages = domain_validate_stage_sequence(stages)
        self._ordinal_by_stage_id = {stage.stage_id.strip().lower(): stage.ordinal for stage in self._stages}

    @property
    def total_stages(self) -> int:
        """Return number of known pipeline stages."""

        return len(self._stages)

    def interpreter_interpret(
        self,
        payload: RawStatusPayload,
        previous_snapshot: ProgressSnapshot | None,
        elapsed_seconds: float,
        job_id: str | None = None,
    ) -> InterpretedStatus:
        """Interpret one raw payload against the previous snapshot.

        Args:
            payload: Raw upstream status payload.
            previous_snapshot: Last snapshot of the session, if any.
            elapsed_seconds: Seconds since tracking started.
            job_id: Job identifier for diagnostics, defaults to payload job id.

        Returns:
            InterpretedStatus: Canonical status class, snapshot and anomalies.

        Raises:
            RuntimeError: This method does not raise runtime errors.
        """

        diagnostics_job_id = job_id or payload.job_id
        anomalies: list[TrackingAnomaly] = []
        previous_elapsed = 0.0 if previous_snapshot is None else previous_snapshot.elapsed_seconds
        monotonic_elapsed = max(float(elapsed_seconds), previous_elapsed)

        status_class = tracking_classify_status_tag(payload.status_tag)
        if status_class is None:
            anomalies.append(TrackingAnomaly.unknown_status_tag(diagnostics_job_id, payload.status_tag))
            logger.warning("Unrecognized status tag %r for job %s; treating as processing", payload.status_tag, diagnostics_job_id)
            status_class = StatusClass.PROCESSING

        if status_class is StatusClass.COMPLETED:
            snapshot = ProgressSnapshot(
                current_stage_ordinal=self.total_stages,
                total_stages=self.total_stages,
                percentage=100,
                elapsed_seconds=monotonic_elapsed,
                estimated_remaining_seconds=0.0,
                stage_id=None,
            )
            return InterpretedStatus(status_class=status_class, snapshot=snapshot, anomalies=tuple(anomalies))

        current_stage_ordinal = self._interpreter_resolve_stage_ordinal(
            stage_id=payload.stage_id,
            previous_snapshot=previous_snapshot,
            job_id=diagnostics_job_id,
            anomalies=anomalies,
        )
        snapshot = ProgressSnapshot(
            current_stage_ordinal=current_stage_ordinal,
            total_stages=self.total_stages,
            percentage=self._interpreter_compute_percentage(payload, current_stage_ordinal, previous_snapshot),
            elapsed_seconds=monotonic_elapsed,
            estimated_remaining_seconds=self._interpreter_compute_remaining_seconds(payload, current_stage_ordinal),
            stage_id=self._interpreter_stage_id_for_ordinal(current_stage_ordinal),
        )

        reason = None
        if status_class is StatusClass.FAILED:
            reason = payload.error_message or f"remote analysis reported status={payload.status_tag.strip().lower()}"
        return InterpretedStatus(
            status_class=status_class,
            snapshot=snapshot,
            reason=reason,
            anomalies=tuple(anomalies),
        )

    def interpreter_stage_ordinal(self, stage_id: str | None) -> int | None:
        """Return ordinal for a stage id, or None when absent or unknown."""

        if stage_id is None:
            return None
        return self._ordinal_by_stage_id.get(stage_id.strip().lower())

    def _interpreter_resolve_stage_ordinal(
        self,
        stage_id: str | None,
        previous_snapshot: ProgressSnapshot | None,
        job_id: str,
        anomalies: list[TrackingAnomaly],
    ) -> int:
        previous_ordinal = 0 if previous_snapshot is None else previous_snapshot.current_stage_ordinal
        mapped_ordinal = self.interpreter_stage_ordinal(stage_id)
        if mapped_ordinal is None:
            if stage_id is not None:
                anomalies.append(TrackingAnomaly.unknown_stage_id(job_id, stage_id, fallback_ordinal=previous_ordinal))
                logger.warning("Unrecognized stage id %r for job %s; keeping ordinal %s", stage_id, job_id, previous_ordinal)
            return previous_ordinal
        return max(mapped_ordinal, previous_ordinal)

    def _interpreter_compute_percentage(
        self,
        payload: RawStatusPayload,
        current_stage_ordinal: int,
        previous_snapshot: ProgressSnapshot | None,
    ) -> int:
        previous_percentage = 0 if previous_snapshot is None else previous_snapshot.percentage

        raw_percentage: float | None = None
        if payload.progress_percentage is not None:
            raw_percentage = payload.progress_percentage
        elif payload.progress_current is not None and payload.progress_total:
            raw_percentage = payload.progress_current / payload.progress_total * 100

        if raw_percentage is None or not math.isfinite(raw_percentage):
            raw_percentage = current_stage_ordinal / self.total_stages * 100

        clamped_percentage = min(100, max(0, math.floor(raw_percentage)))
        return max(clamped_percentage, previous_percentage)

    def _interpreter_compute_remaining_seconds(self, payload: RawStatusPayload, current_stage_ordinal: int) -> float | None:
        if payload.estimated_remaining_seconds is not None and math.isfinite(payload.estimated_remaining_seconds):
            return max(0.0, float(payload.estimated_remaining_seconds))
        return float(
            sum(
                stage.estimated_duration_seconds
                for stage in self._stages
                if stage.ordinal >= current_stage_ordinal
            )
        )

    def _interpreter_stage_id_for_ordinal(self, ordinal: int) -> str | None:
        if 0 <= ordinal < self.total_stages:
            return self._stages[ordinal].stage_id
        return None
