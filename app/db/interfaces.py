"""Typed interfaces for database-layer services.

All SQL and ORM access must remain in the db package and its submodules.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from app.domain import HealthStatus


class DatabaseHealthPort(Protocol):
    """Port definition for database connectivity verification."""

    def db_connection_label(self) -> str:
        """Return a stable label for the active database connection target.

        Returns:
            str: Database target label for diagnostics.

        Raises:
            RuntimeError: Raised when connection metadata is unavailable.
        """

    def db_check_health(self) -> HealthStatus:
        """Check database connectivity and return deterministic health payload.

        Returns:
            HealthStatus: Database health status payload.

        Raises:
            ConnectionError: Raised when database cannot be reached.
        """


@dataclass(frozen=True)
class TrackingRunRecordRequest:
    """Write contract for one finalized tracking session.

    Attributes:
        job_id: Tracked upstream job identifier.
        outcome: Terminal outcome kind (`completed`, `failed`, `timed_out`, `cancelled`).
        reason: Optional failure reason.
        attempt_count: Charged attempts at finalization.
        final_percentage: Optional last known percentage.
        final_stage_ordinal: Optional last known stage ordinal.
        elapsed_seconds: Optional tracked wall-clock duration.
        diagnostics: Optional anomaly timeline payload.
    """

    job_id: str
    outcome: str
    reason: str | None
    attempt_count: int
    final_percentage: int | None
    final_stage_ordinal: int | None
    elapsed_seconds: float | None
    diagnostics: list[dict[str, Any]] | None


@dataclass(frozen=True)
class TrackingRunRecord:
    """Typed persisted tracking run row.

    Attributes:
        tracking_run_id: Row identifier.
        job_id: Tracked upstream job identifier.
        outcome: Terminal outcome kind.
        reason: Optional failure reason.
        attempt_count: Charged attempts at finalization.
        final_percentage: Optional last known percentage.
        final_stage_ordinal: Optional last known stage ordinal.
        elapsed_seconds: Optional tracked wall-clock duration.
        diagnostics: Optional anomaly timeline payload.
        created_at_utc: Row creation timestamp.
    """

    tracking_run_id: UUID
    job_id: str
    outcome: str
    reason: str | None
    attempt_count: int
    final_percentage: int | None
    final_stage_ordinal: int | None
    elapsed_seconds: float | None
    diagnostics: list[dict[str, Any]] | None
    created_at_utc: datetime


class TrackingRunRepositoryPort(Protocol):
    """Port definition for tracking run history persistence."""

    def db_tracking_run_record_outcome(self, request: TrackingRunRecordRequest) -> TrackingRunRecord:
        """Persist one finalized tracking session.

        Args:
            request: Tracking run write request.

        Returns:
            TrackingRunRecord: Persisted row.

        Raises:
            ValueError: Raised when request values are invalid.
            RuntimeError: Raised when persistence fails.
        """

    def db_tracking_run_get_latest_by_job_id(self, job_id: str) -> TrackingRunRecord | None:
        """Fetch the most recent tracking run for one job id.

        Args:
            job_id: Upstream job identifier.

        Returns:
            TrackingRunRecord | None: Latest row or None.

        Raises:
            RuntimeError: Raised when database read fails.
        """

    def db_tracking_run_list(
        self,
        limit: int,
        offset: int,
        sort_by: str = "created_at_utc",
        sort_dir: str = "desc",
    ) -> list[TrackingRunRecord]:
        """List tracking runs with deterministic ordering.

        Args:
            limit: Max rows to return.
            offset: Rows to skip.
            sort_by: Sort field.
            sort_dir: Sort direction.

        Returns:
            list[TrackingRunRecord]: Matching rows.

        Raises:
            ValueError: Raised when sort options are unsupported.
            RuntimeError: Raised when database read fails.
        """
