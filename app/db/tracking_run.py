"""Database service for finalized tracking run history."""

from __future__ import annotations

import json
from typing import Any, Final

from sqlalchemy import Engine, text
from sqlalchemy.exc import SQLAlchemyError

from .interfaces import TrackingRunRecord, TrackingRunRecordRequest, TrackingRunRepositoryPort

_TRACKING_RUN_COLUMNS: Final[str] = (
    "tracking_run_id, job_id, outcome, reason, attempt_count, final_percentage, "
    "final_stage_ordinal, elapsed_seconds, diagnostics, created_at_utc"
)

_TRACKING_RUN_LIST_QUERIES: Final[dict[tuple[str, str], str]] = {
    (sort_by, sort_dir): (
        f"SELECT {_TRACKING_RUN_COLUMNS} FROM tracking_run "
        f"ORDER BY {sort_by} {sort_dir.upper()}, tracking_run_id {sort_dir.upper()} "
        "LIMIT :limit OFFSET :offset"
    )
    for sort_by in ("created_at_utc", "job_id", "outcome", "attempt_count")
    for sort_dir in ("asc", "desc")
}

_TRACKING_RUN_OUTCOMES: Final[frozenset[str]] = frozenset({"completed", "failed", "timed_out", "cancelled"})


class SQLAlchemyTrackingRunService(TrackingRunRepositoryPort):
    """SQLAlchemy-backed tracking run history service."""

    def __init__(self, engine: Engine):
        """Initialize tracking run persistence service.

        Args:
            engine: SQLAlchemy engine used for all persistence operations.

        Raises:
            ValueError: Raised when engine is None.
        """

        if engine is None:
            raise ValueError("engine must not be None")
        self._engine = engine

    def db_tracking_run_record_outcome(self, request: TrackingRunRecordRequest) -> TrackingRunRecord:
        """Persist one finalized tracking session.

        Args:
            request: Tracking run write request.

        Returns:
            TrackingRunRecord: Persisted row.

        Raises:
            ValueError: Raised when job id is blank or outcome is unknown.
            RuntimeError: Raised when persistence fails.
        """

        normalized_job_id = request.job_id.strip()
        if not normalized_job_id:
            raise ValueError("job_id must not be blank")
        if request.outcome not in _TRACKING_RUN_OUTCOMES:
            raise ValueError(f"outcome must be one of: {', '.join(sorted(_TRACKING_RUN_OUTCOMES))}")
        if request.attempt_count < 0:
            raise ValueError("attempt_count must be >= 0")

        diagnostics_payload = None
        if request.diagnostics is not None:
            diagnostics_payload = json.dumps(request.diagnostics)

        try:
            with self._engine.begin() as connection:
                created_row = connection.execute(
                    text(
                        "INSERT INTO tracking_run ("
                        "job_id, outcome, reason, attempt_count, final_percentage, final_stage_ordinal, "
                        "elapsed_seconds, diagnostics"
                        ") VALUES ("
                        ":job_id, :outcome, :reason, :attempt_count, :final_percentage, :final_stage_ordinal, "
                        ":elapsed_seconds, CAST(:diagnostics AS jsonb)"
                        ") "
                        f"RETURNING {_TRACKING_RUN_COLUMNS}"
                    ),
                    {
                        "job_id": normalized_job_id,
                        "outcome": request.outcome,
                        "reason": request.reason,
                        "attempt_count": request.attempt_count,
                        "final_percentage": request.final_percentage,
                        "final_stage_ordinal": request.final_stage_ordinal,
                        "elapsed_seconds": request.elapsed_seconds,
                        "diagnostics": diagnostics_payload,
                    },
                ).mappings().one()
                return _db_map_tracking_run_row(created_row)
        except SQLAlchemyError as error:
            raise RuntimeError("failed to record tracking run outcome") from error

    def db_tracking_run_get_latest_by_job_id(self, job_id: str) -> TrackingRunRecord | None:
        """Fetch the most recent tracking run for one job id.

        Args:
            job_id: Upstream job identifier.

        Returns:
            TrackingRunRecord | None: Latest row or None.

        Raises:
            RuntimeError: Raised when database read fails.
        """

        normalized_job_id = job_id.strip()
        if not normalized_job_id:
            return None

        try:
            with self._engine.connect() as connection:
                row = connection.execute(
                    text(
                        f"SELECT {_TRACKING_RUN_COLUMNS} FROM tracking_run "
                        "WHERE job_id = :job_id "
                        "ORDER BY created_at_utc DESC, tracking_run_id DESC "
                        "LIMIT 1"
                    ),
                    {"job_id": normalized_job_id},
                ).mappings().first()
        except SQLAlchemyError as error:
            raise RuntimeError("failed to read tracking run") from error

        if row is None:
            return None
        return _db_map_tracking_run_row(row)

    def db_tracking_run_list(
        self,
        limit: int,
        offset: int,
        sort_by: str = "created_at_utc",
        sort_dir: str = "desc",
    ) -> list[TrackingRunRecord]:
        """List tracking runs using a fixed SQL template per sort option.

        Args:
            limit: Max rows to return.
            offset: Rows to skip.
            sort_by: Sort field.
            sort_dir: Sort direction.

        Returns:
            list[TrackingRunRecord]: Matching rows.

        Raises:
            ValueError: Raised when pagination or sort options are invalid.
            RuntimeError: Raised when database read fails.
        """

        if limit < 1:
            raise ValueError("limit must be >= 1")
        if offset < 0:
            raise ValueError("offset must be >= 0")

        query_template = _TRACKING_RUN_LIST_QUERIES.get((sort_by.strip(), sort_dir.strip().lower()))
        if query_template is None:
            raise ValueError(f"unsupported sort option sort_by={sort_by} sort_dir={sort_dir}")

        try:
            with self._engine.connect() as connection:
                rows = connection.execute(
                    text(query_template),
                    {"limit": limit, "offset": offset},
                ).mappings().all()
        except SQLAlchemyError as error:
            raise RuntimeError("failed to list tracking runs") from error

        return [_db_map_tracking_run_row(row) for row in rows]


def _db_map_tracking_run_row(row: Any) -> TrackingRunRecord:
    """Map one row mapping to a typed tracking run record."""

    diagnostics = row["diagnostics"]
    if isinstance(diagnostics, str):
        diagnostics = json.loads(diagnostics)

    return TrackingRunRecord(
        tracking_run_id=row["tracking_run_id"],
        job_id=row["job_id"],
        outcome=row["outcome"],
        reason=row["reason"],
        attempt_count=int(row["attempt_count"]),
        final_percentage=None if row["final_percentage"] is None else int(row["final_percentage"]),
        final_stage_ordinal=None if row["final_stage_ordinal"] is None else int(row["final_stage_ordinal"]),
        elapsed_seconds=None if row["elapsed_seconds"] is None else float(row["elapsed_seconds"]),
        diagnostics=diagnostics,
        created_at_utc=row["created_at_utc"],
    )
