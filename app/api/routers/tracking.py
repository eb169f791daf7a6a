"""Tracking API router composition for session control and run history endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.adapters import AnalysisAdapterError
from app.config import AppSettings
from app.db import TrackingRunRecord, TrackingRunRepositoryPort
from app.domain import JobHandle
from app.tracking import TrackingAlreadyActiveError, TrackingInvalidArgumentError, TrackingService

logger = logging.getLogger(__name__)

_ALLOWED_SORT_BY = frozenset({"created_at_utc", "job_id", "outcome", "attempt_count"})
_ALLOWED_SORT_DIR = frozenset({"asc", "desc"})


class AnalysisStartRequest(BaseModel):
    """Request body for starting a remote analysis."""

    query: str = Field(min_length=1)
    options: dict[str, Any] | None = None


def api_create_tracking_router(
    settings: AppSettings,
    tracking_service: TrackingService,
    tracking_repository: TrackingRunRepositoryPort,
) -> APIRouter:
    """Create tracking router with session control and history endpoints.

    Args:
        settings: Runtime settings used for pagination defaults.
        tracking_service: Tracking service owning live sessions.
        tracking_repository: DB-layer tracking history repository.

    Returns:
        APIRouter: Router exposing tracking APIs.

    Raises:
        ValueError: Raised when dependencies are invalid.
    """

    if settings is None:
        raise ValueError("settings must not be None")
    if tracking_service is None:
        raise ValueError("tracking_service must not be None")
    if tracking_repository is None:
        raise ValueError("tracking_repository must not be None")

    router = APIRouter(prefix="/tracking", tags=["tracking"])

    @router.get("/runs")
    def api_tracking_run_list(
        limit: int = Query(default=settings.api_default_limit, ge=1),
        offset: int = Query(default=0, ge=0),
        sort_by: str = Query(default="created_at_utc"),
        sort_dir: str = Query(default="desc"),
    ) -> JSONResponse:
        """Return persisted tracking runs, latest first by default.

        Raises:
            RuntimeError: Raised when repository read fails.
        """

        normalized_sort_by = sort_by.strip()
        normalized_sort_dir = sort_dir.strip().lower()
        if normalized_sort_by not in _ALLOWED_SORT_BY:
            payload = {
                "status": "error",
                "code": "INVALID_SORT_FIELD",
                "message": f"unsupported sort_by={normalized_sort_by}",
            }
            return JSONResponse(content=payload, status_code=status.HTTP_400_BAD_REQUEST)
        if normalized_sort_dir not in _ALLOWED_SORT_DIR:
            payload = {
                "status": "error",
                "code": "INVALID_SORT_DIRECTION",
                "message": f"unsupported sort_dir={normalized_sort_dir}",
            }
            return JSONResponse(content=payload, status_code=status.HTTP_400_BAD_REQUEST)

        applied_limit = min(limit, settings.api_max_limit)
        run_rows = tracking_repository.db_tracking_run_list(
            limit=applied_limit,
            offset=offset,
            sort_by=normalized_sort_by,
            sort_dir=normalized_sort_dir,
        )
        payload = {
            "items": [api_serialize_tracking_run_record(run_record) for run_record in run_rows],
            "page": {
                "limit": limit,
                "applied_limit": applied_limit,
                "offset": offset,
                "returned": len(run_rows),
            },
            "sort": {
                "sort_by": normalized_sort_by,
                "sort_dir": normalized_sort_dir,
            },
        }
        return JSONResponse(content=payload, status_code=status.HTTP_200_OK)

    @router.post("/analyses")
    async def api_tracking_start_analysis(request: AnalysisStartRequest) -> JSONResponse:
        """Start one remote analysis and begin tracking the returned job id."""

        try:
            job_handle = await tracking_service.service_start_analysis(
                query_text=request.query,
                options=request.options,
            )
        except TrackingAlreadyActiveError as error:
            return _api_error_response(str(error), status.HTTP_409_CONFLICT)
        except AnalysisAdapterError as error:
            logger.warning("Remote analysis start failed: %s", error)
            return _api_error_response(str(error), status.HTTP_502_BAD_GATEWAY)
        except ValueError as error:
            return _api_error_response(str(error), status.HTTP_400_BAD_REQUEST)

        return JSONResponse(content=_api_serialize_job_handle(job_handle), status_code=status.HTTP_202_ACCEPTED)

    @router.post("/{job_id}")
    async def api_tracking_start(job_id: str) -> JSONResponse:
        """Start tracking one existing remote job with configured defaults.

        Returns:
            JSONResponse: 202 on start, 409 when already tracked, 400 for invalid arguments.
        """

        try:
            job_handle = tracking_service.service_start_tracking(job_id)
        except TrackingAlreadyActiveError as error:
            return _api_error_response(str(error), status.HTTP_409_CONFLICT)
        except TrackingInvalidArgumentError as error:
            return _api_error_response(str(error), status.HTTP_400_BAD_REQUEST)

        return JSONResponse(content=_api_serialize_job_handle(job_handle), status_code=status.HTTP_202_ACCEPTED)

    @router.post("/{job_id}/retry")
    async def api_tracking_retry(job_id: str) -> JSONResponse:
        """Re-run one finished analysis upstream and track the new job id.

        Returns:
            JSONResponse: 202 with the new job id, 409 while the original is still tracked,
                502 when upstream rejects the retry, 400 for a blank job id.
        """

        try:
            job_handle = await tracking_service.service_retry_analysis(job_id)
        except TrackingAlreadyActiveError as error:
            return _api_error_response(str(error), status.HTTP_409_CONFLICT)
        except AnalysisAdapterError as error:
            logger.warning("Remote analysis retry failed for job %s: %s", job_id, error)
            return _api_error_response(str(error), status.HTTP_502_BAD_GATEWAY)
        except ValueError as error:
            return _api_error_response(str(error), status.HTTP_400_BAD_REQUEST)

        payload = {**_api_serialize_job_handle(job_handle), "retried_from": job_id.strip()}
        return JSONResponse(content=payload, status_code=status.HTTP_202_ACCEPTED)

    @router.delete("/{job_id}")
    async def api_tracking_stop(job_id: str, cancel_remote: bool = Query(default=False)) -> JSONResponse:
        """Stop tracking one job; optionally cancel it on the remote service."""

        session_view = tracking_service.service_session_view(job_id)
        if session_view is None:
            return _api_error_response("tracking session not found", status.HTTP_404_NOT_FOUND)

        try:
            stopped = await tracking_service.service_stop_tracking(job_id, cancel_remote=cancel_remote)
        except AnalysisAdapterError as error:
            logger.warning("Remote cancellation failed for job %s: %s", job_id, error)
            return _api_error_response(str(error), status.HTTP_502_BAD_GATEWAY)

        payload = {
            "job_id": session_view.job_id,
            "stopped": stopped,
            "remote_cancel_requested": cancel_remote,
        }
        return JSONResponse(content=payload, status_code=status.HTTP_200_OK)

    @router.get("/{job_id}")
    def api_tracking_detail(job_id: str) -> JSONResponse:
        """Return live session view, or latest persisted run when no session is held in memory."""

        session_view = tracking_service.service_session_view(job_id)
        if session_view is not None:
            payload = {"source": "session", **session_view.view_to_payload()}
            return JSONResponse(content=payload, status_code=status.HTTP_200_OK)

        run_record = tracking_repository.db_tracking_run_get_latest_by_job_id(job_id=job_id)
        if run_record is None:
            return _api_error_response("tracking session not found", status.HTTP_404_NOT_FOUND)
        payload = {"source": "history", **api_serialize_tracking_run_record(run_record)}
        return JSONResponse(content=payload, status_code=status.HTTP_200_OK)

    return router


def api_serialize_tracking_run_record(run_record: TrackingRunRecord) -> dict[str, object]:
    """Serialize typed tracking run row to JSON response payload."""

    return {
        "tracking_run_id": str(run_record.tracking_run_id),
        "job_id": run_record.job_id,
        "outcome": run_record.outcome,
        "reason": run_record.reason,
        "attempt_count": run_record.attempt_count,
        "final_percentage": run_record.final_percentage,
        "final_stage_ordinal": run_record.final_stage_ordinal,
        "elapsed_seconds": run_record.elapsed_seconds,
        "diagnostics": run_record.diagnostics,
        "created_at_utc": run_record.created_at_utc.isoformat(),
    }


def _api_serialize_job_handle(job_handle: JobHandle) -> dict[str, object]:
    return {"job_id": job_handle.job_id, "status": "tracking"}


def _api_error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(content={"status": "error", "message": message}, status_code=status_code)
