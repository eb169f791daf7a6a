"""Health endpoint router reporting app, database and tracking engine state."""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from app.db import DatabaseHealthPort
from app.tracking import TrackingService


def api_create_health_router(
    db_health_service: DatabaseHealthPort,
    tracking_service: TrackingService | None = None,
) -> APIRouter:
    """Create health-check router.

    Args:
        db_health_service: DB-layer health service interface.
        tracking_service: Optional tracking service used to report active sessions.

    Returns:
        APIRouter: Router exposing `/health` endpoint.

    Raises:
        ValueError: Raised when db_health_service is invalid.
    """

    if db_health_service is None:
        raise ValueError("db_health_service must not be None")

    router = APIRouter(tags=["health"])

    @router.get("/health")
    def api_health_status() -> JSONResponse:
        """Return application, database and tracking engine health state.

        A database outage degrades the service without taking tracking down,
        since sessions run in memory and only history writes need the database.
        """

        active_sessions = 0 if tracking_service is None else len(tracking_service.service_active_job_ids())
        target = db_health_service.db_connection_label()
        try:
            db_health = db_health_service.db_check_health()
        except ConnectionError as error:
            payload = {
                "status": "degraded",
                "app": "up",
                "database": "down",
                "detail": str(error),
                "target": target,
                "active_tracking_sessions": active_sessions,
            }
            return JSONResponse(content=payload, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)

        payload = {
            "status": "ok" if db_health.status == "ok" else "degraded",
            "app": "up",
            "database": db_health.status,
            "detail": db_health.detail,
            "target": target,
            "active_tracking_sessions": active_sessions,
        }
        return JSONResponse(content=payload, status_code=status.HTTP_200_OK)

    return router
