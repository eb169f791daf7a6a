"""FastAPI application factory for the job-status tracking service."""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.config import AppSettings
from app.db import DatabaseHealthPort, TrackingRunRepositoryPort
from app.tracking import TrackingService

from .routers import api_create_health_router, api_create_tracking_router


def create_api_application(
    settings: AppSettings,
    db_health_service: DatabaseHealthPort,
    tracking_service: TrackingService,
    tracking_repository: TrackingRunRepositoryPort,
) -> FastAPI:
    """Create the FastAPI application instance for the service.

    Tracking sessions live on the server event loop; shutdown cancels every
    active session and flushes pending history writes.

    Args:
        settings: Validated application settings used for runtime metadata.
        db_health_service: Database health service used by health endpoints.
        tracking_service: Tracking service owning live sessions.
        tracking_repository: Tracking history repository for list/detail APIs.

    Returns:
        FastAPI: Framework application instance.
    """

    @asynccontextmanager
    async def api_lifespan(_application: FastAPI):
        yield
        await tracking_service.service_close()

    application = FastAPI(title="Analysis Job Tracker", lifespan=api_lifespan)

    @application.get("/", tags=["foundation"])
    def foundation_index() -> dict[str, str]:
        """Return a minimal service identity response."""

        return {
            "service": "analysis-job-tracker",
            "status": "ready",
            "environment": settings.environment_name,
        }

    application.include_router(
        api_create_health_router(db_health_service=db_health_service, tracking_service=tracking_service)
    )
    application.include_router(
        api_create_tracking_router(
            settings=settings,
            tracking_service=tracking_service,
            tracking_repository=tracking_repository,
        )
    )

    return application
