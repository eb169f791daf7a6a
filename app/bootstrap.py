"""Application bootstrap wiring for startup validation and dependency assembly."""

from fastapi import FastAPI

from app.adapters import AnalysisHttpAdapter
from app.api import create_api_application
from app.config import AppSettings, config_load_settings
from app.db import (
    SQLAlchemyDatabaseHealthService,
    SQLAlchemyTrackingRunService,
    TrackingRunRepositoryPort,
    db_create_engine,
)
from app.tracking import JobStatusTracker, TrackingService, TrackingServiceConfig


def bootstrap_create_application() -> FastAPI:
    """Assemble the runtime application after validating startup configuration.

    Returns:
        FastAPI: Fully initialized FastAPI application instance.

    Raises:
        SettingsLoadError: Raised when startup configuration validation fails.
    """

    settings = config_load_settings()
    engine = db_create_engine(database_url=settings.database_url)
    tracking_repository = SQLAlchemyTrackingRunService(engine=engine)
    return create_api_application(
        settings=settings,
        db_health_service=SQLAlchemyDatabaseHealthService(engine=engine),
        tracking_service=bootstrap_create_tracking_service(settings, run_repository=tracking_repository),
        tracking_repository=tracking_repository,
    )


def bootstrap_create_tracking_service(
    settings: AppSettings,
    run_repository: TrackingRunRepositoryPort | None = None,
) -> TrackingService:
    """Build tracking service for HTTP and CLI surfaces.

    Args:
        settings: Validated runtime settings.
        run_repository: Optional tracking history repository; history is skipped when None.

    Returns:
        TrackingService: Fully wired tracking service instance.
    """

    analysis_adapter = AnalysisHttpAdapter(
        base_url=settings.analysis_api_base_url,
        user_id=settings.analysis_api_user_id,
        request_timeout_seconds=settings.analysis_request_timeout_seconds,
    )
    return TrackingService(
        tracker=JobStatusTracker(status_port=analysis_adapter),
        analysis_adapter=analysis_adapter,
        config=bootstrap_build_tracking_service_config(settings),
        run_repository=run_repository,
    )


def bootstrap_build_tracking_service_config(settings: AppSettings) -> TrackingServiceConfig:
    """Map runtime settings to tracking session defaults."""

    return TrackingServiceConfig(
        poll_interval_seconds=settings.tracking_poll_interval_seconds,
        max_attempts=settings.tracking_max_attempts,
        max_wall_clock_seconds=settings.tracking_max_wall_clock_seconds,
        error_penalty_weight=settings.tracking_error_penalty_weight,
        backoff_mode=settings.tracking_backoff_mode,
        backoff_max_seconds=settings.tracking_backoff_max_seconds,
        jitter_min_multiplier=settings.tracking_jitter_min_multiplier,
        jitter_max_multiplier=settings.tracking_jitter_max_multiplier,
    )
