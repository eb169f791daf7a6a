"""Database layer package for all SQL and persistence boundaries."""

from .health import SQLAlchemyDatabaseHealthService
from .interfaces import (
	DatabaseHealthPort,
	TrackingRunRecord,
	TrackingRunRecordRequest,
	TrackingRunRepositoryPort,
)
from .session import db_create_engine
from .tracking_run import SQLAlchemyTrackingRunService

__all__ = [
	"DatabaseHealthPort",
	"SQLAlchemyDatabaseHealthService",
	"SQLAlchemyTrackingRunService",
	"TrackingRunRecord",
	"TrackingRunRecordRequest",
	"TrackingRunRepositoryPort",
	"db_create_engine",
]
