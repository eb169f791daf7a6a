"""Database health service verifying connectivity and tracking history schema."""

from sqlalchemy import Engine, text
from sqlalchemy.exc import SQLAlchemyError

from app.domain import HealthStatus

from .interfaces import DatabaseHealthPort


class SQLAlchemyDatabaseHealthService(DatabaseHealthPort):
    """Health service probing the `tracking_run` table through the SQLAlchemy engine."""

    def __init__(self, engine: Engine):
        if engine is None:
            raise ValueError("engine must not be None")
        self._engine = engine

    def db_connection_label(self) -> str:
        """Return the target database URL with the password hidden."""

        return self._engine.url.render_as_string(hide_password=True)

    def db_check_health(self) -> HealthStatus:
        """Verify connectivity and that the tracking history table is migrated.

        Returns:
            HealthStatus: `ok` when reachable and migrated, `degraded` when the table is missing.

        Raises:
            ConnectionError: Raised when the database cannot be reached.
        """

        try:
            with self._engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except SQLAlchemyError as error:
            raise ConnectionError("database connectivity check failed") from error

        try:
            with self._engine.connect() as connection:
                connection.execute(text("SELECT 1 FROM tracking_run LIMIT 1"))
        except SQLAlchemyError:
            return HealthStatus(status="degraded", detail="tracking_run table unavailable; run migrations")
        return HealthStatus(status="ok", detail="database connectivity and tracking schema verified")
