"""Main module entrypoint for local runtime execution.

This module validates startup configuration and either launches the FastAPI
service or tracks one analysis job from the terminal.
"""

import argparse
import asyncio
import logging

import uvicorn
from pydantic import ValidationError

from app.bootstrap import bootstrap_create_application, bootstrap_create_tracking_service
from app.config import AppSettings, config_load_settings
from app.db import SQLAlchemyTrackingRunService, db_create_engine
from app.domain import OutcomeKind, ProgressSnapshot
from app.observability import configure_logging

logger = logging.getLogger(__name__)


def main() -> None:
    """Run selected runtime command with validated startup configuration.

    Raises:
        SettingsLoadError: Raised when configuration validation fails.
        SystemExit: Raised with code 1 when a tracked job does not complete.
    """

    argument_parser = argparse.ArgumentParser(description="Analysis job tracker runtime entrypoint")
    argument_parser.add_argument(
        "command",
        nargs="?",
        default="api",
        choices=("api", "track"),
        help="Runtime command: `api` starts server, `track` follows one analysis job until it finishes",
        type=str,
    )
    argument_parser.add_argument("job_id", nargs="?", type=str, help="Existing job id for `track`")
    argument_parser.add_argument(
        "--query",
        dest="query_text",
        type=str,
        help="Start a new analysis with this query text and track it",
    )
    argument_parser.add_argument("--interval", dest="poll_interval_seconds", type=float, help="Seconds between polls")
    argument_parser.add_argument("--max-attempts", dest="max_attempts", type=int, help="Charged attempt budget")
    argument_parser.add_argument(
        "--max-wall-clock",
        dest="max_wall_clock_seconds",
        type=float,
        help="Wall-clock budget in seconds",
    )
    argument_parser.add_argument(
        "--record-history",
        dest="record_history",
        action="store_true",
        help="Persist the tracking outcome to the database",
    )
    parsed_arguments = argument_parser.parse_args()

    settings = config_load_settings()
    configure_logging(level=settings.log_level)

    if parsed_arguments.command == "track":
        if not parsed_arguments.job_id and not parsed_arguments.query_text:
            argument_parser.error("track requires a job id or --query")
        try:
            track_settings = main_apply_track_overrides(
                settings,
                poll_interval_seconds=parsed_arguments.poll_interval_seconds,
                max_attempts=parsed_arguments.max_attempts,
                max_wall_clock_seconds=parsed_arguments.max_wall_clock_seconds,
            )
        except ValidationError as error:
            argument_parser.error(f"invalid tracking override: {error}")
        outcome_kind = asyncio.run(
            main_track_job(
                settings=track_settings,
                job_id=parsed_arguments.job_id,
                query_text=parsed_arguments.query_text,
                record_history=parsed_arguments.record_history,
            )
        )
        if outcome_kind != OutcomeKind.COMPLETED:
            raise SystemExit(1)
        return

    application = bootstrap_create_application()
    uvicorn.run(
        application,
        host=settings.application_host,
        port=settings.application_port,
    )


def main_apply_track_overrides(
    settings: AppSettings,
    poll_interval_seconds: float | None = None,
    max_attempts: int | None = None,
    max_wall_clock_seconds: float | None = None,
) -> AppSettings:
    """Return settings with CLI tracking overrides applied and re-validated.

    Args:
        settings: Validated runtime settings.
        poll_interval_seconds: Optional poll interval override.
        max_attempts: Optional attempt budget override.
        max_wall_clock_seconds: Optional wall-clock budget override.

    Returns:
        AppSettings: Settings including the overrides.

    Raises:
        ValidationError: Raised when an override violates settings constraints.
    """

    overrides = {
        "tracking_poll_interval_seconds": poll_interval_seconds,
        "tracking_max_attempts": max_attempts,
        "tracking_max_wall_clock_seconds": max_wall_clock_seconds,
    }
    return AppSettings.model_validate(
        {
            **settings.model_dump(),
            **{field_name: value for field_name, value in overrides.items() if value is not None},
        }
    )


async def main_track_job(
    settings: AppSettings,
    job_id: str | None,
    query_text: str | None,
    record_history: bool = False,
) -> OutcomeKind:
    """Track one job to its terminal outcome, printing progress lines.

    Args:
        settings: Runtime settings with any CLI overrides applied.
        job_id: Existing upstream job id, ignored when query text is given.
        query_text: Optional query text used to start a new analysis.
        record_history: Persist the outcome when True.

    Returns:
        OutcomeKind: Terminal outcome kind.
    """

    run_repository = None
    if record_history:
        run_repository = SQLAlchemyTrackingRunService(engine=db_create_engine(database_url=settings.database_url))
    tracking_service = bootstrap_create_tracking_service(settings, run_repository=run_repository)
    try:
        if query_text:
            job_handle = await tracking_service.service_start_analysis(query_text, on_progress=main_print_progress)
            print(f"Started analysis {job_handle.job_id}")
        else:
            job_handle = tracking_service.service_start_tracking(job_id or "", on_progress=main_print_progress)

        outcome = await tracking_service.service_wait(job_handle.job_id)
    finally:
        await tracking_service.service_close()

    if outcome.kind == OutcomeKind.COMPLETED:
        print(f"Analysis {job_handle.job_id} completed after {outcome.attempt_count} attempts")
    elif outcome.reason:
        print(f"Analysis {job_handle.job_id} {outcome.kind.value}: {outcome.reason}")
    else:
        print(f"Analysis {job_handle.job_id} {outcome.kind.value} after {outcome.attempt_count} attempts")
    return outcome.kind


def main_print_progress(snapshot: ProgressSnapshot) -> None:
    """Print one progress line for a snapshot."""

    eta_text = "unknown" if snapshot.estimated_remaining_seconds is None else f"{snapshot.estimated_remaining_seconds:.0f}s"
    stage_text = snapshot.stage_id or "-"
    stage_position = min(snapshot.current_stage_ordinal + 1, snapshot.total_stages)
    print(
        f"[{stage_position}/{snapshot.total_stages}] {stage_text} "
        f"{snapshot.percentage}% eta={eta_text}"
    )


if __name__ == "__main__":
    main()
