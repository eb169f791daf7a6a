"""Tracking service wiring the engine to the analysis adapter and run history."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Callable

from app.adapters import AnalysisServicePort
from app.db import TrackingRunRecordRequest, TrackingRunRepositoryPort
from app.domain import JobHandle, Outcome

from .errors import TrackingAlreadyActiveError
from .interfaces import ProgressCallback, TrackingSessionView
from .poller import JobStatusTracker, tracker_validate_config
from .retry_strategy import ExponentialJitterStrategy, FixedIntervalStrategy, PollWaitStrategy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrackingServiceConfig:
    """Default budget and pacing values for sessions started through the service.

    Attributes:
        poll_interval_seconds: Fixed delay between ticks (base delay for exponential mode).
        max_attempts: Hard cap on charged attempts.
        max_wall_clock_seconds: Hard cap on elapsed tracking time.
        error_penalty_weight: Attempts charged per transient error.
        backoff_mode: `fixed` or `exponential`.
        backoff_max_seconds: Exponential delay cap before jitter.
        jitter_min_multiplier: Minimum jitter multiplier.
        jitter_max_multiplier: Maximum jitter multiplier.
    """

    poll_interval_seconds: float = 5.0
    max_attempts: int = 40
    max_wall_clock_seconds: float = 200.0
    error_penalty_weight: int = 2
    backoff_mode: str = "fixed"
    backoff_max_seconds: float = 60.0
    jitter_min_multiplier: float = 0.5
    jitter_max_multiplier: float = 1.5


class TrackingService:
    """Start, stop and observe tracking sessions; record finalized sessions as history."""

    def __init__(
        self,
        tracker: JobStatusTracker,
        analysis_adapter: AnalysisServicePort,
        config: TrackingServiceConfig,
        run_repository: TrackingRunRepositoryPort | None = None,
        random_unit_interval_provider: Callable[[], float] | None = None,
    ):
        """Initialize tracking service dependencies.

        Args:
            tracker: Tracking engine.
            analysis_adapter: Remote analysis service adapter.
            config: Default session configuration.
            run_repository: Optional tracking history repository.
            random_unit_interval_provider: Optional jitter source for exponential mode.

        Raises:
            ValueError: Raised when dependencies or config values are invalid.
        """

        if tracker is None:
            raise ValueError("tracker must not be None")
        if analysis_adapter is None:
            raise ValueError("analysis_adapter must not be None")
        if config.backoff_mode not in {"fixed", "exponential"}:
            raise ValueError("config.backoff_mode must be one of: fixed, exponential")
        tracker_validate_config(
            poll_interval_seconds=config.poll_interval_seconds,
            max_attempts=config.max_attempts,
            max_wall_clock_seconds=config.max_wall_clock_seconds,
            error_penalty_weight=config.error_penalty_weight,
        )

        self._tracker = tracker
        self._analysis_adapter = analysis_adapter
        self._config = config
        self._run_repository = run_repository
        self._random_unit_interval_provider = random_unit_interval_provider or random.random
        self._pending_writes: set[asyncio.Future] = set()

    def service_start_tracking(self, job_id: str, on_progress: ProgressCallback | None = None) -> JobHandle:
        """Start tracking one existing upstream job with configured defaults.

        Raises:
            TrackingInvalidArgumentError: Raised for invalid job id.
            TrackingAlreadyActiveError: Raised when the job is already tracked.
        """

        job_handle_holder: list[JobHandle] = []

        def _service_on_outcome(outcome: Outcome) -> None:
            self._service_record_outcome(job_handle_holder[0].job_id, outcome)

        job_handle = self._tracker.tracker_start(
            job_id,
            poll_interval_seconds=self._config.poll_interval_seconds,
            max_attempts=self._config.max_attempts,
            max_wall_clock_seconds=self._config.max_wall_clock_seconds,
            error_penalty_weight=self._config.error_penalty_weight,
            on_progress=on_progress,
            on_outcome=_service_on_outcome,
            wait_strategy=self._service_build_wait_strategy(),
        )
        job_handle_holder.append(job_handle)
        return job_handle

    async def service_start_analysis(
        self,
        query_text: str,
        options: dict[str, Any] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> JobHandle:
        """Start one remote analysis and begin tracking it.

        Raises:
            ValueError: Raised when query text is blank.
            AnalysisAdapterError: Raised when upstream rejects the request.
        """

        job_id = await self._analysis_adapter.adapter_start_analysis(query_text=query_text, options=options)
        return self.service_start_tracking(job_id, on_progress=on_progress)

    async def service_retry_analysis(self, job_id: str, on_progress: ProgressCallback | None = None) -> JobHandle:
        """Re-run one finished analysis upstream and track the new job.

        Raises:
            TrackingAlreadyActiveError: Raised when the original job is still tracked.
            ValueError: Raised when job id is blank.
            AnalysisAdapterError: Raised when upstream rejects the retry.
        """

        normalized_job_id = job_id.strip()
        if normalized_job_id in self._tracker.tracker_active_job_ids():
            raise TrackingAlreadyActiveError("tracking still active; stop it before retrying", job_id=normalized_job_id)

        new_job_id = await self._analysis_adapter.adapter_retry_analysis(normalized_job_id)
        logger.info("Analysis %s retried upstream as %s", normalized_job_id, new_job_id)
        return self.service_start_tracking(new_job_id, on_progress=on_progress)

    async def service_stop_tracking(self, job_id: str, cancel_remote: bool = False) -> bool:
        """Stop tracking one job and optionally cancel it upstream.

        Returns:
            bool: True when a live session was cancelled by this call.

        Raises:
            AnalysisAdapterError: Raised when remote cancellation fails.
        """

        stopped = self._tracker.tracker_stop(job_id)
        if cancel_remote:
            await self._analysis_adapter.adapter_cancel_analysis(job_id)
        return stopped

    async def service_wait(self, job_id: str) -> Outcome:
        """Wait for the terminal outcome of one tracked job."""

        return await self._tracker.tracker_wait(job_id)

    async def service_fetch_results(self, job_id: str) -> dict[str, Any]:
        """Fetch final results for one job through a one-shot request."""

        return await self._analysis_adapter.adapter_fetch_results(job_id)

    def service_session_view(self, job_id: str) -> TrackingSessionView | None:
        """Return a read-only view of a live or recently finished session."""

        return self._tracker.tracker_session(job_id)

    def service_active_job_ids(self) -> tuple[str, ...]:
        """Return job ids with an active poll loop."""

        return self._tracker.tracker_active_job_ids()

    async def service_close(self) -> None:
        """Cancel all sessions, flush pending history writes and close the adapter."""

        await self._tracker.tracker_close()
        if self._pending_writes:
            await asyncio.gather(*self._pending_writes, return_exceptions=True)
        await self._analysis_adapter.adapter_close()

    def _service_build_wait_strategy(self) -> PollWaitStrategy:
        if self._config.backoff_mode == "exponential":
            return ExponentialJitterStrategy(
                base_seconds=self._config.poll_interval_seconds,
                max_backoff_seconds=max(self._config.backoff_max_seconds, self._config.poll_interval_seconds),
                jitter_min_multiplier=self._config.jitter_min_multiplier,
                jitter_max_multiplier=self._config.jitter_max_multiplier,
                random_unit_interval_provider=self._random_unit_interval_provider,
            )
        return FixedIntervalStrategy(interval_seconds=self._config.poll_interval_seconds)

    def _service_record_outcome(self, job_id: str, outcome: Outcome) -> None:
        """Schedule a history write for one finalized session off the event loop."""

        if self._run_repository is None:
            return

        session_view = self._tracker.tracker_session(job_id)
        last_snapshot = outcome.snapshot or (None if session_view is None else session_view.last_snapshot)
        request = TrackingRunRecordRequest(
            job_id=job_id,
            outcome=outcome.kind.value,
            reason=outcome.reason,
            attempt_count=outcome.attempt_count,
            final_percentage=None if last_snapshot is None else last_snapshot.percentage,
            final_stage_ordinal=None if last_snapshot is None else last_snapshot.current_stage_ordinal,
            elapsed_seconds=None if last_snapshot is None else last_snapshot.elapsed_seconds,
            diagnostics=None if session_view is None else [anomaly.anomaly_to_payload() for anomaly in session_view.anomalies],
        )
        loop = asyncio.get_running_loop()
        write_future = loop.run_in_executor(None, self._run_repository.db_tracking_run_record_outcome, request)
        self._pending_writes.add(write_future)
        write_future.add_done_callback(self._service_on_write_done)

    def _service_on_write_done(self, write_future: asyncio.Future) -> None:
        self._pending_writes.discard(write_future)
        if write_future.cancelled():
            return
        error = write_future.exception()
        if error is not None:
            logger.error("Failed to record tracking run history: %s", error)
