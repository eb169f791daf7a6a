"""Poller owning the repeating-tick lifecycle of job-status tracking sessions."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Awaitable, Callable, Final, Sequence

from app.adapters import AnalysisAdapterError, AnalysisStatusPort
from app.domain import DEFAULT_ANALYSIS_STAGES, JobHandle, Outcome, PipelineStage

from .classification import tracking_classify_transport_error
from .dispatcher import OutcomeDispatcher
from .errors import TrackingAlreadyActiveError, TrackingInvalidArgumentError, TrackingSessionNotFoundError
from .interfaces import (
    OutcomeCallback,
    ProgressCallback,
    TickResult,
    TrackingConfig,
    TrackingSession,
    TrackingSessionView,
)
from .interpreter import StatusInterpreter
from .retry_strategy import FixedIntervalStrategy, PollWaitStrategy

logger = logging.getLogger(__name__)

_FETCH_FAILURE_TYPES: Final[tuple[type[Exception], ...]] = (
    AnalysisAdapterError,
    TimeoutError,
    ConnectionError,
    ValueError,
    LookupError,
    PermissionError,
    RuntimeError,
)


@dataclass
class _TrackingRuntime:
    """Engine-private bundle of one session and its collaborators."""

    session: TrackingSession
    dispatcher: OutcomeDispatcher
    wait_strategy: PollWaitStrategy
    task: asyncio.Task | None = None
    released: bool = False


class JobStatusTracker:
    """Job-status tracking engine driving one poll loop per job id.

    Each session runs as one asyncio task; the next tick is scheduled only
    after the current fetch resolves. Sessions share no mutable state.
    """

    _FINISHED_VIEW_LIMIT: Final[int] = 256

    def __init__(
        self,
        status_port: AnalysisStatusPort,
        stages: Sequence[PipelineStage] = DEFAULT_ANALYSIS_STAGES,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        """Initialize tracking engine.

        Args:
            status_port: Status fetch collaborator.
            stages: Ordered pipeline stages used for ordinal and ETA mapping.
            clock: Monotonic clock in seconds, defaults to `time.monotonic`.
            sleep: Cooperative sleep coroutine, defaults to `asyncio.sleep`.

        Raises:
            ValueError: Raised when dependencies are invalid.
        """

        if status_port is None:
            raise ValueError("status_port must not be None")

        self._status_port = status_port
        self._interpreter = StatusInterpreter(stages=stages)
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._active: dict[str, _TrackingRuntime] = {}
        self._draining_tasks: set[asyncio.Task] = set()
        self._finished: OrderedDict[str, TrackingSessionView] = OrderedDict()

    @property
    def interpreter(self) -> StatusInterpreter:
        """Return the status interpreter bound to this engine."""

        return self._interpreter

    def tracker_start(
        self,
        job: JobHandle | str,
        poll_interval_seconds: float,
        max_attempts: int,
        max_wall_clock_seconds: float,
        error_penalty_weight: int = 2,
        on_progress: ProgressCallback | None = None,
        on_outcome: OutcomeCallback | None = None,
        wait_strategy: PollWaitStrategy | None = None,
    ) -> JobHandle:
        """Begin issuing polls for one job.

        Must be called from a running event loop.

        Args:
            job: Job handle, or job id for which a handle is created now.
            poll_interval_seconds: Fixed delay between ticks.
            max_attempts: Hard cap on charged attempts.
            max_wall_clock_seconds: Hard cap on elapsed tracking time.
            error_penalty_weight: Attempts charged per transient error.
            on_progress: Optional progress callback.
            on_outcome: Optional terminal outcome callback.
            wait_strategy: Optional wait strategy replacing the fixed interval.

        Returns:
            JobHandle: Handle of the started session.

        Raises:
            TrackingInvalidArgumentError: Raised for invalid arguments.
            TrackingAlreadyActiveError: Raised when tracking is already active for the job id.
            RuntimeError: Raised when no event loop is running.
        """

        job_handle = self._tracker_build_handle(job)
        config = tracker_validate_config(
            poll_interval_seconds=poll_interval_seconds,
            max_attempts=max_attempts,
            max_wall_clock_seconds=max_wall_clock_seconds,
            error_penalty_weight=error_penalty_weight,
            job_id=job_handle.job_id,
        )
        if job_handle.job_id in self._active:
            raise TrackingAlreadyActiveError("tracking already active", job_id=job_handle.job_id)

        loop = asyncio.get_running_loop()
        session = TrackingSession(job_handle=job_handle, config=config, outcome_future=loop.create_future())
        runtime = _TrackingRuntime(
            session=session,
            dispatcher=OutcomeDispatcher(on_progress=on_progress, on_outcome=on_outcome),
            wait_strategy=wait_strategy or FixedIntervalStrategy(interval_seconds=config.poll_interval_seconds),
        )
        runtime.dispatcher.dispatcher_begin(session)
        self._finished.pop(job_handle.job_id, None)
        self._active[job_handle.job_id] = runtime
        runtime.task = loop.create_task(self._tracker_run_loop(runtime), name=f"tracking:{job_handle.job_id}")
        runtime.task.add_done_callback(lambda task: self._tracker_on_loop_done(runtime, task))
        logger.info(
            "Tracking started for job %s: interval=%ss max_attempts=%s max_wall_clock=%ss",
            job_handle.job_id,
            config.poll_interval_seconds,
            config.max_attempts,
            config.max_wall_clock_seconds,
        )
        return job_handle

    def tracker_stop(self, job_id: str) -> bool:
        """Cancel tracking for one job.

        No further poll is issued; an in-flight fetch result is discarded on
        arrival. The job id is released immediately, so tracking may restart
        while a stale fetch drains in the background. Safe to call repeatedly
        and after finalization.

        Args:
            job_id: Tracked job identifier.

        Returns:
            bool: True when this call delivered the cancelled outcome.
        """

        runtime = self._active.get(job_id.strip())
        if runtime is None:
            return False

        delivered = runtime.dispatcher.dispatcher_request_cancel(runtime.session)
        if runtime.task is None or runtime.task.done():
            return delivered
        if runtime.session.fetch_in_flight:
            self._draining_tasks.add(runtime.task)
            runtime.task.add_done_callback(self._draining_tasks.discard)
            self._tracker_release(runtime)
        else:
            runtime.task.cancel()
        return delivered

    async def tracker_wait(self, job_id: str) -> Outcome:
        """Wait for and return the terminal outcome of one session.

        Raises:
            TrackingSessionNotFoundError: Raised when no live or finished session exists.
        """

        normalized_job_id = job_id.strip()
        runtime = self._active.get(normalized_job_id)
        if runtime is not None and runtime.session.outcome_future is not None:
            return await asyncio.shield(runtime.session.outcome_future)

        finished_view = self._finished.get(normalized_job_id)
        if finished_view is None or finished_view.outcome is None:
            raise TrackingSessionNotFoundError("tracking session not found", job_id=normalized_job_id)
        return finished_view.outcome

    def tracker_session(self, job_id: str) -> TrackingSessionView | None:
        """Return a read-only view of a live or recently finished session."""

        normalized_job_id = job_id.strip()
        runtime = self._active.get(normalized_job_id)
        if runtime is not None:
            return TrackingSessionView.from_session(runtime.session)
        return self._finished.get(normalized_job_id)

    def tracker_active_job_ids(self) -> tuple[str, ...]:
        """Return job ids with an active poll loop."""

        return tuple(self._active)

    async def tracker_close(self) -> None:
        """Cancel every active session and wait for loops to exit."""

        runtimes = list(self._active.values())
        for runtime in runtimes:
            runtime.dispatcher.dispatcher_request_cancel(runtime.session)
            if runtime.task is not None and not runtime.task.done():
                runtime.task.cancel()
        tasks = [runtime.task for runtime in runtimes if runtime.task is not None]
        for draining_task in self._draining_tasks:
            draining_task.cancel()
            tasks.append(draining_task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _tracker_run_loop(self, runtime: _TrackingRuntime) -> None:
        """Drive ticks until the session finalizes."""

        session = runtime.session
        tick_index = 0
        try:
            while not session.finalized:
                if runtime.dispatcher.dispatcher_enforce_budget(session, self._tracker_elapsed_seconds(session)):
                    break

                session.attempt_count += 1
                tick_result = await self._tracker_fetch_tick(session)
                runtime.dispatcher.dispatcher_handle_tick(
                    session,
                    tick_result,
                    elapsed_seconds=self._tracker_elapsed_seconds(session),
                )
                if session.finalized:
                    break

                wait_seconds = max(
                    runtime.wait_strategy.strategy_calculate_wait_seconds(tick_index=tick_index),
                    tick_result.tick_retry_after_seconds,
                )
                # never sleep past the wall-clock budget
                remaining_seconds = session.config.max_wall_clock_seconds - self._tracker_elapsed_seconds(session)
                wait_seconds = min(wait_seconds, max(0.0, remaining_seconds))
                tick_index += 1
                await self._sleep(wait_seconds)
        except asyncio.CancelledError:
            runtime.dispatcher.dispatcher_request_cancel(session)
            raise

    async def _tracker_fetch_tick(self, session: TrackingSession) -> TickResult:
        """Issue one status fetch and convert its resolution into tick data."""

        session.fetch_in_flight = True
        try:
            payload = await self._status_port.adapter_fetch_status(session.job_id)
        except _FETCH_FAILURE_TYPES as error:
            return TickResult(failure=tracking_classify_transport_error(error))
        finally:
            session.fetch_in_flight = False

        if session.finalized:
            return TickResult()
        return TickResult(
            interpreted=self._interpreter.interpreter_interpret(
                payload=payload,
                previous_snapshot=session.last_snapshot,
                elapsed_seconds=self._tracker_elapsed_seconds(session),
                job_id=session.job_id,
            )
        )

    def _tracker_elapsed_seconds(self, session: TrackingSession) -> float:
        return max(0.0, self._clock() - session.job_handle.started_at)

    def _tracker_on_loop_done(self, runtime: _TrackingRuntime, task: asyncio.Task) -> None:
        """Finalize on unexpected loop errors, then release the session."""

        if not task.cancelled() and task.exception() is not None:
            error = task.exception()
            logger.error("Tracking loop for job %s stopped unexpectedly: %r", runtime.session.job_id, error)
            runtime.dispatcher.dispatcher_fail(runtime.session, reason=f"{type(error).__name__}: {error}")
        elif not runtime.session.finalized:
            runtime.dispatcher.dispatcher_request_cancel(runtime.session)
        self._tracker_release(runtime)

    def _tracker_release(self, runtime: _TrackingRuntime) -> None:
        """Move a finished session out of the active map, keeping a read-only view."""

        if runtime.released:
            return
        runtime.released = True
        job_id = runtime.session.job_id
        if self._active.get(job_id) is runtime:
            del self._active[job_id]
        self._finished[job_id] = TrackingSessionView.from_session(runtime.session)
        self._finished.move_to_end(job_id)
        while len(self._finished) > self._FINISHED_VIEW_LIMIT:
            self._finished.popitem(last=False)

    def _tracker_build_handle(self, job: JobHandle | str) -> JobHandle:
        if isinstance(job, JobHandle):
            normalized_job_id = job.job_id.strip()
            started_at = job.started_at
        elif isinstance(job, str):
            normalized_job_id = job.strip()
            started_at = self._clock()
        else:
            raise TrackingInvalidArgumentError("job must be a JobHandle or job id string")

        if not normalized_job_id:
            raise TrackingInvalidArgumentError("job_id must not be blank")
        return JobHandle(job_id=normalized_job_id, started_at=started_at)


def tracker_validate_config(
    poll_interval_seconds: float,
    max_attempts: int,
    max_wall_clock_seconds: float,
    error_penalty_weight: int = 2,
    job_id: str | None = None,
) -> TrackingConfig:
    """Validate tracking budget arguments and build an immutable config.

    Args:
        poll_interval_seconds: Fixed delay between ticks.
        max_attempts: Hard cap on charged attempts.
        max_wall_clock_seconds: Hard cap on elapsed tracking time.
        error_penalty_weight: Attempts charged per transient error.
        job_id: Optional job id for error context.

    Returns:
        TrackingConfig: Validated config.

    Raises:
        TrackingInvalidArgumentError: Raised when any value is out of range.
    """

    if poll_interval_seconds <= 0:
        raise TrackingInvalidArgumentError("poll_interval_seconds must be > 0", job_id=job_id)
    if max_attempts <= 0:
        raise TrackingInvalidArgumentError("max_attempts must be > 0", job_id=job_id)
    if max_wall_clock_seconds <= 0:
        raise TrackingInvalidArgumentError("max_wall_clock_seconds must be > 0", job_id=job_id)
    if error_penalty_weight < 1:
        raise TrackingInvalidArgumentError("error_penalty_weight must be >= 1", job_id=job_id)
    return TrackingConfig(
        poll_interval_seconds=float(poll_interval_seconds),
        max_attempts=int(max_attempts),
        max_wall_clock_seconds=float(max_wall_clock_seconds),
        error_penalty_weight=int(error_penalty_weight),
    )
