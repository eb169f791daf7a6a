"""Tests for poll loop lifecycle, budgets and cancellation with a fake clock."""

from __future__ import annotations

import asyncio

import pytest

from app.adapters import (
    AnalysisJobNotFoundError,
    AnalysisNotModifiedSignal,
    AnalysisServerError,
    AnalysisTransportError,
    RawStatusPayload,
)
from app.domain import JobHandle, Outcome, OutcomeKind, ProgressSnapshot, domain_build_stage_sequence
from app.tracking import (
    JobStatusTracker,
    TrackingAlreadyActiveError,
    TrackingInvalidArgumentError,
    TrackingSessionNotFoundError,
    TrackingState,
)

_THREE_STAGES = domain_build_stage_sequence(["plan", "gather", "synthesize"], estimated_duration_seconds=20.0)


class _FakeClock:
    """Deterministic monotonic clock advanced only by the fake sleep."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        """Advance virtual time and yield to the event loop.

        Args:
            seconds: Virtual seconds to advance.
        """

        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class _ScriptedStatusPort:
    """Status port returning results computed from the virtual clock.

    Each script entry is called with the current clock reading and either
    returns a payload or raises.
    """

    def __init__(self, clock: _FakeClock, script) -> None:
        self._clock = clock
        self._script = script
        self.fetch_times: list[float] = []

    async def adapter_fetch_status(self, job_id: str) -> RawStatusPayload:
        """Record fetch time and delegate to script.

        Args:
            job_id: Requested job id.

        Returns:
            RawStatusPayload: Scripted payload.

        Raises:
            Exception: Any scripted adapter error.
        """

        self.fetch_times.append(self._clock.now)
        return self._script(job_id, self._clock.now)


class _Recorder:
    def __init__(self, clock: _FakeClock) -> None:
        self._clock = clock
        self.progress: list[tuple[float, ProgressSnapshot]] = []
        self.outcomes: list[tuple[float, Outcome]] = []

    def on_progress(self, snapshot: ProgressSnapshot) -> None:
        self.progress.append((self._clock.now, snapshot))

    def on_outcome(self, outcome: Outcome) -> None:
        self.outcomes.append((self._clock.now, outcome))


def _processing(job_id: str, stage_id: str | None = "plan") -> RawStatusPayload:
    return RawStatusPayload(job_id=job_id, status_tag="processing", stage_id=stage_id)


def _build_tracker(clock: _FakeClock, script) -> tuple[JobStatusTracker, _ScriptedStatusPort]:
    status_port = _ScriptedStatusPort(clock, script)
    tracker = JobStatusTracker(status_port=status_port, stages=_THREE_STAGES, clock=clock, sleep=clock.sleep)
    return tracker, status_port


async def _drain(tracker: JobStatusTracker) -> None:
    """Yield until every poll loop has exited and released its session."""

    for _ in range(1000):
        if not tracker.tracker_active_job_ids():
            return
        await asyncio.sleep(0)
    raise AssertionError("poll loops did not exit")


@pytest.mark.asyncio
async def test_tracking_poller_end_to_end_progress_then_completion() -> None:
    """Track a job through every stage to completion.

    The remote job moves plan -> gather (t=10) -> synthesize (t=40) and
    completes at t=55; polling every 5 seconds completes on the 12th tick.

    Returns:
        None: Assertions validate progress stream and outcome.

    Raises:
        AssertionError: Raised when lifecycle behavior is incorrect.
    """

    clock = _FakeClock()

    def _script(job_id: str, now: float) -> RawStatusPayload:
        if now >= 55:
            return RawStatusPayload(job_id=job_id, status_tag="completed")
        if now >= 40:
            return _processing(job_id, "synthesize")
        if now >= 10:
            return _processing(job_id, "gather")
        return _processing(job_id, "plan")

    tracker, status_port = _build_tracker(clock, _script)
    recorder = _Recorder(clock)

    tracker.tracker_start(
        "job-1",
        poll_interval_seconds=5,
        max_attempts=40,
        max_wall_clock_seconds=200,
        on_progress=recorder.on_progress,
        on_outcome=recorder.on_outcome,
    )
    outcome = await tracker.tracker_wait("job-1")
    await _drain(tracker)

    assert outcome.kind is OutcomeKind.COMPLETED
    assert outcome.attempt_count == 12
    assert outcome.snapshot is not None and outcome.snapshot.percentage == 100
    assert status_port.fetch_times == [5.0 * index for index in range(12)]
    percentages = [snapshot.percentage for _, snapshot in recorder.progress]
    assert percentages == sorted(percentages)
    assert set(percentages) == {0, 33, 66}
    assert [outcome_kind.kind for _, outcome_kind in recorder.outcomes] == [OutcomeKind.COMPLETED]

    session_view = tracker.tracker_session("job-1")
    assert session_view is not None
    assert session_view.state is TrackingState.COMPLETED
    assert session_view.last_snapshot is not None and session_view.last_snapshot.percentage == 100


@pytest.mark.asyncio
async def test_tracking_poller_wall_clock_timeout_on_tick_boundary() -> None:
    """Time out after 10 virtual seconds despite a large attempt budget.

    Returns:
        None: Assertions validate wall-clock enforcement.

    Raises:
        AssertionError: Raised when timeout is late or early.
    """

    clock = _FakeClock()
    tracker, status_port = _build_tracker(clock, lambda job_id, _now: _processing(job_id))

    tracker.tracker_start("job-1", poll_interval_seconds=1, max_attempts=1000, max_wall_clock_seconds=10)
    outcome = await tracker.tracker_wait("job-1")

    assert outcome.kind is OutcomeKind.TIMED_OUT
    assert outcome.attempt_count == 10
    assert len(status_port.fetch_times) == 10
    assert clock.now == 10.0


@pytest.mark.asyncio
async def test_tracking_poller_transient_errors_exhaust_attempts_with_penalty() -> None:
    """Finalize on the fifth transport error with weight 2 and max_attempts 10."""

    clock = _FakeClock()

    def _script(_job_id: str, _now: float) -> RawStatusPayload:
        raise AnalysisTransportError("analysis transport request failed")

    tracker, status_port = _build_tracker(clock, _script)

    tracker.tracker_start("job-1", poll_interval_seconds=1, max_attempts=10, max_wall_clock_seconds=1000)
    outcome = await tracker.tracker_wait("job-1")

    assert outcome.kind is OutcomeKind.TIMED_OUT
    assert outcome.attempt_count == 10
    assert len(status_port.fetch_times) == 5


@pytest.mark.asyncio
async def test_tracking_poller_recovers_after_transient_and_not_modified() -> None:
    """Reset the error streak once a fetch succeeds again.

    Returns:
        None: Assertions validate recovery behavior.

    Raises:
        AssertionError: Raised when recovery is not observed.
    """

    clock = _FakeClock()
    responses = iter(
        [
            AnalysisTransportError("connection reset"),
            AnalysisNotModifiedSignal("Analysis status unchanged since last poll.", status_code=304),
            _processing("job-1", "gather"),
            RawStatusPayload(job_id="job-1", status_tag="done"),
        ]
    )

    def _script(_job_id: str, _now: float) -> RawStatusPayload:
        response = next(responses)
        if isinstance(response, Exception):
            raise response
        return response

    tracker, _status_port = _build_tracker(clock, _script)

    tracker.tracker_start("job-1", poll_interval_seconds=2, max_attempts=10, max_wall_clock_seconds=100)
    outcome = await tracker.tracker_wait("job-1")

    assert outcome.kind is OutcomeKind.COMPLETED
    assert outcome.attempt_count == 5


@pytest.mark.asyncio
async def test_tracking_poller_non_retriable_error_fails_without_retry() -> None:
    clock = _FakeClock()

    def _script(_job_id: str, _now: float) -> RawStatusPayload:
        raise AnalysisJobNotFoundError("Analysis not found.", status_code=404)

    tracker, status_port = _build_tracker(clock, _script)

    tracker.tracker_start("job-1", poll_interval_seconds=1, max_attempts=10, max_wall_clock_seconds=100)
    outcome = await tracker.tracker_wait("job-1")

    assert outcome.kind is OutcomeKind.FAILED
    assert outcome.reason == "AnalysisJobNotFoundError: Analysis not found."
    assert len(status_port.fetch_times) == 1


@pytest.mark.asyncio
async def test_tracking_poller_remote_failure_delivers_reason() -> None:
    clock = _FakeClock()
    tracker, _status_port = _build_tracker(
        clock,
        lambda job_id, _now: RawStatusPayload(job_id=job_id, status_tag="failed", error_message="agent crashed"),
    )

    tracker.tracker_start("job-1", poll_interval_seconds=1, max_attempts=10, max_wall_clock_seconds=100)
    outcome = await tracker.tracker_wait("job-1")

    assert outcome.kind is OutcomeKind.FAILED
    assert outcome.reason == "agent crashed"


@pytest.mark.asyncio
async def test_tracking_poller_retry_after_hint_floors_next_wait() -> None:
    """Wait at least the upstream `Retry-After` before the next poll.

    Returns:
        None: Assertions validate wait selection.

    Raises:
        AssertionError: Raised when the hint is ignored.
    """

    clock = _FakeClock()
    responses = iter(
        [
            AnalysisServerError("busy", status_code=503, retry_after_seconds=7.0),
            RawStatusPayload(job_id="job-1", status_tag="completed"),
        ]
    )

    def _script(_job_id: str, _now: float) -> RawStatusPayload:
        response = next(responses)
        if isinstance(response, Exception):
            raise response
        return response

    tracker, status_port = _build_tracker(clock, _script)

    tracker.tracker_start("job-1", poll_interval_seconds=1, max_attempts=10, max_wall_clock_seconds=100)
    await tracker.tracker_wait("job-1")

    assert clock.sleeps == [7.0]
    assert status_port.fetch_times == [0.0, 7.0]


@pytest.mark.asyncio
async def test_tracking_poller_retry_after_hint_never_outlasts_wall_clock_budget() -> None:
    """Cap an oversized `Retry-After` at the remaining wall-clock budget.

    Returns:
        None: Assertions validate timeout latency.

    Raises:
        AssertionError: Raised when the timeout is detected late.
    """

    clock = _FakeClock()

    def _script(_job_id: str, now: float) -> RawStatusPayload:
        if now == 0.0:
            raise AnalysisServerError("slow down", status_code=429, retry_after_seconds=3600.0)
        return _processing(_job_id)

    tracker, status_port = _build_tracker(clock, _script)

    tracker.tracker_start("job-1", poll_interval_seconds=1, max_attempts=1000, max_wall_clock_seconds=10)
    outcome = await tracker.tracker_wait("job-1")

    assert outcome.kind is OutcomeKind.TIMED_OUT
    assert clock.now == 10.0
    assert clock.sleeps == [10.0]
    assert status_port.fetch_times == [0.0]


@pytest.mark.asyncio
async def test_tracking_poller_stop_during_in_flight_fetch_discards_late_result() -> None:
    """Cancel while a fetch is outstanding and discard its late response.

    The fetch issued at t=10 is held open; stop is requested at t=12 and the
    fetch resolves at t=13 with progress that must never be delivered.

    Returns:
        None: Assertions validate cancellation semantics.

    Raises:
        AssertionError: Raised when a late result leaks through.
    """

    clock = _FakeClock()
    fetch_entered = asyncio.Event()
    release_fetch = asyncio.Event()

    class _BlockingStatusPort:
        def __init__(self) -> None:
            self.fetch_times: list[float] = []

        async def adapter_fetch_status(self, job_id: str) -> RawStatusPayload:
            self.fetch_times.append(clock.now)
            if clock.now >= 10:
                fetch_entered.set()
                await release_fetch.wait()
                return _processing(job_id, "synthesize")
            return _processing(job_id, "plan")

    status_port = _BlockingStatusPort()
    tracker = JobStatusTracker(status_port=status_port, stages=_THREE_STAGES, clock=clock, sleep=clock.sleep)
    recorder = _Recorder(clock)

    tracker.tracker_start(
        "job-1",
        poll_interval_seconds=5,
        max_attempts=40,
        max_wall_clock_seconds=200,
        on_progress=recorder.on_progress,
        on_outcome=recorder.on_outcome,
    )
    await fetch_entered.wait()
    clock.now = 12.0
    assert tracker.tracker_stop("job-1") is True
    assert tracker.tracker_stop("job-1") is False
    clock.now = 13.0
    release_fetch.set()
    await _drain(tracker)

    assert [(at, outcome.kind) for at, outcome in recorder.outcomes] == [(12.0, OutcomeKind.CANCELLED)]
    assert all(at <= 12.0 for at, _ in recorder.progress)
    assert [snapshot.stage_id for _, snapshot in recorder.progress] == ["plan", "plan"]
    assert status_port.fetch_times == [0.0, 5.0, 10.0]
    assert (await tracker.tracker_wait("job-1")).kind is OutcomeKind.CANCELLED
    await tracker.tracker_close()


@pytest.mark.asyncio
async def test_tracking_poller_restart_allowed_while_cancelled_fetch_drains() -> None:
    """Release the job id at stop time even when the fetch is still outstanding.

    Returns:
        None: Assertions validate restart and stale-result isolation.

    Raises:
        AssertionError: Raised when the stale loop blocks or leaks into the new session.
    """

    clock = _FakeClock()
    fetch_entered = asyncio.Event()
    release_fetch = asyncio.Event()

    class _FirstFetchBlocksStatusPort:
        def __init__(self) -> None:
            self.fetch_count = 0

        async def adapter_fetch_status(self, job_id: str) -> RawStatusPayload:
            self.fetch_count += 1
            if self.fetch_count == 1:
                fetch_entered.set()
                await release_fetch.wait()
                return RawStatusPayload(job_id=job_id, status_tag="completed")
            return _processing(job_id, "gather")

    tracker = JobStatusTracker(
        status_port=_FirstFetchBlocksStatusPort(),
        stages=_THREE_STAGES,
        clock=clock,
        sleep=clock.sleep,
    )

    tracker.tracker_start("job-1", poll_interval_seconds=5, max_attempts=40, max_wall_clock_seconds=200)
    await fetch_entered.wait()
    assert tracker.tracker_stop("job-1") is True

    assert tracker.tracker_active_job_ids() == ()
    assert (await tracker.tracker_wait("job-1")).kind is OutcomeKind.CANCELLED

    tracker.tracker_start("job-1", poll_interval_seconds=5, max_attempts=2, max_wall_clock_seconds=200)
    release_fetch.set()
    restarted_outcome = await tracker.tracker_wait("job-1")
    await tracker.tracker_close()

    assert restarted_outcome.kind is OutcomeKind.TIMED_OUT
    session_view = tracker.tracker_session("job-1")
    assert session_view is not None and session_view.state is TrackingState.TIMED_OUT


@pytest.mark.asyncio
async def test_tracking_poller_stop_while_sleeping_cancels_loop() -> None:
    """Stop between ticks without issuing another poll."""

    clock = _FakeClock()
    release_sleep = asyncio.Event()

    async def _blocking_sleep(seconds: float) -> None:
        clock.sleeps.append(seconds)
        await release_sleep.wait()

    status_port = _ScriptedStatusPort(clock, lambda job_id, _now: _processing(job_id))
    tracker = JobStatusTracker(status_port=status_port, stages=_THREE_STAGES, clock=clock, sleep=_blocking_sleep)

    tracker.tracker_start("job-1", poll_interval_seconds=5, max_attempts=10, max_wall_clock_seconds=100)
    for _ in range(10):
        await asyncio.sleep(0)
    assert tracker.tracker_stop("job-1") is True
    await _drain(tracker)

    assert status_port.fetch_times == [0.0]
    session_view = tracker.tracker_session("job-1")
    assert session_view is not None and session_view.state is TrackingState.CANCELLED


@pytest.mark.asyncio
async def test_tracking_poller_rejects_duplicate_start_and_allows_restart() -> None:
    """Reject a second start for an active job id; allow it once finished.

    Returns:
        None: Assertions validate single-session-per-job behavior.

    Raises:
        AssertionError: Raised when duplicate sessions are allowed.
    """

    clock = _FakeClock()
    tracker, _status_port = _build_tracker(clock, lambda job_id, _now: _processing(job_id))

    tracker.tracker_start("job-1", poll_interval_seconds=1, max_attempts=3, max_wall_clock_seconds=100)
    with pytest.raises(TrackingAlreadyActiveError):
        tracker.tracker_start(" job-1 ", poll_interval_seconds=1, max_attempts=3, max_wall_clock_seconds=100)

    assert (await tracker.tracker_wait("job-1")).kind is OutcomeKind.TIMED_OUT
    await _drain(tracker)

    tracker.tracker_start("job-1", poll_interval_seconds=1, max_attempts=1, max_wall_clock_seconds=100)
    assert (await tracker.tracker_wait("job-1")).attempt_count == 1


@pytest.mark.parametrize(
    ("arguments", "message"),
    [
        ({"poll_interval_seconds": 0, "max_attempts": 1, "max_wall_clock_seconds": 1}, "poll_interval_seconds"),
        ({"poll_interval_seconds": 1, "max_attempts": 0, "max_wall_clock_seconds": 1}, "max_attempts"),
        ({"poll_interval_seconds": 1, "max_attempts": 1, "max_wall_clock_seconds": -5}, "max_wall_clock_seconds"),
    ],
)
def test_tracking_poller_rejects_invalid_budget_arguments(arguments: dict, message: str) -> None:
    """Reject non-positive budget arguments synchronously.

    Args:
        arguments: Start keyword arguments.
        message: Expected error fragment.

    Returns:
        None: Assertions validate rejection.

    Raises:
        AssertionError: Raised when invalid values are accepted.
    """

    tracker, _status_port = _build_tracker(_FakeClock(), lambda job_id, _now: _processing(job_id))

    with pytest.raises(TrackingInvalidArgumentError, match=message):
        tracker.tracker_start("job-1", **arguments)
    assert tracker.tracker_active_job_ids() == ()


def test_tracking_poller_rejects_blank_job_id() -> None:
    tracker, _status_port = _build_tracker(_FakeClock(), lambda job_id, _now: _processing(job_id))

    with pytest.raises(ValueError, match="job_id must not be blank"):
        tracker.tracker_start("   ", poll_interval_seconds=1, max_attempts=1, max_wall_clock_seconds=1)


@pytest.mark.asyncio
async def test_tracking_poller_accepts_job_handle_with_earlier_start() -> None:
    """Measure wall-clock budget from the handle's own start time."""

    clock = _FakeClock()
    clock.now = 50.0
    tracker, status_port = _build_tracker(clock, lambda job_id, _now: _processing(job_id))

    tracker.tracker_start(
        JobHandle(job_id="job-1", started_at=45.0),
        poll_interval_seconds=1,
        max_attempts=100,
        max_wall_clock_seconds=10,
    )
    outcome = await tracker.tracker_wait("job-1")

    assert outcome.kind is OutcomeKind.TIMED_OUT
    assert status_port.fetch_times == [50.0, 51.0, 52.0, 53.0, 54.0]


@pytest.mark.asyncio
async def test_tracking_poller_unexpected_loop_error_finalizes_failed() -> None:
    """Finalize Failed when the wait strategy raises inside the loop.

    Returns:
        None: Assertions validate guaranteed finalization.

    Raises:
        AssertionError: Raised when the session is left unfinalized.
    """

    class _BrokenStrategy:
        def strategy_calculate_wait_seconds(self, tick_index: int) -> float:
            raise RuntimeError(f"no wait for tick {tick_index}")

    clock = _FakeClock()
    tracker, _status_port = _build_tracker(clock, lambda job_id, _now: _processing(job_id))

    tracker.tracker_start(
        "job-1",
        poll_interval_seconds=1,
        max_attempts=10,
        max_wall_clock_seconds=100,
        wait_strategy=_BrokenStrategy(),
    )
    outcome = await tracker.tracker_wait("job-1")
    await _drain(tracker)

    assert outcome.kind is OutcomeKind.FAILED
    assert outcome.reason == "RuntimeError: no wait for tick 0"


@pytest.mark.asyncio
async def test_tracking_poller_unknown_session_lookups() -> None:
    tracker, _status_port = _build_tracker(_FakeClock(), lambda job_id, _now: _processing(job_id))

    assert tracker.tracker_stop("missing") is False
    assert tracker.tracker_session("missing") is None
    with pytest.raises(TrackingSessionNotFoundError):
        await tracker.tracker_wait("missing")


@pytest.mark.asyncio
async def test_tracking_poller_close_cancels_every_session() -> None:
    clock = _FakeClock()
    release_sleep = asyncio.Event()

    async def _blocking_sleep(_seconds: float) -> None:
        await release_sleep.wait()

    status_port = _ScriptedStatusPort(clock, lambda job_id, _now: _processing(job_id))
    tracker = JobStatusTracker(status_port=status_port, stages=_THREE_STAGES, clock=clock, sleep=_blocking_sleep)
    tracker.tracker_start("job-1", poll_interval_seconds=1, max_attempts=10, max_wall_clock_seconds=100)
    tracker.tracker_start("job-2", poll_interval_seconds=1, max_attempts=10, max_wall_clock_seconds=100)
    await asyncio.sleep(0)

    await tracker.tracker_close()

    assert tracker.tracker_active_job_ids() == ()
    assert (await tracker.tracker_wait("job-1")).kind is OutcomeKind.CANCELLED
    assert (await tracker.tracker_wait("job-2")).kind is OutcomeKind.CANCELLED
