"""Tests for tracking service wiring, wait-strategy selection and history writes."""

from __future__ import annotations

import asyncio

import pytest

from app.adapters import RawStatusPayload
from app.domain import OutcomeKind
from app.tracking import (
    ExponentialJitterStrategy,
    FixedIntervalStrategy,
    JobStatusTracker,
    TrackingAlreadyActiveError,
    TrackingService,
    TrackingServiceConfig,
)


class _CompletingAdapterStub:
    """Adapter stub completing every job on the second poll."""

    def __init__(self) -> None:
        self.fetch_count = 0
        self.closed = False
        self.started_queries: list[str] = []
        self.retried_job_ids: list[str] = []

    async def adapter_fetch_status(self, job_id: str) -> RawStatusPayload:
        self.fetch_count += 1
        if self.fetch_count >= 2:
            return RawStatusPayload(job_id=job_id, status_tag="completed")
        return RawStatusPayload(job_id=job_id, status_tag="mystery", stage_id="planning_search")

    async def adapter_start_analysis(self, query_text: str, options=None) -> str:
        _ = options
        self.started_queries.append(query_text)
        return "job-started"

    async def adapter_fetch_results(self, job_id: str) -> dict:
        return {"queryId": job_id, "summary": "done"}

    async def adapter_cancel_analysis(self, job_id: str) -> None:
        return None

    async def adapter_retry_analysis(self, job_id: str) -> str:
        self.retried_job_ids.append(job_id)
        return f"{job_id}-retry"

    async def adapter_close(self) -> None:
        self.closed = True


class _RecordingRepository:
    """Repository stub capturing write requests, optionally failing."""

    def __init__(self, error: Exception | None = None) -> None:
        self.recorded_requests: list = []
        self._error = error

    def db_tracking_run_record_outcome(self, request):
        """Capture one write request.

        Args:
            request: Tracking run write request.

        Returns:
            None: Stub does not return a persisted row.

        Raises:
            Exception: Configured persistence error, when set.
        """

        if self._error is not None:
            raise self._error
        self.recorded_requests.append(request)

    def db_tracking_run_get_latest_by_job_id(self, job_id: str):
        return None

    def db_tracking_run_list(self, limit: int, offset: int, sort_by: str = "created_at_utc", sort_dir: str = "desc"):
        return []


async def _no_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)


def _build_service(
    adapter: _CompletingAdapterStub,
    repository: _RecordingRepository | None = None,
    config: TrackingServiceConfig | None = None,
) -> TrackingService:
    return TrackingService(
        tracker=JobStatusTracker(status_port=adapter, sleep=_no_sleep),
        analysis_adapter=adapter,
        config=config or TrackingServiceConfig(poll_interval_seconds=1.0),
        run_repository=repository,
        random_unit_interval_provider=lambda: 0.5,
    )


@pytest.mark.asyncio
async def test_tracking_service_records_completed_outcome_with_anomalies() -> None:
    """Persist one history row with final progress and anomaly timeline.

    Returns:
        None: Assertions validate history write payload.

    Raises:
        AssertionError: Raised when the recorded row is incorrect.
    """

    adapter = _CompletingAdapterStub()
    repository = _RecordingRepository()
    service = _build_service(adapter, repository)

    job_handle = service.service_start_tracking(" job-1 ")
    outcome = await service.service_wait(job_handle.job_id)
    await service.service_close()

    assert outcome.kind is OutcomeKind.COMPLETED
    assert adapter.closed
    assert len(repository.recorded_requests) == 1
    request = repository.recorded_requests[0]
    assert request.job_id == "job-1"
    assert request.outcome == "completed"
    assert request.attempt_count == 2
    assert request.final_percentage == 100
    assert request.final_stage_ordinal == 6
    assert [event["event"] for event in request.diagnostics] == ["unknown_status_tag"]


@pytest.mark.asyncio
async def test_tracking_service_start_analysis_then_fetch_results() -> None:
    adapter = _CompletingAdapterStub()
    service = _build_service(adapter)

    job_handle = await service.service_start_analysis("market trends")
    outcome = await service.service_wait(job_handle.job_id)
    results = await service.service_fetch_results(job_handle.job_id)
    await service.service_close()

    assert adapter.started_queries == ["market trends"]
    assert job_handle.job_id == "job-started"
    assert outcome.kind is OutcomeKind.COMPLETED
    assert results == {"queryId": "job-started", "summary": "done"}


@pytest.mark.asyncio
async def test_tracking_service_history_write_failure_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    """Keep tracking outcome intact when history persistence fails.

    Args:
        caplog: Pytest log capture fixture.

    Returns:
        None: Assertions validate failure isolation.

    Raises:
        AssertionError: Raised when persistence errors escape.
    """

    adapter = _CompletingAdapterStub()
    service = _build_service(adapter, _RecordingRepository(error=RuntimeError("failed to record tracking run outcome")))

    service.service_start_tracking("job-1")
    outcome = await service.service_wait("job-1")
    await service.service_close()
    await asyncio.sleep(0)

    assert outcome.kind is OutcomeKind.COMPLETED
    assert "Failed to record tracking run history" in caplog.text


def test_tracking_service_builds_wait_strategy_from_backoff_mode() -> None:
    """Select fixed or exponential wait strategy from configuration.

    Returns:
        None: Assertions validate strategy selection.

    Raises:
        AssertionError: Raised when the wrong strategy is built.
    """

    adapter = _CompletingAdapterStub()
    fixed_service = _build_service(adapter, config=TrackingServiceConfig(poll_interval_seconds=3.0))
    exponential_service = _build_service(
        adapter,
        config=TrackingServiceConfig(poll_interval_seconds=3.0, backoff_mode="exponential", backoff_max_seconds=30.0),
    )

    fixed_strategy = fixed_service._service_build_wait_strategy()  # pylint: disable=protected-access
    exponential_strategy = exponential_service._service_build_wait_strategy()  # pylint: disable=protected-access

    assert isinstance(fixed_strategy, FixedIntervalStrategy)
    assert isinstance(exponential_strategy, ExponentialJitterStrategy)
    assert exponential_strategy.strategy_calculate_wait_seconds(2) == 12.0


def test_tracking_service_rejects_invalid_config() -> None:
    adapter = _CompletingAdapterStub()

    with pytest.raises(ValueError, match="backoff_mode"):
        _build_service(adapter, config=TrackingServiceConfig(backoff_mode="linear"))
    with pytest.raises(ValueError, match="max_attempts"):
        _build_service(adapter, config=TrackingServiceConfig(max_attempts=0))


@pytest.mark.asyncio
async def test_tracking_service_retry_tracks_new_job_after_original_finishes() -> None:
    """Retry a finished job upstream and track the returned job id.

    Returns:
        None: Assertions validate retry flow and the active-session guard.

    Raises:
        AssertionError: Raised when retry tracks the wrong job or skips the guard.
    """

    adapter = _CompletingAdapterStub()
    repository = _RecordingRepository()
    service = _build_service(adapter, repository)

    service.service_start_tracking("job-1")
    with pytest.raises(TrackingAlreadyActiveError):
        await service.service_retry_analysis("job-1")
    await service.service_wait("job-1")

    retried_handle = await service.service_retry_analysis(" job-1 ")
    retried_outcome = await service.service_wait(retried_handle.job_id)
    await service.service_close()

    assert adapter.retried_job_ids == ["job-1"]
    assert retried_handle.job_id == "job-1-retry"
    assert retried_outcome.kind is OutcomeKind.COMPLETED
    assert sorted(request.job_id for request in repository.recorded_requests) == ["job-1", "job-1-retry"]
