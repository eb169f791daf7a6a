"""Typed interfaces for adapter-layer responsibilities."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class RawStatusPayload:
    """Normalized raw status payload returned by one status fetch.

    Fields mirror what the upstream reports; no interpretation is applied.

    Attributes:
        job_id: Job identifier echoed by upstream (or the requested id).
        status_tag: Free-text upstream status tag.
        stage_id: Optional upstream stage identifier.
        progress_current: Optional completed-step counter.
        progress_total: Optional total-step counter.
        progress_percentage: Optional upstream percentage.
        estimated_remaining_seconds: Optional authoritative remaining time.
        error_message: Optional upstream failure reason.
        raw_body: Decoded response body for diagnostics.
    """

    job_id: str
    status_tag: str
    stage_id: str | None = None
    progress_current: float | None = None
    progress_total: float | None = None
    progress_percentage: float | None = None
    estimated_remaining_seconds: float | None = None
    error_message: str | None = None
    raw_body: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


class AnalysisStatusPort(Protocol):
    """Port definition for fetching one job status snapshot from upstream."""

    async def adapter_fetch_status(self, job_id: str) -> RawStatusPayload:
        """Fetch one raw status payload for a job.

        Must be idempotent and safe to call repeatedly.

        Args:
            job_id: Opaque upstream job identifier.

        Returns:
            RawStatusPayload: Normalized raw status payload.

        Raises:
            AnalysisNotModifiedSignal: Raised when state is unchanged since last poll.
            AnalysisAdapterError: Raised for any other transport failure.
        """


class AnalysisServicePort(AnalysisStatusPort, Protocol):
    """Port definition for the full remote analysis lifecycle."""

    async def adapter_start_analysis(self, query_text: str, options: dict[str, Any] | None = None) -> str:
        """Start one remote analysis and return its job identifier.

        Args:
            query_text: Analysis query text.
            options: Optional upstream request options.

        Returns:
            str: Upstream job identifier.

        Raises:
            AnalysisAdapterError: Raised when upstream rejects the request.
        """

    async def adapter_fetch_results(self, job_id: str) -> dict[str, Any]:
        """Fetch final results for one completed analysis.

        Args:
            job_id: Upstream job identifier.

        Returns:
            dict[str, Any]: Result document from upstream.

        Raises:
            AnalysisAdapterError: Raised when results are unavailable.
        """

    async def adapter_cancel_analysis(self, job_id: str) -> None:
        """Request upstream cancellation of one analysis.

        Args:
            job_id: Upstream job identifier.

        Raises:
            AnalysisAdapterError: Raised when cancellation fails.
        """

    async def adapter_retry_analysis(self, job_id: str) -> str:
        """Re-run one failed analysis upstream.

        Args:
            job_id: Upstream identifier of the failed job.

        Returns:
            str: Identifier of the new upstream job.

        Raises:
            AnalysisAdapterError: Raised when upstream rejects the retry.
        """

    async def adapter_close(self) -> None:
        """Release underlying transport resources."""
