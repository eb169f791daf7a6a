"""Analysis REST API adapter implementation for job lifecycle and status polling."""

from __future__ import annotations

from typing import Any, Final

import httpx

from .analysis_errors import (
    AnalysisContractError,
    AnalysisTimeoutError,
    AnalysisTransportError,
)
from .analysis_status_codes import AnalysisHttpStatus, analysis_status_build_error
from .interfaces import AnalysisServicePort, RawStatusPayload

_MILLISECONDS_PER_SECOND: Final[float] = 1000.0


class AnalysisHttpAdapter(AnalysisServicePort):
    """Adapter implementation for the multi-agent analysis REST API.

    Status polling sends `If-None-Match` with the last seen `ETag` per job so an
    upstream `304` surfaces as `AnalysisNotModifiedSignal`.
    """

    _USER_AGENT: Final[str] = "analysis-job-tracker/1.0 (Python/httpx)"

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        user_id: str = "demo-user-1",
        request_timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize analysis API adapter.

        Args:
            base_url: Base URL of the analysis service.
            user_id: Caller identity sent as `x-user-id` header.
            request_timeout_seconds: HTTP request timeout in seconds.
            transport: Optional httpx transport override.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when required config values are invalid.
        """

        normalized_base_url = base_url.strip()
        normalized_user_id = user_id.strip()
        if not normalized_base_url:
            raise ValueError("base_url must not be blank")
        if not normalized_user_id:
            raise ValueError("user_id must not be blank")
        if request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be > 0")

        self._base_url = normalized_base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=request_timeout_seconds,
            transport=transport,
            headers={
                "User-Agent": self._USER_AGENT,
                "Content-Type": "application/json",
                "x-user-id": normalized_user_id,
            },
        )
        self._etag_by_job_id: dict[str, str] = {}

    def adapter_source_name(self) -> str:
        """Return stable adapter source label."""

        return "analysis_rest_api"

    async def adapter_close(self) -> None:
        """Close the underlying HTTP client."""

        await self._client.aclose()

    async def adapter_start_analysis(self, query_text: str, options: dict[str, Any] | None = None) -> str:
        """Start one remote analysis and return its job identifier.

        Args:
            query_text: Analysis query text.
            options: Optional upstream request options merged into the body.

        Returns:
            str: Upstream `queryId`.

        Raises:
            ValueError: Raised when query text is blank.
            AnalysisAdapterError: Raised for transport failures or rejected requests.
        """

        normalized_query_text = query_text.strip()
        if not normalized_query_text:
            raise ValueError("query_text must not be blank")

        request_body: dict[str, Any] = dict(options or {})
        request_body["query"] = normalized_query_text
        response = await self._adapter_send("POST", "/api/analysis", json=request_body)
        data = self._adapter_unwrap_envelope(self._adapter_decode_json(response))
        job_id = str(data.get("queryId") or data.get("id") or "").strip()
        if not job_id:
            raise AnalysisContractError("analysis start response missing queryId")
        return job_id

    async def adapter_fetch_status(self, job_id: str) -> RawStatusPayload:
        """Fetch one raw status payload for a job.

        Args:
            job_id: Upstream job identifier.

        Returns:
            RawStatusPayload: Normalized raw status payload.

        Raises:
            AnalysisNotModifiedSignal: Raised on upstream `304`.
            AnalysisAdapterError: Raised for any other transport failure.
        """

        normalized_job_id = self._adapter_require_job_id(job_id)
        headers: dict[str, str] = {}
        cached_etag = self._etag_by_job_id.get(normalized_job_id)
        if cached_etag:
            headers["If-None-Match"] = cached_etag

        response = await self._adapter_send("GET", f"/api/analysis/{normalized_job_id}/status", headers=headers)
        response_etag = response.headers.get("ETag")
        if response_etag:
            self._etag_by_job_id[normalized_job_id] = response_etag

        body = self._adapter_decode_json(response)
        return adapter_parse_status_body(job_id=normalized_job_id, body=body)

    async def adapter_fetch_results(self, job_id: str) -> dict[str, Any]:
        """Fetch final results for one completed analysis.

        Args:
            job_id: Upstream job identifier.

        Returns:
            dict[str, Any]: Upstream result document.

        Raises:
            AnalysisAdapterError: Raised for transport failures or missing results.
        """

        normalized_job_id = self._adapter_require_job_id(job_id)
        response = await self._adapter_send("GET", f"/api/analysis/{normalized_job_id}/results")
        return self._adapter_unwrap_envelope(self._adapter_decode_json(response))

    async def adapter_cancel_analysis(self, job_id: str) -> None:
        """Request upstream cancellation of one analysis.

        Args:
            job_id: Upstream job identifier.

        Raises:
            AnalysisAdapterError: Raised for transport failures or rejected cancellation.
        """

        normalized_job_id = self._adapter_require_job_id(job_id)
        await self._adapter_send("DELETE", f"/api/analysis/{normalized_job_id}")
        self._etag_by_job_id.pop(normalized_job_id, None)

    async def adapter_retry_analysis(self, job_id: str) -> str:
        """Re-run one failed analysis and return the new job identifier.

        Args:
            job_id: Upstream identifier of the failed job.

        Returns:
            str: Upstream `newQueryId`.

        Raises:
            ValueError: Raised when job id is blank.
            AnalysisAdapterError: Raised for transport failures or rejected retries.
        """

        normalized_job_id = self._adapter_require_job_id(job_id)
        response = await self._adapter_send("POST", f"/api/analysis/{normalized_job_id}/retry")
        data = self._adapter_unwrap_envelope(self._adapter_decode_json(response))
        new_job_id = str(data.get("newQueryId") or data.get("queryId") or "").strip()
        if not new_job_id:
            raise AnalysisContractError("analysis retry response missing newQueryId")
        self._etag_by_job_id.pop(normalized_job_id, None)
        return new_job_id

    async def _adapter_send(
        self,
        method: str,
        path: str,
        headers: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Execute one HTTP request and map failures to typed adapter errors.

        Args:
            method: HTTP method.
            path: Request path relative to base URL.
            headers: Optional per-request headers.
            json: Optional JSON body.

        Returns:
            httpx.Response: Successful (`2xx`) response.

        Raises:
            AnalysisTimeoutError: Raised when the request times out.
            AnalysisTransportError: Raised for network failures.
            AnalysisAdapterError: Raised for non-success HTTP status codes.
        """

        try:
            response = await self._client.request(method, path, headers=headers, json=json)
        except httpx.TimeoutException as error:
            raise AnalysisTimeoutError("analysis transport request timed out") from error
        except httpx.TransportError as error:
            raise AnalysisTransportError("analysis transport request failed") from error

        if response.status_code == AnalysisHttpStatus.NOT_MODIFIED.value or response.status_code >= 400:
            raise analysis_status_build_error(
                status_code=response.status_code,
                upstream_message=self._adapter_extract_error_message(response),
                retry_after_seconds=self._adapter_parse_retry_after(response),
            )
        return response

    def _adapter_decode_json(self, response: httpx.Response) -> dict[str, Any]:
        """Decode a JSON object body or raise a contract error."""

        try:
            body = response.json()
        except ValueError as error:
            raise AnalysisContractError("analysis response body is not valid JSON") from error
        if not isinstance(body, dict):
            raise AnalysisContractError("analysis response body must be a JSON object")
        return body

    def _adapter_unwrap_envelope(self, body: dict[str, Any]) -> dict[str, Any]:
        """Return the `data` member of a `{success, message, data}` envelope."""

        if body.get("success") is False:
            raise AnalysisContractError(str(body.get("message") or "analysis request reported success=false"))
        data = body.get("data", body)
        if not isinstance(data, dict):
            raise AnalysisContractError("analysis response data must be a JSON object")
        return data

    def _adapter_extract_error_message(self, response: httpx.Response) -> str | None:
        """Best-effort extraction of an upstream error message."""

        try:
            body = response.json()
        except ValueError:
            return None
        if not isinstance(body, dict):
            return None
        message = body.get("message") or body.get("error")
        if isinstance(message, str) and message.strip():
            return message.strip()
        return None

    def _adapter_parse_retry_after(self, response: httpx.Response) -> float | None:
        """Parse a numeric `Retry-After` header in seconds."""

        retry_after = response.headers.get("Retry-After")
        if retry_after is None:
            return None
        try:
            return max(0.0, float(retry_after))
        except ValueError:
            return None

    def _adapter_require_job_id(self, job_id: str) -> str:
        normalized_job_id = job_id.strip()
        if not normalized_job_id:
            raise ValueError("job_id must not be blank")
        return normalized_job_id


def adapter_parse_status_body(job_id: str, body: dict[str, Any]) -> RawStatusPayload:
    """Normalize one status response body into a raw status payload.

    Both progress shapes emitted by the analysis service are understood:
    workflow progress (`currentStep`, `progress.{current,total,percentage}`,
    `estimatedTimeRemaining` in milliseconds) and runtime progress
    (`runtime`, `estimatedRemaining` in seconds).

    Args:
        job_id: Requested job identifier.
        body: Decoded response body (enveloped or bare).

    Returns:
        RawStatusPayload: Normalized payload without interpretation.

    Raises:
        AnalysisContractError: Raised when the status tag is missing.
    """

    if body.get("success") is False:
        raise AnalysisContractError(str(body.get("message") or "status response reported success=false"))
    data = body.get("data", body)
    if not isinstance(data, dict):
        raise AnalysisContractError("status response data must be a JSON object")

    status_tag = data.get("status")
    if not isinstance(status_tag, str) or not status_tag.strip():
        raise AnalysisContractError("status response missing status tag")

    progress = data.get("progress")
    if not isinstance(progress, dict):
        progress = {}
    counters = progress.get("progress")
    if not isinstance(counters, dict):
        counters = {}

    stage_id = _adapter_optional_text(progress.get("currentStep") or data.get("currentStep") or data.get("stage"))

    estimated_remaining_seconds = _adapter_optional_number(progress.get("estimatedRemaining"))
    if estimated_remaining_seconds is None:
        remaining_milliseconds = _adapter_optional_number(progress.get("estimatedTimeRemaining"))
        if remaining_milliseconds is not None:
            estimated_remaining_seconds = remaining_milliseconds / _MILLISECONDS_PER_SECOND

    error_message = data.get("error")
    metadata = data.get("metadata")
    if not error_message and isinstance(metadata, dict):
        error_message = metadata.get("errorMessage")

    return RawStatusPayload(
        job_id=str(data.get("queryId") or job_id),
        status_tag=status_tag.strip(),
        stage_id=stage_id,
        progress_current=_adapter_optional_number(counters.get("current")),
        progress_total=_adapter_optional_number(counters.get("total")),
        progress_percentage=_adapter_optional_number(counters.get("percentage", progress.get("percentage"))),
        estimated_remaining_seconds=estimated_remaining_seconds,
        error_message=_adapter_optional_text(error_message),
        raw_body=body,
    )


def _adapter_optional_text(value: object | None) -> str | None:
    if not isinstance(value, str):
        return None
    normalized_value = value.strip()
    return normalized_value or None


def _adapter_optional_number(value: object | None) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


__all__ = ["AnalysisHttpAdapter", "adapter_parse_status_body"]
