"""Canonical HTTP status semantics for analysis API adapter routing."""

from __future__ import annotations

from enum import IntEnum
from typing import Final

from .analysis_errors import (
    AnalysisAdapterError,
    AnalysisJobNotFoundError,
    AnalysisNotModifiedSignal,
    AnalysisPermissionError,
    AnalysisRequestRejectedError,
    AnalysisServerError,
)


class AnalysisHttpStatus(IntEnum):
    """HTTP status codes with explicit tracking semantics."""

    NOT_MODIFIED = 304
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    REQUEST_TIMEOUT = 408
    GONE = 410
    UNPROCESSABLE_ENTITY = 422
    TOO_EARLY = 425
    TOO_MANY_REQUESTS = 429
    INTERNAL_SERVER_ERROR = 500
    BAD_GATEWAY = 502
    SERVICE_UNAVAILABLE = 503
    GATEWAY_TIMEOUT = 504


ANALYSIS_HTTP_DEFAULT_MESSAGES: Final[dict[int, str]] = {
    AnalysisHttpStatus.NOT_MODIFIED.value: "Analysis status unchanged since last poll.",
    AnalysisHttpStatus.BAD_REQUEST.value: "Analysis request is invalid.",
    AnalysisHttpStatus.UNAUTHORIZED.value: "Caller is not authenticated for this analysis.",
    AnalysisHttpStatus.FORBIDDEN.value: "Caller is not permitted to read this analysis.",
    AnalysisHttpStatus.NOT_FOUND.value: "Analysis not found.",
    AnalysisHttpStatus.REQUEST_TIMEOUT.value: "Upstream request timed out. Please try again shortly.",
    AnalysisHttpStatus.GONE.value: "Analysis is no longer available.",
    AnalysisHttpStatus.UNPROCESSABLE_ENTITY.value: "Analysis request failed validation.",
    AnalysisHttpStatus.TOO_EARLY.value: "Upstream is not ready to serve this request. Please try again shortly.",
    AnalysisHttpStatus.TOO_MANY_REQUESTS.value: "Too many requests. Please try again shortly.",
    AnalysisHttpStatus.INTERNAL_SERVER_ERROR.value: "Upstream server error. Please try again shortly.",
    AnalysisHttpStatus.BAD_GATEWAY.value: "Upstream gateway error. Please try again shortly.",
    AnalysisHttpStatus.SERVICE_UNAVAILABLE.value: "Upstream service unavailable. Please try again shortly.",
    AnalysisHttpStatus.GATEWAY_TIMEOUT.value: "Upstream gateway timed out. Please try again shortly.",
}

ANALYSIS_RETRYABLE_STATUS_CODES: Final[frozenset[int]] = frozenset(
    {
        AnalysisHttpStatus.REQUEST_TIMEOUT.value,
        AnalysisHttpStatus.TOO_EARLY.value,
        AnalysisHttpStatus.TOO_MANY_REQUESTS.value,
    }
)

ANALYSIS_NOT_FOUND_STATUS_CODES: Final[frozenset[int]] = frozenset(
    {
        AnalysisHttpStatus.NOT_FOUND.value,
        AnalysisHttpStatus.GONE.value,
    }
)

ANALYSIS_PERMISSION_STATUS_CODES: Final[frozenset[int]] = frozenset(
    {
        AnalysisHttpStatus.UNAUTHORIZED.value,
        AnalysisHttpStatus.FORBIDDEN.value,
    }
)


def analysis_status_default_message(status_code: int, fallback_message: str) -> str:
    """Return canonical default message for an HTTP status code.

    Args:
        status_code: Upstream HTTP status code.
        fallback_message: Fallback message when code is unknown.

    Returns:
        str: Canonical message for known code, else provided fallback message.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    return ANALYSIS_HTTP_DEFAULT_MESSAGES.get(status_code, fallback_message)


def analysis_status_is_retryable(status_code: int) -> bool:
    """Return whether an HTTP status code is a transient, retryable condition."""

    return status_code >= 500 or status_code in ANALYSIS_RETRYABLE_STATUS_CODES


def analysis_status_build_error(
    status_code: int,
    upstream_message: str | None = None,
    retry_after_seconds: float | None = None,
) -> AnalysisAdapterError:
    """Map one non-success HTTP status code to a typed adapter exception.

    Args:
        status_code: Upstream HTTP status code (`304` or `>= 400`).
        upstream_message: Optional message extracted from the response body.
        retry_after_seconds: Optional `Retry-After` hint for retryable statuses.

    Returns:
        AnalysisAdapterError: Typed exception instance ready to raise.

    Raises:
        ValueError: Raised when status code denotes success.
    """

    if 200 <= status_code < 300:
        raise ValueError(f"status_code={status_code} is not an error status")

    message = upstream_message or analysis_status_default_message(
        status_code,
        fallback_message=f"unexpected upstream HTTP {status_code}",
    )
    if status_code == AnalysisHttpStatus.NOT_MODIFIED.value:
        return AnalysisNotModifiedSignal(message, status_code=status_code)
    if status_code in ANALYSIS_NOT_FOUND_STATUS_CODES:
        return AnalysisJobNotFoundError(message, status_code=status_code)
    if status_code in ANALYSIS_PERMISSION_STATUS_CODES:
        return AnalysisPermissionError(message, status_code=status_code)
    if analysis_status_is_retryable(status_code):
        return AnalysisServerError(message, status_code=status_code, retry_after_seconds=retry_after_seconds)
    return AnalysisRequestRejectedError(message, status_code=status_code)
