"""Project-native typed exceptions for analysis API adapter failures."""

from __future__ import annotations


class AnalysisAdapterError(Exception):
    """Base exception for adapter-level analysis API failures.

    Attributes:
        status_code: Optional upstream HTTP status code.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AnalysisNotModifiedSignal(AnalysisAdapterError):
    """Upstream reported that job state is unchanged since the last poll (`304`)."""


class AnalysisTransportError(AnalysisAdapterError, ConnectionError):
    """Transport-level connectivity failure during analysis API communication."""


class AnalysisTimeoutError(AnalysisAdapterError, TimeoutError):
    """Transport timeout while waiting for an analysis API response."""


class AnalysisServerError(AnalysisTransportError):
    """Retryable upstream server-side failure (`5xx`, `408`, `425`, `429`)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retry_after_seconds: float | None = None,
    ):
        super().__init__(message=message, status_code=status_code)
        self.retry_after_seconds = retry_after_seconds


class AnalysisContractError(AnalysisAdapterError, ValueError):
    """Upstream response body violated the expected envelope contract."""


class AnalysisRequestRejectedError(AnalysisAdapterError, ValueError):
    """Non-retryable request rejection (`400`, `422` and other unclassified `4xx`)."""


class AnalysisJobNotFoundError(AnalysisRequestRejectedError, LookupError):
    """Job id is unknown to the upstream service (`404`, `410`)."""


class AnalysisPermissionError(AnalysisRequestRejectedError, PermissionError):
    """Caller is not authorized to read the job (`401`, `403`)."""
