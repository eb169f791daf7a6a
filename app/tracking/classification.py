"""Transport error classification for tick failures."""

from __future__ import annotations

from app.adapters import (
    AnalysisContractError,
    AnalysisNotModifiedSignal,
    AnalysisRequestRejectedError,
    AnalysisServerError,
)

from .interfaces import ErrorClassification, TransportFailure


def tracking_classify_transport_error(error: Exception) -> TransportFailure:
    """Map one fetch exception to a classified transport failure.

    Args:
        error: Exception raised by the status fetch.

    Returns:
        TransportFailure: Classified failure data.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    return TransportFailure(
        classification=_tracking_classification_for_exception(error),
        error_type=type(error).__name__,
        message=str(error),
        status_code=getattr(error, "status_code", None),
        retry_after_seconds=error.retry_after_seconds if isinstance(error, AnalysisServerError) else None,
    )


def _tracking_classification_for_exception(error: Exception) -> ErrorClassification:
    """Map exception type to deterministic error classification.

    Args:
        error: Caught fetch exception.

    Returns:
        ErrorClassification: Canonical class.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    if isinstance(error, AnalysisNotModifiedSignal):
        return ErrorClassification.NOT_MODIFIED
    if isinstance(error, AnalysisRequestRejectedError):
        return ErrorClassification.NON_RETRIABLE
    if isinstance(error, AnalysisContractError):
        return ErrorClassification.TRANSIENT
    if isinstance(error, (TimeoutError, ConnectionError)):
        return ErrorClassification.TRANSIENT
    if isinstance(error, (LookupError, PermissionError, ValueError)):
        return ErrorClassification.NON_RETRIABLE
    return ErrorClassification.TRANSIENT
