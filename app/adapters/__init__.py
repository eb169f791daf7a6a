"""Adapter layer package for remote analysis service boundaries."""

from .analysis_api import AnalysisHttpAdapter, adapter_parse_status_body
from .analysis_errors import (
	AnalysisAdapterError,
	AnalysisContractError,
	AnalysisJobNotFoundError,
	AnalysisNotModifiedSignal,
	AnalysisPermissionError,
	AnalysisRequestRejectedError,
	AnalysisServerError,
	AnalysisTimeoutError,
	AnalysisTransportError,
)
from .interfaces import AnalysisServicePort, AnalysisStatusPort, RawStatusPayload

__all__ = [
	"AnalysisAdapterError",
	"AnalysisContractError",
	"AnalysisHttpAdapter",
	"AnalysisJobNotFoundError",
	"AnalysisNotModifiedSignal",
	"AnalysisPermissionError",
	"AnalysisRequestRejectedError",
	"AnalysisServerError",
	"AnalysisServicePort",
	"AnalysisStatusPort",
	"AnalysisTimeoutError",
	"AnalysisTransportError",
	"RawStatusPayload",
	"adapter_parse_status_body",
]
