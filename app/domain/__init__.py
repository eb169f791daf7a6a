"""Domain models used across application layer boundaries."""

from .models import HealthStatus, JobHandle, Outcome, OutcomeKind, PipelineStage, ProgressSnapshot
from .stages import DEFAULT_ANALYSIS_STAGES, domain_build_stage_sequence, domain_validate_stage_sequence
from .timeline import AnomalyKind, TrackingAnomaly

__all__ = [
    "AnomalyKind",
    "DEFAULT_ANALYSIS_STAGES",
    "HealthStatus",
    "JobHandle",
    "Outcome",
    "OutcomeKind",
    "PipelineStage",
    "ProgressSnapshot",
    "TrackingAnomaly",
    "domain_build_stage_sequence",
    "domain_validate_stage_sequence",
]
