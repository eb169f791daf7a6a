"""Known analysis pipeline stages and stage-sequence validation."""

from __future__ import annotations

from typing import Final, Sequence

from .models import PipelineStage

DEFAULT_ANALYSIS_STAGES: Final[tuple[PipelineStage, ...]] = (
    PipelineStage(stage_id="planning_search", ordinal=0, estimated_duration_seconds=30.0),
    PipelineStage(stage_id="gathering_data", ordinal=1, estimated_duration_seconds=30.0),
    PipelineStage(stage_id="processing_data", ordinal=2, estimated_duration_seconds=30.0),
    PipelineStage(stage_id="analyzing_trends", ordinal=3, estimated_duration_seconds=30.0),
    PipelineStage(stage_id="generating_report", ordinal=4, estimated_duration_seconds=30.0),
    PipelineStage(stage_id="creating_visualizations", ordinal=5, estimated_duration_seconds=30.0),
)


def domain_validate_stage_sequence(stages: Sequence[PipelineStage]) -> tuple[PipelineStage, ...]:
    """Validate stage ordering invariants and return an immutable copy.

    Args:
        stages: Ordered pipeline stages.

    Returns:
        tuple[PipelineStage, ...]: Validated stage sequence.

    Raises:
        ValueError: Raised when the list is empty, ordinals are not contiguous
            from zero, ids repeat, or durations are negative.
    """

    validated_stages = tuple(stages)
    if not validated_stages:
        raise ValueError("stages must not be empty")

    seen_stage_ids: set[str] = set()
    for expected_ordinal, stage in enumerate(validated_stages):
        normalized_stage_id = stage.stage_id.strip().lower()
        if not normalized_stage_id:
            raise ValueError("stage_id must not be blank")
        if normalized_stage_id in seen_stage_ids:
            raise ValueError(f"duplicate stage_id={stage.stage_id}")
        if stage.ordinal != expected_ordinal:
            raise ValueError(f"stage ordinal must be {expected_ordinal} for stage_id={stage.stage_id}")
        if stage.estimated_duration_seconds < 0:
            raise ValueError(f"estimated_duration_seconds must be >= 0 for stage_id={stage.stage_id}")
        seen_stage_ids.add(normalized_stage_id)

    return validated_stages


def domain_build_stage_sequence(stage_ids: Sequence[str], estimated_duration_seconds: float = 0.0) -> tuple[PipelineStage, ...]:
    """Build a validated stage sequence from ordered stage ids."""

    return domain_validate_stage_sequence(
        [
            PipelineStage(
                stage_id=stage_id,
                ordinal=ordinal,
                estimated_duration_seconds=estimated_duration_seconds,
            )
            for ordinal, stage_id in enumerate(stage_ids)
        ]
    )
