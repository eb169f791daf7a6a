"""Tests for tracking anomaly events."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from app.domain import AnomalyKind, TrackingAnomaly


def test_domain_anomaly_payload_carries_kind_and_details() -> None:
    observed_at = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    anomaly = TrackingAnomaly(
        kind=AnomalyKind.UNKNOWN_STAGE_ID,
        job_id="job-1",
        details={"stage_id": "summoning_oracles", "fallback_ordinal": 2},
        observed_at_utc=observed_at,
    )

    assert anomaly.anomaly_to_payload() == {
        "event": "unknown_stage_id",
        "job_id": "job-1",
        "at_utc": "2026-03-01T12:00:00+00:00",
        "details": {"stage_id": "summoning_oracles", "fallback_ordinal": 2},
    }


def test_domain_anomaly_details_are_read_only_copies() -> None:
    source_details = {"status_tag": "warming_up"}
    anomaly = TrackingAnomaly(kind=AnomalyKind.UNKNOWN_STATUS_TAG, job_id="job-1", details=source_details)
    source_details["status_tag"] = "mutated"

    assert anomaly.details["status_tag"] == "warming_up"
    with pytest.raises(TypeError):
        anomaly.details["status_tag"] = "other"  # type: ignore[index]


def test_domain_anomaly_callback_failed_records_error_type() -> None:
    anomaly = TrackingAnomaly.callback_failed("job-7", "on_progress", RuntimeError("listener crashed"))

    assert anomaly.kind is AnomalyKind.CALLBACK_FAILED
    assert anomaly.observed_at_utc.tzinfo is timezone.utc
    assert dict(anomaly.details) == {
        "callback": "on_progress",
        "error_type": "RuntimeError",
        "error_message": "listener crashed",
    }
