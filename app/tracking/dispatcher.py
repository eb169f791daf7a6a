"""Outcome dispatcher: per-tick state transitions and exactly-once terminal delivery."""

from __future__ import annotations

import logging
from typing import Final

from app.domain import Outcome, OutcomeKind, ProgressSnapshot, TrackingAnomaly

from .interfaces import (
    ErrorClassification,
    OutcomeCallback,
    ProgressCallback,
    StatusClass,
    TickResult,
    TrackingSession,
    TrackingState,
)

logger = logging.getLogger(__name__)

_STATE_BY_OUTCOME_KIND: Final[dict[OutcomeKind, TrackingState]] = {
    OutcomeKind.COMPLETED: TrackingState.COMPLETED,
    OutcomeKind.FAILED: TrackingState.FAILED,
    OutcomeKind.TIMED_OUT: TrackingState.TIMED_OUT,
    OutcomeKind.CANCELLED: TrackingState.CANCELLED,
}


class OutcomeDispatcher:
    """State machine owning `finalized` for one tracking session.

    Tick results are evaluated in fixed priority order: duplicate guard,
    cancellation, remote completion, remote failure, budget exhaustion,
    transport errors, then ordinary progress.
    """

    def __init__(
        self,
        on_progress: ProgressCallback | None = None,
        on_outcome: OutcomeCallback | None = None,
    ):
        self._on_progress = on_progress
        self._on_outcome = on_outcome

    def dispatcher_begin(self, session: TrackingSession) -> None:
        """Move a fresh session from `idle` to `polling`.

        Raises:
            ValueError: Raised when the session already left `idle`.
        """

        if session.state is not TrackingState.IDLE:
            raise ValueError(f"session for job_id={session.job_id} is not idle")
        session.state = TrackingState.POLLING

    def dispatcher_request_cancel(self, session: TrackingSession) -> bool:
        """Record a cancellation request and finalize as `Cancelled`.

        Returns:
            bool: True when this call delivered the cancelled outcome.
        """

        if session.finalized:
            return False
        session.cancel_requested = True
        return self._dispatcher_finalize(session, Outcome.cancelled(attempt_count=session.attempt_count))

    def dispatcher_fail(self, session: TrackingSession, reason: str) -> bool:
        """Finalize as `Failed` outside the tick path (for example an aborted loop).

        Returns:
            bool: True when this call delivered the failed outcome.
        """

        return self._dispatcher_finalize(session, Outcome.failed(reason=reason, attempt_count=session.attempt_count))

    def dispatcher_enforce_budget(self, session: TrackingSession, elapsed_seconds: float) -> bool:
        """Finalize as `TimedOut` when the budget is exhausted at a tick boundary.

        Args:
            session: Tracked session.
            elapsed_seconds: Seconds since tracking started.

        Returns:
            bool: True when the session is finalized after the check.
        """

        if session.finalized:
            return True
        if session.cancel_requested:
            self._dispatcher_finalize(session, Outcome.cancelled(attempt_count=session.attempt_count))
            return True
        if self._dispatcher_budget_exhausted(session, elapsed_seconds):
            self._dispatcher_finalize(session, Outcome.timed_out(attempt_count=session.attempt_count))
            return True
        return False

    def dispatcher_handle_tick(self, session: TrackingSession, tick_result: TickResult, elapsed_seconds: float) -> None:
        """Apply one tick result to the session.

        `attempt_count` is expected to already include the tick's own +1.

        Args:
            session: Tracked session.
            tick_result: Interpretation or classified failure of the tick.
            elapsed_seconds: Seconds since tracking started.
        """

        if session.finalized:
            logger.debug("Discarding late tick result for finalized job %s", session.job_id)
            return

        if session.cancel_requested:
            self._dispatcher_finalize(session, Outcome.cancelled(attempt_count=session.attempt_count))
            return

        interpreted = tick_result.interpreted
        if interpreted is not None:
            session.anomalies.extend(interpreted.anomalies)
            if interpreted.status_class is StatusClass.COMPLETED:
                session.last_snapshot = interpreted.snapshot
                session.consecutive_error_count = 0
                self._dispatcher_finalize(
                    session,
                    Outcome.completed(snapshot=interpreted.snapshot, attempt_count=session.attempt_count),
                )
                return
            if interpreted.status_class is StatusClass.FAILED:
                self._dispatcher_finalize(
                    session,
                    Outcome.failed(
                        reason=interpreted.reason or "remote analysis failed",
                        attempt_count=session.attempt_count,
                    ),
                )
                return

        failure = tick_result.failure
        if failure is not None and failure.classification is ErrorClassification.TRANSIENT:
            session.attempt_count += max(0, session.config.error_penalty_weight - 1)

        if self._dispatcher_budget_exhausted(session, elapsed_seconds):
            self._dispatcher_finalize(session, Outcome.timed_out(attempt_count=session.attempt_count))
            return

        if failure is not None:
            if failure.classification is ErrorClassification.NOT_MODIFIED:
                session.consecutive_error_count = 0
                return
            if failure.classification is ErrorClassification.NON_RETRIABLE:
                self._dispatcher_finalize(
                    session,
                    Outcome.failed(
                        reason=f"{failure.error_type}: {failure.message}",
                        attempt_count=session.attempt_count,
                    ),
                )
                return
            session.consecutive_error_count += session.config.error_penalty_weight
            logger.info(
                "Transient status fetch failure for job %s (%s: %s); attempts=%s/%s",
                session.job_id,
                failure.error_type,
                failure.message,
                session.attempt_count,
                session.config.max_attempts,
            )
            return

        if interpreted is None:
            return

        session.last_snapshot = interpreted.snapshot
        session.consecutive_error_count = 0
        self._dispatcher_notify_progress(session, interpreted.snapshot)

    def _dispatcher_budget_exhausted(self, session: TrackingSession, elapsed_seconds: float) -> bool:
        if session.attempt_count >= session.config.max_attempts:
            return True
        return elapsed_seconds >= session.config.max_wall_clock_seconds

    def _dispatcher_finalize(self, session: TrackingSession, outcome: Outcome) -> bool:
        """Deliver the terminal outcome exactly once.

        Returns:
            bool: True when this call finalized the session.
        """

        if session.finalized:
            return False

        session.finalized = True
        session.outcome = outcome
        session.state = _STATE_BY_OUTCOME_KIND[outcome.kind]
        logger.info(
            "Tracking finalized for job %s: outcome=%s attempts=%s",
            session.job_id,
            outcome.kind.value,
            session.attempt_count,
        )

        if session.outcome_future is not None and not session.outcome_future.done():
            session.outcome_future.set_result(outcome)

        if self._on_outcome is not None:
            try:
                self._on_outcome(outcome)
            except Exception as error:  # pylint: disable=broad-exception-caught
                self._dispatcher_record_callback_failure(session, "on_outcome", error)
        return True

    def _dispatcher_notify_progress(self, session: TrackingSession, snapshot: ProgressSnapshot) -> None:
        if self._on_progress is None:
            return
        try:
            self._on_progress(snapshot)
        except Exception as error:  # pylint: disable=broad-exception-caught
            self._dispatcher_record_callback_failure(session, "on_progress", error)

    def _dispatcher_record_callback_failure(self, session: TrackingSession, callback_name: str, error: Exception) -> None:
        session.anomalies.append(TrackingAnomaly.callback_failed(session.job_id, callback_name, error))
        logger.exception("Tracking callback %s failed for job %s", callback_name, session.job_id)
