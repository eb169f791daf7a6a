"""Poll wait strategies: fixed interval and exponential backoff with jitter."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Final, Protocol

_MAX_BACKOFF_EXPONENT: Final[int] = 62


class PollWaitStrategy(Protocol):
    """Port definition for computing the delay before the next poll tick."""

    def strategy_calculate_wait_seconds(self, tick_index: int) -> float:
        """Return seconds to wait after tick `tick_index` (zero-based).

        Args:
            tick_index: Zero-based index of the tick that just resolved.

        Returns:
            float: Non-negative wait seconds.

        Raises:
            ValueError: Raised when tick index is negative.
        """


@dataclass(frozen=True)
class FixedIntervalStrategy:
    """Fixed delay between ticks.

    Attributes:
        interval_seconds: Delay between two consecutive ticks.
    """

    interval_seconds: float

    def __post_init__(self) -> None:
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")

    def strategy_calculate_wait_seconds(self, tick_index: int) -> float:
        """Return the configured fixed interval."""

        if tick_index < 0:
            raise ValueError("tick_index must be >= 0")
        return float(self.interval_seconds)


@dataclass(frozen=True)
class ExponentialJitterStrategy:
    """Immutable exponential backoff config and calculation helpers.

    Attributes:
        base_seconds: Base delay, also used as the floor for every wait.
        max_backoff_seconds: Exponential delay cap before jitter.
        jitter_min_multiplier: Minimum jitter multiplier.
        jitter_max_multiplier: Maximum jitter multiplier.
        random_unit_interval_provider: Provider returning value in [0.0, 1.0].
    """

    base_seconds: float
    max_backoff_seconds: float
    jitter_min_multiplier: float
    jitter_max_multiplier: float
    random_unit_interval_provider: Callable[[], float]

    def __post_init__(self) -> None:
        if self.base_seconds <= 0:
            raise ValueError("base_seconds must be > 0")
        if self.max_backoff_seconds < self.base_seconds:
            raise ValueError("max_backoff_seconds must be >= base_seconds")
        if self.jitter_min_multiplier <= 0:
            raise ValueError("jitter_min_multiplier must be > 0")
        if self.jitter_max_multiplier < self.jitter_min_multiplier:
            raise ValueError("jitter_max_multiplier must be >= jitter_min_multiplier")

    def strategy_calculate_wait_seconds(self, tick_index: int) -> float:
        """Calculate exponential wait with cap and jitter.

        Args:
            tick_index: Zero-based tick index.

        Returns:
            float: Computed wait seconds, never below `base_seconds`.

        Raises:
            ValueError: Raised when tick index is negative.
            RuntimeError: Raised when jitter provider returns out-of-range value.
        """

        if tick_index < 0:
            raise ValueError("tick_index must be >= 0")

        backoff_seconds = self.base_seconds * (2 ** min(tick_index, _MAX_BACKOFF_EXPONENT))
        capped_backoff_seconds = min(backoff_seconds, self.max_backoff_seconds)
        jittered_backoff_seconds = capped_backoff_seconds * self.strategy_calculate_jitter_multiplier()
        return max(float(self.base_seconds), float(jittered_backoff_seconds))

    def strategy_calculate_jitter_multiplier(self) -> float:
        """Return jitter multiplier using configured min/max bounds.

        Returns:
            float: Jitter multiplier value.

        Raises:
            RuntimeError: Raised when jitter source returns value outside [0.0, 1.0].
        """

        random_ratio = float(self.random_unit_interval_provider())
        if random_ratio < 0.0 or random_ratio > 1.0:
            raise RuntimeError("random_unit_interval_provider must return a value in [0.0, 1.0]")

        jitter_span = self.jitter_max_multiplier - self.jitter_min_multiplier
        return self.jitter_min_multiplier + (random_ratio * jitter_span)
