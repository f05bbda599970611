from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from .round_core import ConfigurationError, RoundTiming

ToleranceFn = Callable[[float], float]


def fixed_tolerance(ms: float) -> ToleranceFn:
    """Tolerance that ignores the interval, e.g. a flat 250 ms window."""

    value = float(ms)

    def _tolerance(interval_ms: float) -> float:
        _ = interval_ms
        return value

    return _tolerance


def fractional_tolerance(fraction: float) -> ToleranceFn:
    """Tolerance proportional to the round interval (40% of a beat, ...)."""

    ratio = float(fraction)

    def _tolerance(interval_ms: float) -> float:
        return ratio * float(interval_ms)

    return _tolerance


@dataclass(frozen=True, slots=True)
class DifficultyProfile:
    """Pure mapping round index -> timing parameters.

    interval_ms(i) = max(min_interval_ms, initial_interval_ms - i * interval_step_ms)

    The deadline follows the same law with its own floor and step. When
    ``deadline_ms`` is omitted the capture window equals the round interval.
    Steps are non-negative so neither value ever grows with the round index.
    """

    initial_interval_ms: float
    min_interval_ms: float | None = None
    interval_step_ms: float = 0.0
    deadline_ms: float | None = None
    min_deadline_ms: float | None = None
    deadline_step_ms: float = 0.0
    tolerance: ToleranceFn = field(default_factory=lambda: fixed_tolerance(0.0))

    def validate(self) -> None:
        floor = self.interval_floor_ms
        if self.initial_interval_ms <= 0:
            raise ConfigurationError("initial_interval_ms must be > 0")
        if floor <= 0:
            raise ConfigurationError("min_interval_ms must be > 0")
        if floor > self.initial_interval_ms:
            raise ConfigurationError("min_interval_ms must be <= initial_interval_ms")
        if self.interval_step_ms < 0:
            raise ConfigurationError("interval_step_ms must be >= 0")

        if self.deadline_ms is not None:
            if self.deadline_ms <= 0:
                raise ConfigurationError("deadline_ms must be > 0")
            deadline_floor = self.deadline_floor_ms
            if deadline_floor <= 0:
                raise ConfigurationError("min_deadline_ms must be > 0")
            if deadline_floor > self.deadline_ms:
                raise ConfigurationError("min_deadline_ms must be <= deadline_ms")
        elif self.min_deadline_ms is not None:
            raise ConfigurationError("min_deadline_ms requires deadline_ms")
        if self.deadline_step_ms < 0:
            raise ConfigurationError("deadline_step_ms must be >= 0")

        for interval in (self.initial_interval_ms, floor):
            tol = float(self.tolerance(interval))
            if tol < 0:
                raise ConfigurationError("tolerance must be >= 0")

    @property
    def interval_floor_ms(self) -> float:
        return float(self.initial_interval_ms if self.min_interval_ms is None else self.min_interval_ms)

    @property
    def deadline_floor_ms(self) -> float:
        if self.deadline_ms is None:
            return self.interval_floor_ms
        return float(self.deadline_ms if self.min_deadline_ms is None else self.min_deadline_ms)

    def interval_ms(self, round_index: int) -> float:
        i = max(0, int(round_index))
        return max(self.interval_floor_ms, float(self.initial_interval_ms) - i * float(self.interval_step_ms))

    def timing(self, round_index: int) -> RoundTiming:
        i = max(0, int(round_index))
        interval = self.interval_ms(i)
        if self.deadline_ms is None:
            deadline = interval
        else:
            deadline = max(self.deadline_floor_ms, float(self.deadline_ms) - i * float(self.deadline_step_ms))
        return RoundTiming(
            interval_ms=interval,
            deadline_ms=deadline,
            tolerance_ms=float(self.tolerance(interval)),
        )

    def __call__(self, round_index: int) -> RoundTiming:
        return self.timing(round_index)
