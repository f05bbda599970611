from __future__ import annotations

import random
from dataclasses import dataclass, replace
from enum import Enum
from typing import Sequence, TypeVar

Action = str

T = TypeVar("T")


class ConfigurationError(ValueError):
    """Raised while building a session whose configuration cannot be played."""


class RoundOutcome(str, Enum):
    PENDING = "pending"
    RETRYING = "retrying"
    SUCCESS = "success"
    MISS = "miss"

    @property
    def is_terminal(self) -> bool:
        return self in (RoundOutcome.SUCCESS, RoundOutcome.MISS)


class SequencerState(str, Enum):
    IDLE = "idle"
    PRESENTING = "presenting"
    AWAITING_INPUT = "awaiting_input"
    EVALUATING = "evaluating"
    RETRYING = "retrying"
    ADVANCING = "advancing"
    COMPLETED = "completed"
    ABORTED = "aborted"


class EvalStatus(str, Enum):
    INCOMPLETE = "incomplete"
    MATCH = "match"
    MISMATCH = "mismatch"


@dataclass(frozen=True, slots=True)
class RoundTiming:
    interval_ms: float
    deadline_ms: float
    tolerance_ms: float


@dataclass(frozen=True, slots=True)
class SingleTarget:
    expected: Action

    @property
    def actions(self) -> tuple[Action, ...]:
        return (self.expected,)


@dataclass(frozen=True, slots=True)
class PatternStep:
    action: Action
    expected_relative_ms: float


@dataclass(frozen=True, slots=True)
class PatternStimulus:
    steps: tuple[PatternStep, ...]

    @property
    def actions(self) -> tuple[Action, ...]:
        return tuple(s.action for s in self.steps)

    @property
    def last_offset_ms(self) -> float:
        return max((s.expected_relative_ms for s in self.steps), default=0.0)


Stimulus = SingleTarget | PatternStimulus


@dataclass(frozen=True, slots=True)
class ResponseEvent:
    action: Action
    observed_relative_ms: float  # measured from the capture window start


@dataclass(frozen=True, slots=True)
class Round:
    """One stimulus/response cycle.

    Rounds are immutable values; the sequencer swaps in an updated copy on
    every transition. Once ``outcome`` is terminal, ``resolved`` refuses to
    produce another copy.
    """

    index: int
    stimulus: Stimulus
    timing: RoundTiming
    presented_at_ms: float | None = None
    capture_opened_at_ms: float | None = None
    deadline_at_ms: float | None = None
    outcome: RoundOutcome = RoundOutcome.PENDING
    attempts: int = 0
    mismatches: int = 0
    resolved_at_ms: float | None = None
    response_ms: float | None = None

    @property
    def is_active(self) -> bool:
        return not self.outcome.is_terminal

    def resolved(self, outcome: RoundOutcome, *, at_ms: float, response_ms: float | None = None) -> Round:
        if self.outcome.is_terminal:
            raise RuntimeError(f"round {self.index} already resolved as {self.outcome.value}")
        if not outcome.is_terminal:
            raise ValueError("resolved() requires a terminal outcome")
        return replace(self, outcome=outcome, resolved_at_ms=at_ms, response_ms=response_ms)


@dataclass(frozen=True, slots=True)
class SessionSummary:
    score: int
    total: int
    accuracy_pct: float
    reward_units: int
    game_code: str = ""
    skill_tags: tuple[str, ...] = ()
    duration_ms: float = 0.0
    incorrect_attempts: int = 0
    mean_response_ms: float | None = None


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """View model for the UI (pure data)."""

    title: str
    state: SequencerState
    round_index: int | None
    total_rounds: int
    score: int
    stimulus: Stimulus | None
    capture_open: bool
    time_remaining_ms: float | None
    last_outcome: RoundOutcome | None
    summary: SessionSummary | None = None


class SeededRng:
    """Seeded RNG wrapper to keep deterministic stimulus streams explicit."""

    def __init__(self, seed: int) -> None:
        self._rng = random.Random(int(seed))

    def choice(self, seq: Sequence[T]) -> T:
        return self._rng.choice(seq)

    def random(self) -> float:
        return self._rng.random()


def accuracy_pct(score: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return 100.0 * float(score) / float(total)
