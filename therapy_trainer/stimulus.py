from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from .round_core import (
    Action,
    ConfigurationError,
    PatternStep,
    PatternStimulus,
    SeededRng,
    SingleTarget,
    Stimulus,
)


class RepeatPolicy(str, Enum):
    UNIFORM = "uniform"  # independent draws, repeats allowed
    ALTERNATE = "alternate"  # never the same action twice in a row
    CYCLE = "cycle"  # round_index mod catalog size, no randomness


@dataclass(frozen=True, slots=True)
class PatternTemplate:
    """An ordered action pattern.

    ``beats`` are step offsets in units of the round interval; the default is
    one step per interval (0, 1, 2, ...).
    """

    actions: tuple[Action, ...]
    beats: tuple[float, ...] | None = None

    def offsets(self) -> tuple[float, ...]:
        if self.beats is None:
            return tuple(float(i) for i in range(len(self.actions)))
        return tuple(float(b) for b in self.beats)

    def build(self, *, interval_ms: float) -> PatternStimulus:
        steps = tuple(
            PatternStep(action=a, expected_relative_ms=beat * float(interval_ms))
            for a, beat in zip(self.actions, self.offsets())
        )
        return PatternStimulus(steps=steps)

    def validate(self) -> None:
        if not self.actions:
            raise ConfigurationError("pattern templates must have at least one step")
        if self.beats is None:
            return
        if len(self.beats) != len(self.actions):
            raise ConfigurationError("pattern beats must match pattern actions one-to-one")
        prev = 0.0
        for beat in self.beats:
            if beat < prev:
                raise ConfigurationError("pattern beats must be non-negative and non-decreasing")
            prev = beat


@dataclass(frozen=True, slots=True)
class StimulusDomain:
    """Legal stimuli for one game.

    - actions only: single-target rounds
    - patterns: rounds drawn from a fixed pattern catalog
    - actions + pattern_length: generated patterns of that length
    """

    actions: tuple[Action, ...] = ()
    patterns: tuple[PatternTemplate, ...] = ()
    pattern_length: int = 0

    @property
    def is_pattern(self) -> bool:
        return bool(self.patterns) or self.pattern_length > 0

    def validate(self, policy: RepeatPolicy) -> None:
        if not self.actions and not self.patterns:
            raise ConfigurationError("stimulus domain is empty")
        if self.pattern_length < 0:
            raise ConfigurationError("pattern_length must be >= 0")
        if self.patterns and self.pattern_length:
            raise ConfigurationError("use either a pattern catalog or pattern_length, not both")

        for template in self.patterns:
            template.validate()
            if self.actions:
                unknown = set(template.actions) - set(self.actions)
                if unknown:
                    raise ConfigurationError(f"pattern uses actions outside the domain: {sorted(unknown)}")

        if policy is RepeatPolicy.ALTERNATE:
            if self.patterns:
                if len({t.actions for t in self.patterns}) < 2:
                    raise ConfigurationError("alternation needs at least two distinct patterns")
            elif len(set(self.actions)) < 2:
                raise ConfigurationError("alternation needs at least two distinct actions")


class StimulusGenerator:
    """Deterministic per-round stimulus source.

    Alternation samples directly from ``domain minus last`` rather than
    redrawing until something different comes up.
    """

    def __init__(self, *, domain: StimulusDomain, policy: RepeatPolicy = RepeatPolicy.UNIFORM, seed: int) -> None:
        domain.validate(policy)
        self._domain = domain
        self._policy = policy
        self._rng = SeededRng(seed)

    @property
    def domain(self) -> StimulusDomain:
        return self._domain

    @property
    def policy(self) -> RepeatPolicy:
        return self._policy

    def next_stimulus(self, *, round_index: int, history: Sequence[Stimulus], interval_ms: float) -> Stimulus:
        last = history[-1] if history else None
        if self._domain.patterns:
            return self._next_catalog_pattern(round_index, last).build(interval_ms=interval_ms)
        if self._domain.pattern_length > 0:
            return self._next_generated_pattern(round_index, last, interval_ms)
        return SingleTarget(expected=self._next_action(round_index, 0, last_action=_last_action(last)))

    def _next_action(self, round_index: int, offset: int, *, last_action: Action | None) -> Action:
        actions = self._domain.actions
        if self._policy is RepeatPolicy.CYCLE:
            return actions[(round_index + offset) % len(actions)]
        if self._policy is RepeatPolicy.ALTERNATE and last_action is not None:
            return self._rng.choice([a for a in actions if a != last_action])
        return self._rng.choice(actions)

    def _next_catalog_pattern(self, round_index: int, last: Stimulus | None) -> PatternTemplate:
        catalog = self._domain.patterns
        if self._policy is RepeatPolicy.CYCLE:
            return catalog[round_index % len(catalog)]
        if self._policy is RepeatPolicy.ALTERNATE and last is not None:
            return self._rng.choice([t for t in catalog if t.actions != last.actions])
        return self._rng.choice(catalog)

    def _next_generated_pattern(self, round_index: int, last: Stimulus | None, interval_ms: float) -> PatternStimulus:
        actions: list[Action] = []
        prev = _last_action(last)
        for j in range(self._domain.pattern_length):
            action = self._next_action(round_index, j, last_action=prev)
            actions.append(action)
            prev = action
        return PatternTemplate(actions=tuple(actions)).build(interval_ms=interval_ms)


def _last_action(stimulus: Stimulus | None) -> Action | None:
    if stimulus is None:
        return None
    return stimulus.actions[-1]
