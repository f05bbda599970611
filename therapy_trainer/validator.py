from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .round_core import EvalStatus, PatternStep, ResponseEvent, SingleTarget, Stimulus


@dataclass(frozen=True, slots=True)
class Evaluation:
    status: EvalStatus
    failed_step: int | None = None  # first offending index on MISMATCH


INCOMPLETE = Evaluation(EvalStatus.INCOMPLETE)
MATCH = Evaluation(EvalStatus.MATCH)


def step_within_tolerance(step: PatternStep, response: ResponseEvent, *, tolerance_ms: float) -> bool:
    if response.action != step.action:
        return False
    return abs(response.observed_relative_ms - step.expected_relative_ms) <= tolerance_ms


def evaluate(stimulus: Stimulus, responses: Sequence[ResponseEvent], *, tolerance_ms: float) -> Evaluation:
    """Decide whether the captured responses satisfy the stimulus.

    Single targets are judged on the first response alone, without timing.
    Patterns stay INCOMPLETE until every step has a response, then each step
    must match its action and land within ``tolerance_ms`` of its expected
    window-local offset. There is no averaging across steps.
    """

    if not responses:
        return INCOMPLETE

    if isinstance(stimulus, SingleTarget):
        if responses[0].action == stimulus.expected:
            return MATCH
        return Evaluation(EvalStatus.MISMATCH, failed_step=0)

    steps = stimulus.steps
    if len(responses) < len(steps):
        return INCOMPLETE

    for i, (step, response) in enumerate(zip(steps, responses)):
        if not step_within_tolerance(step, response, tolerance_ms=tolerance_ms):
            return Evaluation(EvalStatus.MISMATCH, failed_step=i)
    if len(responses) > len(steps):
        return Evaluation(EvalStatus.MISMATCH, failed_step=len(steps))
    return MATCH
