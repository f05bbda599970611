from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Protocol

from .clock import Clock, seconds_to_ms
from .difficulty import DifficultyProfile
from .ports import FeedbackPort
from .round_core import (
    Action,
    ConfigurationError,
    EvalStatus,
    PatternStimulus,
    ResponseEvent,
    Round,
    RoundOutcome,
    SequencerState,
    Stimulus,
    RoundTiming,
)
from .stimulus import StimulusGenerator
from .timers import Timer, TimerKind, TimerTable
from .validator import evaluate

logger = logging.getLogger(__name__)

_FINISHED_STATES = (SequencerState.COMPLETED, SequencerState.ABORTED)


class SequencerListener(Protocol):
    def round_finished(self, finished: Round) -> None: ...
    def sequence_completed(self, at_ms: float) -> None: ...


@dataclass(frozen=True, slots=True)
class RoundPolicy:
    retry_on_mismatch: bool = False
    extend_deadline_on_retry: bool = False
    cue_lead_ms: float = 0.0  # pause before playback / capture
    advance_pause_ms: float = 0.0  # pause between a resolved round and the next presentation

    def validate(self) -> None:
        if self.cue_lead_ms < 0:
            raise ConfigurationError("cue_lead_ms must be >= 0")
        if self.advance_pause_ms < 0:
            raise ConfigurationError("advance_pause_ms must be >= 0")


def playback_ms(stimulus: Stimulus, timing: RoundTiming, *, cue_lead_ms: float) -> float:
    """Time from presentation until the capture window opens.

    Patterns are played back beat by beat first; capture opens one interval
    after the last beat.
    """

    if isinstance(stimulus, PatternStimulus):
        return float(cue_lead_ms) + stimulus.last_offset_ms + timing.interval_ms
    return float(cue_lead_ms)


def capture_window_ms(stimulus: Stimulus, timing: RoundTiming) -> float:
    if isinstance(stimulus, PatternStimulus):
        # A pattern must always be completable inside its own window.
        return max(timing.deadline_ms, stimulus.last_offset_ms + timing.tolerance_ms + timing.interval_ms)
    return timing.deadline_ms


class RoundSequencer:
    """State machine for a fixed number of timed rounds.

    Idle -> Presenting -> AwaitingInput -> Evaluating -> Retrying | Advancing | Completed

    - Input and timer expiry share one entry point guarded by the current
      state: whichever gets there first wins, the other is a no-op.
    - Every timer lives in the TimerTable slot of its round and is cancelled
      by the transition that supersedes it.
    - Time is entirely via the injected Clock (or explicit timestamps).
    """

    def __init__(
        self,
        *,
        clock: Clock,
        total_rounds: int,
        generator: StimulusGenerator,
        profile: DifficultyProfile,
        policy: RoundPolicy,
        feedback: FeedbackPort,
        listener: SequencerListener,
        timers: TimerTable | None = None,
    ) -> None:
        if total_rounds <= 0:
            raise ConfigurationError("total_rounds must be > 0")
        profile.validate()
        policy.validate()

        self._clock = clock
        self._total_rounds = int(total_rounds)
        self._generator = generator
        self._profile = profile
        self._policy = policy
        self._feedback = feedback
        self._listener = listener
        self._timers = TimerTable() if timers is None else timers

        self._state = SequencerState.IDLE
        self._started = False
        self._round: Round | None = None
        self._finished: list[Round] = []
        self._stimuli: list[Stimulus] = []
        self._buffer: list[ResponseEvent] = []
        self._window_started_ms: float | None = None

    @property
    def state(self) -> SequencerState:
        return self._state

    @property
    def total_rounds(self) -> int:
        return self._total_rounds

    @property
    def active_round(self) -> Round | None:
        return self._round

    @property
    def finished_rounds(self) -> tuple[Round, ...]:
        return tuple(self._finished)

    @property
    def rounds(self) -> tuple[Round, ...]:
        if self._round is None:
            return tuple(self._finished)
        return (*self._finished, self._round)

    @property
    def responses(self) -> tuple[ResponseEvent, ...]:
        return tuple(self._buffer)

    @property
    def window_started_ms(self) -> float | None:
        return self._window_started_ms

    def pending_timers(self) -> tuple[Timer, ...]:
        return self._timers.pending()

    def start(self, *, at_ms: float | None = None) -> None:
        if self._started:
            return
        self._started = True
        self._present(0, self._now_ms() if at_ms is None else float(at_ms))

    def update(self) -> None:
        if not self._started or self._state in _FINISHED_STATES:
            return
        self._fire_due(self._now_ms())

    def report_action(self, action: Action, *, at_ms: float | None = None) -> bool:
        """Feed one user action. Returns True if it was captured for evaluation."""

        if not self._started or self._state in _FINISHED_STATES:
            return False
        now = self._now_ms() if at_ms is None else float(at_ms)
        target = None if self._round is None else self._round.index

        # A deadline already due at the input instant resolves the round first;
        # the late input belongs to that round and is dropped, not carried over.
        self._fire_due(now)
        if self._state is not SequencerState.AWAITING_INPUT:
            logger.debug("ignored action %r in state %s", action, self._state.value)
            return False
        if self._round is None or self._round.index != target:
            logger.debug("ignored late action %r for round %s", action, target)
            return False

        rnd = self._round
        assert rnd is not None
        assert self._window_started_ms is not None
        # Made before this window opened: during playback, a previous round or a discarded attempt.
        if now < self._window_started_ms:
            logger.debug("ignored action %r made before the capture window of round %d", action, rnd.index)
            return False

        relative = now - self._window_started_ms
        self._buffer.append(ResponseEvent(action=action, observed_relative_ms=relative))
        self._state = SequencerState.EVALUATING
        result = evaluate(rnd.stimulus, self._buffer, tolerance_ms=rnd.timing.tolerance_ms)

        if result.status is EvalStatus.INCOMPLETE:
            self._state = SequencerState.AWAITING_INPUT
        elif result.status is EvalStatus.MATCH:
            self._resolve(RoundOutcome.SUCCESS, at_ms=now)
        else:
            self._round = replace(rnd, mismatches=rnd.mismatches + 1)
            if self._policy.retry_on_mismatch:
                self._retry(now)
            else:
                self._resolve(RoundOutcome.MISS, at_ms=now)
        return True

    def capture_time_remaining_ms(self) -> float | None:
        if self._state is not SequencerState.AWAITING_INPUT or self._round is None:
            return None
        if self._round.deadline_at_ms is None:
            return None
        return max(0.0, self._round.deadline_at_ms - self._now_ms())

    def abort(self) -> None:
        if self._state in _FINISHED_STATES:
            return
        cancelled = self._timers.cancel_all()
        self._buffer.clear()
        self._window_started_ms = None
        self._state = SequencerState.ABORTED
        logger.debug("sequencer aborted, %d timer(s) cancelled", cancelled)

    def _now_ms(self) -> float:
        return seconds_to_ms(self._clock.now())

    def _present(self, index: int, at_ms: float) -> None:
        timing = self._profile.timing(index)
        stimulus = self._generator.next_stimulus(
            round_index=index,
            history=tuple(self._stimuli),
            interval_ms=timing.interval_ms,
        )
        self._stimuli.append(stimulus)
        self._round = Round(index=index, stimulus=stimulus, timing=timing, presented_at_ms=at_ms)
        self._state = SequencerState.PRESENTING
        logger.debug("round %d presented: %s", index, stimulus)

        self._notify(self._feedback.on_round_presented, index, stimulus)
        if self._state is not SequencerState.PRESENTING:
            return

        lead = playback_ms(stimulus, timing, cue_lead_ms=self._policy.cue_lead_ms)
        if lead > 0.0:
            self._timers.arm(index, TimerKind.PLAYBACK, at_ms + lead)
        else:
            self._open_capture(at_ms)

    def _open_capture(self, at_ms: float) -> None:
        rnd = self._round
        assert rnd is not None
        self._buffer.clear()
        self._window_started_ms = at_ms
        deadline_at = at_ms + capture_window_ms(rnd.stimulus, rnd.timing)
        self._round = replace(
            rnd,
            capture_opened_at_ms=at_ms,
            deadline_at_ms=deadline_at,
            attempts=rnd.attempts + 1,
        )
        self._timers.arm(rnd.index, TimerKind.DEADLINE, deadline_at)
        self._state = SequencerState.AWAITING_INPUT
        self._notify(self._feedback.on_capture_opened, rnd.index)

    def _retry(self, at_ms: float) -> None:
        rnd = self._round
        assert rnd is not None
        self._state = SequencerState.RETRYING
        self._buffer.clear()
        self._window_started_ms = at_ms

        deadline_at = rnd.deadline_at_ms
        if self._policy.extend_deadline_on_retry:
            deadline_at = at_ms + capture_window_ms(rnd.stimulus, rnd.timing)
            self._timers.arm(rnd.index, TimerKind.DEADLINE, deadline_at)

        self._round = replace(
            rnd,
            outcome=RoundOutcome.RETRYING,
            attempts=rnd.attempts + 1,
            deadline_at_ms=deadline_at,
        )
        self._state = SequencerState.AWAITING_INPUT
        logger.debug("round %d retrying (attempt %d)", rnd.index, rnd.attempts + 1)
        self._notify(self._feedback.on_round_retry, rnd.index)

    def _resolve(self, outcome: RoundOutcome, *, at_ms: float) -> None:
        rnd = self._round
        assert rnd is not None
        self._timers.cancel_round(rnd.index)

        response_ms = None
        if outcome is RoundOutcome.SUCCESS and self._window_started_ms is not None:
            response_ms = max(0.0, at_ms - self._window_started_ms)
        finished = rnd.resolved(outcome, at_ms=at_ms, response_ms=response_ms)

        self._round = None
        self._finished.append(finished)
        self._buffer.clear()
        self._window_started_ms = None
        self._state = SequencerState.ADVANCING
        logger.debug("round %d resolved: %s", finished.index, outcome.value)

        if outcome is RoundOutcome.SUCCESS:
            self._notify(self._feedback.on_round_success, finished.index)
        else:
            self._notify(self._feedback.on_round_miss, finished.index)
        self._listener.round_finished(finished)
        self._advance(finished.index, at_ms)

    def _advance(self, index: int, at_ms: float) -> None:
        if self._state is not SequencerState.ADVANCING:
            return
        nxt = index + 1
        if nxt >= self._total_rounds:
            self._state = SequencerState.COMPLETED
            self._listener.sequence_completed(at_ms)
            return
        if self._policy.advance_pause_ms > 0.0:
            self._timers.arm(nxt, TimerKind.PACING, at_ms + self._policy.advance_pause_ms)
            return
        self._state = SequencerState.IDLE
        self._present(nxt, at_ms)

    def _fire_due(self, now_ms: float) -> None:
        while self._state not in _FINISHED_STATES:
            timer = self._timers.pop_due(now_ms)
            if timer is None:
                return
            self._on_timer(timer)

    def _on_timer(self, timer: Timer) -> None:
        rnd = self._round
        if timer.kind is TimerKind.PLAYBACK:
            if self._state is SequencerState.PRESENTING and rnd is not None and rnd.index == timer.round_index:
                self._open_capture(timer.due_at_ms)
                return
        elif timer.kind is TimerKind.DEADLINE:
            if self._state is SequencerState.AWAITING_INPUT and rnd is not None and rnd.index == timer.round_index:
                logger.debug("round %d timed out", rnd.index)
                self._resolve(RoundOutcome.MISS, at_ms=timer.due_at_ms)
                return
        elif timer.kind is TimerKind.PACING:
            if self._state is SequencerState.ADVANCING and rnd is None and timer.round_index == len(self._finished):
                self._state = SequencerState.IDLE
                self._present(timer.round_index, timer.due_at_ms)
                return
        logger.debug("stale %s timer for round %d ignored", timer.kind.value, timer.round_index)

    def _notify(self, fn: Callable[..., object], *args: object) -> None:
        try:
            fn(*args)
        except Exception:
            logger.exception("feedback callback %s failed", getattr(fn, "__name__", fn))
