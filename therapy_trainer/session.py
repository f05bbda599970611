from __future__ import annotations

import logging
from concurrent.futures import CancelledError, Executor, Future
from dataclasses import dataclass

from .clock import Clock, seconds_to_ms
from .difficulty import DifficultyProfile
from .ports import FeedbackPort, NullFeedback, ScoringBackend, SubmissionReceipt
from .round_core import (
    Action,
    ConfigurationError,
    Round,
    RoundOutcome,
    SequencerState,
    SessionSnapshot,
    SessionSummary,
    accuracy_pct,
)
from .sequencer import RoundPolicy, RoundSequencer
from .stimulus import RepeatPolicy, StimulusDomain, StimulusGenerator

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SessionConfig:
    total_rounds: int
    domain: StimulusDomain
    profile: DifficultyProfile
    retry_on_mismatch: bool = False
    per_round_reward: int = 10
    repeat_policy: RepeatPolicy = RepeatPolicy.UNIFORM
    extend_deadline_on_retry: bool = False
    cue_lead_ms: float = 0.0
    advance_pause_ms: float = 0.0
    game_code: str = "custom"
    title: str = "Round Game"
    skill_tags: tuple[str, ...] = ()

    def round_policy(self) -> RoundPolicy:
        return RoundPolicy(
            retry_on_mismatch=self.retry_on_mismatch,
            extend_deadline_on_retry=self.extend_deadline_on_retry,
            cue_lead_ms=self.cue_lead_ms,
            advance_pause_ms=self.advance_pause_ms,
        )

    def validate(self) -> None:
        if self.total_rounds <= 0:
            raise ConfigurationError("total_rounds must be > 0")
        if self.per_round_reward < 0:
            raise ConfigurationError("per_round_reward must be >= 0")
        self.domain.validate(self.repeat_policy)
        self.profile.validate()
        self.round_policy().validate()


class TherapySession:
    """Session aggregator: owns the rounds of one game screen.

    - Construction validates the whole configuration; nothing can fail later
      except the backend submission, which is caught and logged.
    - The host calls ``update()`` every frame and ``report_action()`` on input.
    - ``close()`` is the screen-exit teardown: timers are cancelled and a
      submission still in flight no longer touches this object.
    """

    def __init__(
        self,
        *,
        config: SessionConfig,
        clock: Clock,
        seed: int,
        feedback: FeedbackPort | None = None,
        backend: ScoringBackend | None = None,
        submit_executor: Executor | None = None,
    ) -> None:
        config.validate()

        self._config = config
        self._clock = clock
        self._seed = int(seed)
        self._feedback: FeedbackPort = NullFeedback() if feedback is None else feedback
        self._backend = backend
        self._executor = submit_executor

        self._generator = StimulusGenerator(domain=config.domain, policy=config.repeat_policy, seed=self._seed)
        self._sequencer = RoundSequencer(
            clock=clock,
            total_rounds=config.total_rounds,
            generator=self._generator,
            profile=config.profile,
            policy=config.round_policy(),
            feedback=self._feedback,
            listener=self,
        )

        self._score = 0
        self._started_at_ms: float | None = None
        self._summary: SessionSummary | None = None
        self._closed = False
        self._last_outcome: RoundOutcome | None = None

        self._submission_receipt: SubmissionReceipt | None = None
        self._submission_error: str | None = None
        self._submission_future: Future[SubmissionReceipt] | None = None

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def seed(self) -> int:
        return self._seed

    @property
    def state(self) -> SequencerState:
        return self._sequencer.state

    @property
    def score(self) -> int:
        return self._score

    @property
    def rounds(self) -> tuple[Round, ...]:
        return self._sequencer.rounds

    @property
    def active_round(self) -> Round | None:
        return self._sequencer.active_round

    @property
    def summary(self) -> SessionSummary | None:
        return self._summary

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def submission_receipt(self) -> SubmissionReceipt | None:
        return self._submission_receipt

    @property
    def submission_error(self) -> str | None:
        return self._submission_error

    @property
    def submission_future(self) -> Future[SubmissionReceipt] | None:
        return self._submission_future

    @property
    def sequencer(self) -> RoundSequencer:
        return self._sequencer

    def start(self) -> None:
        if self._closed or self._started_at_ms is not None:
            return
        self._started_at_ms = seconds_to_ms(self._clock.now())
        logger.info(
            "session %s started: %d rounds, seed=%d",
            self._config.game_code,
            self._config.total_rounds,
            self._seed,
        )
        self._sequencer.start(at_ms=self._started_at_ms)

    def update(self) -> None:
        if self._closed:
            return
        self._sequencer.update()

    def report_action(self, action: Action, at_s: float | None = None) -> bool:
        """Input port. ``at_s`` is a timestamp on the injected clock (seconds)."""

        if self._closed:
            return False
        at_ms = None if at_s is None else seconds_to_ms(at_s)
        return self._sequencer.report_action(action, at_ms=at_ms)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._sequencer.abort()
        logger.debug("session %s closed in state %s", self._config.game_code, self.state.value)

    def time_remaining_ms(self) -> float | None:
        return self._sequencer.capture_time_remaining_ms()

    def snapshot(self) -> SessionSnapshot:
        rnd = self._sequencer.active_round
        return SessionSnapshot(
            title=self._config.title,
            state=self.state,
            round_index=None if rnd is None else rnd.index,
            total_rounds=self._config.total_rounds,
            score=self._score,
            stimulus=None if rnd is None else rnd.stimulus,
            capture_open=self.state is SequencerState.AWAITING_INPUT,
            time_remaining_ms=self.time_remaining_ms(),
            last_outcome=self._last_outcome,
            summary=self._summary,
        )

    # SequencerListener

    def round_finished(self, finished: Round) -> None:
        self._last_outcome = finished.outcome
        if finished.outcome is RoundOutcome.SUCCESS:
            self._score += 1

    def sequence_completed(self, at_ms: float) -> None:
        if self._summary is not None:
            return
        self._summary = self._build_summary(at_ms)
        logger.info(
            "session %s completed: score=%d/%d reward=%d",
            self._config.game_code,
            self._summary.score,
            self._summary.total,
            self._summary.reward_units,
        )
        try:
            self._feedback.on_session_completed(self._summary)
        except Exception:
            logger.exception("feedback on_session_completed failed")
        self._submit(self._summary)

    def _build_summary(self, at_ms: float) -> SessionSummary:
        finished = self._sequencer.finished_rounds
        score = sum(1 for r in finished if r.outcome is RoundOutcome.SUCCESS)
        total = self._config.total_rounds
        rts = [r.response_ms for r in finished if r.response_ms is not None]
        started = at_ms if self._started_at_ms is None else self._started_at_ms
        return SessionSummary(
            score=score,
            total=total,
            accuracy_pct=accuracy_pct(score, total),
            reward_units=score * int(self._config.per_round_reward),
            game_code=self._config.game_code,
            skill_tags=tuple(self._config.skill_tags),
            duration_ms=max(0.0, at_ms - started),
            incorrect_attempts=sum(r.mismatches for r in finished),
            mean_response_ms=None if not rts else sum(rts) / len(rts),
        )

    def _submit(self, summary: SessionSummary) -> None:
        if self._backend is None:
            return
        if self._executor is None:
            try:
                receipt = self._backend.submit(summary)
            except Exception as exc:
                self._record_submission_failure(exc)
            else:
                self._accept_receipt(receipt)
            return

        future = self._executor.submit(self._backend.submit, summary)
        self._submission_future = future
        future.add_done_callback(self._on_submission_done)

    def _on_submission_done(self, future: Future[SubmissionReceipt]) -> None:
        if future.cancelled():
            self._record_submission_failure(CancelledError("submission cancelled before it ran"))
            return
        exc = future.exception()
        if exc is not None:
            self._record_submission_failure(exc)
            return
        self._accept_receipt(future.result())

    def _accept_receipt(self, receipt: SubmissionReceipt) -> None:
        if self._closed:
            logger.debug("submission for closed session %s discarded", self._config.game_code)
            return
        self._submission_receipt = receipt
        logger.info("session %s submitted (remote_id=%s)", self._config.game_code, receipt.remote_id)

    def _record_submission_failure(self, exc: BaseException) -> None:
        logger.warning("session %s submission failed: %s", self._config.game_code, exc, exc_info=exc)
        if self._closed:
            return
        self._submission_error = str(exc) or exc.__class__.__name__


def build_session(
    *,
    config: SessionConfig,
    clock: Clock,
    seed: int,
    feedback: FeedbackPort | None = None,
    backend: ScoringBackend | None = None,
    submit_executor: Executor | None = None,
) -> TherapySession:
    """Factory for the generic round session."""

    return TherapySession(
        config=config,
        clock=clock,
        seed=seed,
        feedback=feedback,
        backend=backend,
        submit_executor=submit_executor,
    )
