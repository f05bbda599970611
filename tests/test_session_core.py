from __future__ import annotations

import logging
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
from typing import Any, Callable

import pytest

from therapy_trainer.difficulty import DifficultyProfile, fixed_tolerance
from therapy_trainer.ports import FeedbackRecorder, SubmissionReceipt
from therapy_trainer.round_core import (
    ConfigurationError,
    RoundOutcome,
    SequencerState,
    SessionSummary,
    SingleTarget,
)
from therapy_trainer.session import SessionConfig, TherapySession, build_session
from therapy_trainer.stimulus import PatternTemplate, RepeatPolicy, StimulusDomain


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


@dataclass
class RecordingBackend:
    submitted: list[SessionSummary] = field(default_factory=list)
    fail_with: Exception | None = None

    def submit(self, summary: SessionSummary) -> SubmissionReceipt:
        self.submitted.append(summary)
        if self.fail_with is not None:
            raise self.fail_with
        return SubmissionReceipt(accepted_at=1700000000.0, remote_id=f"log-{len(self.submitted)}")


class ManualExecutor(Executor):
    """Holds submitted work until the test decides to run it."""

    def __init__(self) -> None:
        self.pending: list[tuple[Future[Any], Callable[..., Any], tuple[Any, ...]]] = []

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future[Any]:
        future: Future[Any] = Future()
        self.pending.append((future, fn, args))
        return future

    def run_all(self) -> None:
        for future, fn, args in self.pending:
            try:
                future.set_result(fn(*args))
            except Exception as exc:
                future.set_exception(exc)
        self.pending.clear()


def _config(**overrides: Any) -> SessionConfig:
    base: dict[str, Any] = dict(
        total_rounds=3,
        domain=StimulusDomain(actions=("left", "right")),
        profile=DifficultyProfile(initial_interval_ms=2000.0),
        per_round_reward=15,
        repeat_policy=RepeatPolicy.CYCLE,
        game_code="arrow-match",
        skill_tags=("direction",),
    )
    base.update(overrides)
    return SessionConfig(**base)


def _expected(session: TherapySession) -> str:
    rnd = session.active_round
    assert rnd is not None
    assert isinstance(rnd.stimulus, SingleTarget)
    return rnd.stimulus.expected


def _play_perfect(session: TherapySession, clock: FakeClock, *, step_s: float = 0.25) -> None:
    session.start()
    while session.state is not SequencerState.COMPLETED:
        clock.advance(step_s)
        session.update()
        if session.state is SequencerState.AWAITING_INPUT:
            session.report_action(_expected(session))


@pytest.mark.parametrize(
    "overrides",
    [
        {"total_rounds": 0},
        {"per_round_reward": -5},
        {"domain": StimulusDomain()},
        {"profile": DifficultyProfile(initial_interval_ms=500.0, min_interval_ms=900.0)},
        {"domain": StimulusDomain(actions=("tap",)), "repeat_policy": RepeatPolicy.ALTERNATE},
        {"cue_lead_ms": -1.0},
    ],
)
def test_invalid_configuration_prevents_construction(overrides: dict[str, Any]) -> None:
    with pytest.raises(ConfigurationError):
        TherapySession(config=_config(**overrides), clock=FakeClock(), seed=1)


def test_configuration_error_is_a_value_error() -> None:
    assert issubclass(ConfigurationError, ValueError)


def test_summary_is_computed_once_and_submitted_once() -> None:
    clock = FakeClock()
    feedback = FeedbackRecorder()
    backend = RecordingBackend()
    session = build_session(config=_config(), clock=clock, seed=4, feedback=feedback, backend=backend)

    _play_perfect(session, clock)

    summary = session.summary
    assert summary is not None
    assert summary.score == 3
    assert summary.total == 3
    assert summary.accuracy_pct == pytest.approx(100.0)
    assert summary.reward_units == 45
    assert summary.game_code == "arrow-match"
    assert summary.skill_tags == ("direction",)
    assert summary.incorrect_attempts == 0
    assert summary.mean_response_ms is not None

    assert backend.submitted == [summary]
    assert session.submission_receipt is not None
    assert session.submission_receipt.remote_id == "log-1"
    assert feedback.count("completed") == 1

    for _ in range(5):
        clock.advance(1.0)
        session.update()
    assert backend.submitted == [summary]
    assert session.summary is summary


def test_score_counts_only_success_rounds() -> None:
    clock = FakeClock()
    session = build_session(config=_config(total_rounds=4), clock=clock, seed=2)
    session.start()

    session.report_action(_expected(session))
    clock.advance(2.5)
    session.update()  # round 1 times out
    wrong = "left" if _expected(session) == "right" else "right"
    session.report_action(wrong)
    session.report_action(_expected(session))

    assert session.state is SequencerState.COMPLETED
    outcomes = [r.outcome for r in session.rounds]
    assert outcomes == [RoundOutcome.SUCCESS, RoundOutcome.MISS, RoundOutcome.MISS, RoundOutcome.SUCCESS]
    assert session.score == 2
    summary = session.summary
    assert summary is not None
    assert summary.score == sum(1 for o in outcomes if o is RoundOutcome.SUCCESS)
    assert 0 <= summary.score <= summary.total
    assert summary.incorrect_attempts == 1


def test_backend_failure_is_logged_and_leaves_summary_alone(caplog: pytest.LogCaptureFixture) -> None:
    clock = FakeClock()
    backend = RecordingBackend(fail_with=RuntimeError("Game log failed (503): down"))
    session = build_session(config=_config(), clock=clock, seed=4, backend=backend)

    with caplog.at_level(logging.WARNING, logger="therapy_trainer.session"):
        _play_perfect(session, clock)

    assert session.state is SequencerState.COMPLETED
    assert session.summary is not None
    assert session.summary.score == 3
    assert session.submission_receipt is None
    assert session.submission_error == "Game log failed (503): down"
    assert len(backend.submitted) == 1
    assert any("submission failed" in rec.getMessage() for rec in caplog.records)


def test_submission_runs_off_the_critical_path() -> None:
    clock = FakeClock()
    backend = RecordingBackend()
    executor = ManualExecutor()
    session = build_session(config=_config(), clock=clock, seed=4, backend=backend, submit_executor=executor)

    _play_perfect(session, clock)
    assert session.state is SequencerState.COMPLETED
    assert backend.submitted == []
    assert session.submission_future is not None

    executor.run_all()
    assert len(backend.submitted) == 1
    assert session.submission_receipt is not None


def test_teardown_discards_in_flight_submission_result() -> None:
    clock = FakeClock()
    backend = RecordingBackend()
    executor = ManualExecutor()
    session = build_session(config=_config(), clock=clock, seed=4, backend=backend, submit_executor=executor)

    _play_perfect(session, clock)
    summary = session.summary
    session.close()

    executor.run_all()
    assert len(backend.submitted) == 1
    assert session.submission_receipt is None
    assert session.summary is summary
    assert session.state is SequencerState.COMPLETED


def test_close_mid_session_cancels_timers_and_never_summarises() -> None:
    clock = FakeClock()
    feedback = FeedbackRecorder()
    backend = RecordingBackend()
    session = build_session(
        config=_config(cue_lead_ms=300.0, advance_pause_ms=500.0),
        clock=clock,
        seed=4,
        feedback=feedback,
        backend=backend,
    )
    session.start()
    assert session.sequencer.pending_timers() != ()

    session.close()
    session.close()
    assert session.is_closed
    assert session.state is SequencerState.ABORTED
    assert session.sequencer.pending_timers() == ()

    clock.advance(60.0)
    session.update()
    assert session.report_action("left") is False
    assert session.summary is None
    assert backend.submitted == []
    assert feedback.names() == ["presented"]


def test_report_action_accepts_clock_timestamps_in_seconds() -> None:
    clock = FakeClock()
    session = build_session(config=_config(total_rounds=1), clock=clock, seed=1)
    session.start()
    expected = _expected(session)

    clock.advance(9.0)
    assert session.report_action(expected, at_s=1.25) is True
    summary = session.summary
    assert summary is not None
    assert summary.score == 1
    assert summary.mean_response_ms == pytest.approx(1250.0)
    assert summary.duration_ms == pytest.approx(1250.0)


def test_snapshot_reflects_round_progress() -> None:
    clock = FakeClock()
    session = build_session(config=_config(title="Arrow Match"), clock=clock, seed=1)

    before = session.snapshot()
    assert before.state is SequencerState.IDLE
    assert before.round_index is None

    session.start()
    clock.advance(0.5)
    snap = session.snapshot()
    assert snap.title == "Arrow Match"
    assert snap.round_index == 0
    assert snap.capture_open is True
    assert snap.time_remaining_ms == pytest.approx(1500.0)
    assert isinstance(snap.stimulus, SingleTarget)

    session.report_action(_expected(session))
    snap = session.snapshot()
    assert snap.score == 1
    assert snap.last_outcome is RoundOutcome.SUCCESS
    assert snap.round_index == 1


def _pattern_config(**overrides: Any) -> SessionConfig:
    base: dict[str, Any] = dict(
        domain=StimulusDomain(patterns=(PatternTemplate(actions=("left", "right")),)),
        profile=DifficultyProfile(initial_interval_ms=600.0, deadline_ms=4000.0, tolerance=fixed_tolerance(250.0)),
        game_code="clap-pattern",
    )
    base.update(overrides)
    return _config(**base)


def test_tap_made_during_previous_round_is_not_scored_on_the_next() -> None:
    clock = FakeClock()
    session = build_session(config=_config(total_rounds=2), clock=clock, seed=3)
    session.start()

    clock.t = 2.01
    session.update()
    assert session.rounds[0].outcome is RoundOutcome.MISS
    next_expected = _expected(session)

    # Reported now, but made while round 0 was still open.
    assert session.report_action(next_expected, at_s=1.999) is False
    rnd = session.active_round
    assert rnd is not None
    assert rnd.index == 1
    assert rnd.outcome is RoundOutcome.PENDING
    assert session.sequencer.responses == ()
    assert session.score == 0


def test_tap_made_during_playback_is_ignored_after_capture_opens() -> None:
    clock = FakeClock()
    session = build_session(config=_pattern_config(total_rounds=1), clock=clock, seed=3)
    session.start()

    # Beats at 0 and 600 ms, capture opens one interval later.
    clock.t = 1.3
    session.update()
    assert session.state is SequencerState.AWAITING_INPUT
    assert session.sequencer.window_started_ms == pytest.approx(1200.0)

    assert session.report_action("left", at_s=0.3) is False
    assert session.sequencer.responses == ()

    assert session.report_action("left", at_s=1.25) is True
    assert session.report_action("right", at_s=1.85) is True
    assert session.rounds[0].outcome is RoundOutcome.SUCCESS


def test_tap_made_before_a_retry_belongs_to_the_discarded_attempt() -> None:
    clock = FakeClock()
    session = build_session(
        config=_pattern_config(total_rounds=1, retry_on_mismatch=True),
        clock=clock,
        seed=3,
    )
    session.start()
    clock.t = 1.3
    session.update()

    assert session.report_action("right", at_s=1.3) is True
    assert session.report_action("right", at_s=1.8) is True
    assert session.active_round.outcome is RoundOutcome.RETRYING
    assert session.sequencer.window_started_ms == pytest.approx(1800.0)

    assert session.report_action("left", at_s=1.7) is False
    assert session.sequencer.responses == ()
    assert session.active_round.outcome is RoundOutcome.RETRYING


def test_cancelled_submission_is_recorded_as_failure(caplog: pytest.LogCaptureFixture) -> None:
    clock = FakeClock()
    backend = RecordingBackend()
    executor = ManualExecutor()
    session = build_session(config=_config(), clock=clock, seed=4, backend=backend, submit_executor=executor)

    _play_perfect(session, clock)
    future = session.submission_future
    assert future is not None

    with caplog.at_level(logging.WARNING, logger="therapy_trainer.session"):
        assert future.cancel() is True

    assert backend.submitted == []
    assert session.submission_receipt is None
    assert session.submission_error is not None
    assert "cancelled" in session.submission_error
    assert session.state is SequencerState.COMPLETED
    assert any("submission failed" in rec.getMessage() for rec in caplog.records)
