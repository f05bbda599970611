from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .round_core import Round, RoundOutcome, SessionSummary
from .session import TherapySession


@dataclass(frozen=True, slots=True)
class RoundRecord:
    index: int
    expected: tuple[str, ...]
    outcome: RoundOutcome
    attempts: int
    mismatches: int
    response_ms: float | None


@dataclass(frozen=True, slots=True)
class SessionResult:
    """Summary + per-round log for a completed session.

    This is intentionally generic so every game in the catalog can reuse it.
    """

    game_code: str
    seed: int
    summary: SessionSummary
    rounds: tuple[RoundRecord, ...]


def round_record(rnd: Round) -> RoundRecord:
    return RoundRecord(
        index=int(rnd.index),
        expected=tuple(rnd.stimulus.actions),
        outcome=rnd.outcome,
        attempts=int(rnd.attempts),
        mismatches=int(rnd.mismatches),
        response_ms=rnd.response_ms,
    )


def session_result_from_session(session: TherapySession) -> SessionResult:
    """Build a SessionResult from a completed TherapySession."""

    summary = session.summary
    if summary is None:
        raise ValueError("session has not completed")
    return SessionResult(
        game_code=session.config.game_code,
        seed=session.seed,
        summary=summary,
        rounds=tuple(round_record(r) for r in session.rounds if r.outcome.is_terminal),
    )


def game_log_payload(summary: SessionSummary) -> dict[str, Any]:
    """JSON body for the XP-award game log endpoint."""

    payload: dict[str, Any] = {
        "type": summary.game_code,
        "correct": int(summary.score),
        "total": int(summary.total),
        "accuracy": round(float(summary.accuracy_pct), 2),
        "xpAwarded": int(summary.reward_units),
        "durationMs": int(round(summary.duration_ms)),
        "incorrectAttempts": int(summary.incorrect_attempts),
        "skillTags": list(summary.skill_tags),
    }
    if summary.mean_response_ms is not None:
        payload["responseTimeMs"] = int(round(summary.mean_response_ms))
    return payload


def summary_lines(summary: SessionSummary) -> list[str]:
    rt = "n/a" if summary.mean_response_ms is None else f"{summary.mean_response_ms / 1000.0:.2f}s"
    return [
        "Results",
        f"Correct: {summary.score}/{summary.total}",
        f"Accuracy: {int(round(summary.accuracy_pct))}%",
        f"XP: {summary.reward_units}",
        f"Mean response: {rt}",
    ]
