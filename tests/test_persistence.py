from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from therapy_trainer.persistence import DB_PATH_ENV, SqliteScoringBackend, default_db_path, open_db
from therapy_trainer.round_core import SessionSummary


def _summary(**overrides) -> SessionSummary:
    base = dict(
        score=6,
        total=8,
        accuracy_pct=75.0,
        reward_units=120,
        game_code="clap-pattern",
        skill_tags=("rhythm", "midline"),
        duration_ms=41250.0,
        incorrect_attempts=3,
        mean_response_ms=1875.5,
    )
    base.update(overrides)
    return SessionSummary(**base)


def test_default_db_path_honours_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv(DB_PATH_ENV, str(tmp_path / "custom.sqlite3"))
    assert default_db_path() == tmp_path / "custom.sqlite3"

    monkeypatch.delenv(DB_PATH_ENV)
    assert default_db_path().name == "history.sqlite3"


def test_open_db_creates_schema_once(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "history.sqlite3"
    conn = open_db(path)
    try:
        version = conn.execute("PRAGMA user_version;").fetchone()[0]
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    finally:
        conn.close()
    assert version == 1
    assert {"session_result", "metric"} <= tables

    # Re-opening an up-to-date database is a no-op.
    open_db(path).close()


def test_submit_stores_summary_and_metrics(tmp_path: Path) -> None:
    backend = SqliteScoringBackend(tmp_path / "history.sqlite3")
    receipt = backend.submit(_summary())

    assert receipt.remote_id is not None
    assert receipt.accepted_at > 0

    conn = sqlite3.connect(backend.path)
    try:
        row = conn.execute(
            "SELECT game_code, score, total, accuracy_pct, reward_units FROM session_result WHERE id = ?",
            (int(receipt.remote_id),),
        ).fetchone()
        metrics = dict(
            conn.execute("SELECT key, value FROM metric WHERE result_id = ?", (int(receipt.remote_id),)).fetchall()
        )
    finally:
        conn.close()

    assert row == ("clap-pattern", 6, 8, 75.0, 120)
    assert metrics == {
        "duration_ms": "41250.000",
        "incorrect_attempts": "3",
        "mean_response_ms": "1875.500",
        "skill_tags": "rhythm,midline",
    }


def test_total_reward_sums_per_game(tmp_path: Path) -> None:
    backend = SqliteScoringBackend(tmp_path / "history.sqlite3")
    assert backend.total_reward() == 0

    backend.submit(_summary())
    backend.submit(_summary(reward_units=40, mean_response_ms=None))
    backend.submit(_summary(game_code="drum-duo", reward_units=90))

    assert backend.total_reward("clap-pattern") == 160
    assert backend.total_reward("drum-duo") == 90
    assert backend.total_reward() == 250
