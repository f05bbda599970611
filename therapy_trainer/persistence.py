from __future__ import annotations

from pathlib import Path
import logging
import os
import sqlite3
import time

from .ports import SubmissionReceipt
from .round_core import SessionSummary

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
DB_PATH_ENV = "THERAPY_TRAINER_DB"


def default_db_path() -> Path:
    raw = os.environ.get(DB_PATH_ENV, "").strip()
    if raw:
        return Path(raw).expanduser()
    return Path.home() / ".therapy_trainer" / "history.sqlite3"


def open_db(path: Path) -> sqlite3.Connection:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    _migrate(conn)
    return conn


def _utc_now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time()))


def _migrate(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version;").fetchone()
    ver = int(row[0]) if row else 0
    if ver >= SCHEMA_VERSION:
        return

    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS session_result (
                id INTEGER PRIMARY KEY,
                game_code TEXT NOT NULL,
                score INTEGER NOT NULL,
                total INTEGER NOT NULL,
                accuracy_pct REAL NOT NULL,
                reward_units INTEGER NOT NULL,
                completed_at_utc TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS metric (
                result_id INTEGER NOT NULL REFERENCES session_result(id) ON DELETE CASCADE,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                PRIMARY KEY (result_id, key)
            );
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_session_result_game ON session_result(game_code, completed_at_utc);"
        )
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


class SqliteScoringBackend:
    """Local scoring backend: one row per completed session plus metrics."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def submit(self, summary: SessionSummary) -> SubmissionReceipt:
        conn = open_db(self._path)
        try:
            result_id = _insert_summary(conn=conn, summary=summary)
        finally:
            conn.close()
        logger.debug("stored session %s as row %d in %s", summary.game_code, result_id, self._path)
        return SubmissionReceipt(accepted_at=time.time(), remote_id=str(result_id))

    def total_reward(self, game_code: str | None = None) -> int:
        conn = open_db(self._path)
        try:
            if game_code is None:
                row = conn.execute("SELECT COALESCE(SUM(reward_units), 0) FROM session_result").fetchone()
            else:
                row = conn.execute(
                    "SELECT COALESCE(SUM(reward_units), 0) FROM session_result WHERE game_code = ?",
                    (game_code,),
                ).fetchone()
        finally:
            conn.close()
        return int(row[0])


def _insert_summary(*, conn: sqlite3.Connection, summary: SessionSummary) -> int:
    with conn:
        cur = conn.execute(
            """
            INSERT INTO session_result(
                game_code, score, total, accuracy_pct, reward_units, completed_at_utc
            )
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                str(summary.game_code),
                int(summary.score),
                int(summary.total),
                float(summary.accuracy_pct),
                int(summary.reward_units),
                _utc_now_iso(),
            ),
        )
        result_id = int(cur.lastrowid)

        mean_rt = "" if summary.mean_response_ms is None else f"{summary.mean_response_ms:.3f}"
        metrics = {
            "duration_ms": f"{summary.duration_ms:.3f}",
            "incorrect_attempts": str(summary.incorrect_attempts),
            "mean_response_ms": mean_rt,
            "skill_tags": ",".join(summary.skill_tags),
        }
        for k, v in metrics.items():
            conn.execute("INSERT INTO metric(result_id, key, value) VALUES (?, ?, ?)", (result_id, k, v))

    return result_id
