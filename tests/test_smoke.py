"""Smoke tests for the pygame UI.

These tests verify that the application's main loop can initialise and
execute a handful of frames without crashing when the SDL dummy video
driver is used.  They do not check rendering correctness.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

# Use the dummy drivers before importing pygame or the application
os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")


def test_app_runs_headless(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Ensure the application can start and run a few frames headlessly."""
    monkeypatch.setenv("THERAPY_TRAINER_DB", str(tmp_path / "history.sqlite3"))
    monkeypatch.delenv("THERAPY_TRAINER_API_URL", raising=False)

    # Import inside the test so that environment variables take effect
    from therapy_trainer.app import run

    exit_code = run(max_frames=3)
    assert exit_code == 0
