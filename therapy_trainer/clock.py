from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Monotonic clock abstraction.

    The round engine never reads wall time directly; hosts inject a clock so
    headless runs can step time deterministically.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


def seconds_to_ms(seconds: float) -> float:
    return float(seconds) * 1000.0
