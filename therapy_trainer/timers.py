from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class TimerKind(str, Enum):
    PLAYBACK = "playback"  # presentation -> capture window opens
    DEADLINE = "deadline"  # capture window expires
    PACING = "pacing"  # pause before the next round is presented


@dataclass(frozen=True, slots=True)
class Timer:
    round_index: int
    kind: TimerKind
    due_at_ms: float
    seq: int


class TimerTable:
    """Timer ownership table: at most one timer per (round index, kind).

    Timers never call back on their own. The owner polls ``pop_due`` with the
    current time and routes whatever comes out through its own guarded
    dispatch, so cancelling a slot is enough to guarantee it never fires.
    """

    def __init__(self) -> None:
        self._slots: dict[tuple[int, TimerKind], Timer] = {}
        self._seq = 0

    def __len__(self) -> int:
        return len(self._slots)

    def arm(self, round_index: int, kind: TimerKind, due_at_ms: float) -> Timer:
        self._seq += 1
        timer = Timer(round_index=int(round_index), kind=kind, due_at_ms=float(due_at_ms), seq=self._seq)
        self._slots[(timer.round_index, kind)] = timer
        return timer

    def get(self, round_index: int, kind: TimerKind) -> Timer | None:
        return self._slots.get((int(round_index), kind))

    def cancel(self, round_index: int, kind: TimerKind) -> bool:
        return self._slots.pop((int(round_index), kind), None) is not None

    def cancel_round(self, round_index: int) -> int:
        keys = [k for k in self._slots if k[0] == round_index]
        for k in keys:
            del self._slots[k]
        return len(keys)

    def cancel_all(self) -> int:
        n = len(self._slots)
        self._slots.clear()
        return n

    def pending(self) -> tuple[Timer, ...]:
        return tuple(sorted(self._slots.values(), key=lambda t: (t.due_at_ms, t.seq)))

    def pop_due(self, now_ms: float) -> Timer | None:
        """Remove and return the earliest timer due at or before ``now_ms``."""

        due = [t for t in self._slots.values() if t.due_at_ms <= now_ms]
        if not due:
            return None
        timer = min(due, key=lambda t: (t.due_at_ms, t.seq))
        del self._slots[(timer.round_index, timer.kind)]
        return timer
