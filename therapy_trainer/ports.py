from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from .round_core import SessionSummary, Stimulus


class FeedbackPort(Protocol):
    """Outbound notifications for the presentation layer.

    Every call is one-way; the engine ignores return values and never waits
    for animation, sound or speech to finish.
    """

    def on_round_presented(self, round_index: int, stimulus: Stimulus) -> None: ...
    def on_capture_opened(self, round_index: int) -> None: ...
    def on_round_success(self, round_index: int) -> None: ...
    def on_round_miss(self, round_index: int) -> None: ...
    def on_round_retry(self, round_index: int) -> None: ...
    def on_session_completed(self, summary: SessionSummary) -> None: ...


@dataclass(frozen=True, slots=True)
class SubmissionReceipt:
    accepted_at: float  # unix seconds
    remote_id: str | None = None


class ScoringBackend(Protocol):
    def submit(self, summary: SessionSummary) -> SubmissionReceipt:
        """Persist or upload a finished session. Raise on failure."""
        ...


class NullFeedback:
    def on_round_presented(self, round_index: int, stimulus: Stimulus) -> None:
        pass

    def on_capture_opened(self, round_index: int) -> None:
        pass

    def on_round_success(self, round_index: int) -> None:
        pass

    def on_round_miss(self, round_index: int) -> None:
        pass

    def on_round_retry(self, round_index: int) -> None:
        pass

    def on_session_completed(self, summary: SessionSummary) -> None:
        pass


@dataclass
class FeedbackRecorder:
    """In-memory feedback sink for headless runs: keeps (event, payload) pairs."""

    events: list[tuple[str, object]] = field(default_factory=list)

    def on_round_presented(self, round_index: int, stimulus: Stimulus) -> None:
        self.events.append(("presented", (round_index, stimulus)))

    def on_capture_opened(self, round_index: int) -> None:
        self.events.append(("capture", round_index))

    def on_round_success(self, round_index: int) -> None:
        self.events.append(("success", round_index))

    def on_round_miss(self, round_index: int) -> None:
        self.events.append(("miss", round_index))

    def on_round_retry(self, round_index: int) -> None:
        self.events.append(("retry", round_index))

    def on_session_completed(self, summary: SessionSummary) -> None:
        self.events.append(("completed", summary))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def count(self, name: str) -> int:
        return sum(1 for n, _ in self.events if n == name)
