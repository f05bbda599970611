from __future__ import annotations

from concurrent.futures import Executor
from dataclasses import dataclass

from .clock import Clock
from .difficulty import DifficultyProfile, fixed_tolerance, fractional_tolerance
from .ports import FeedbackPort, ScoringBackend
from .session import SessionConfig, TherapySession, build_session
from .stimulus import PatternTemplate, RepeatPolicy, StimulusDomain

SIDES: tuple[str, ...] = ("left", "right")
DIRECTIONS: tuple[str, ...] = ("left", "right", "up", "down")


@dataclass(frozen=True, slots=True)
class GameDefinition:
    """Thin configuration record for one mini-game screen."""

    code: str
    title: str
    instructions: tuple[str, ...]
    config: SessionConfig


def _pattern(*actions: str) -> PatternTemplate:
    return PatternTemplate(actions=tuple(actions))


CLAP_PATTERNS: tuple[PatternTemplate, ...] = (
    _pattern("left", "right"),
    _pattern("left", "right", "left"),
    _pattern("right", "left", "right"),
    _pattern("left", "left", "right", "right"),
    _pattern("right", "right", "left", "left"),
    _pattern("left", "right", "left", "right"),
    _pattern("right", "left", "right", "left", "right"),
    _pattern("left", "right", "right", "left", "left", "right"),
)

RHYTHM_PATTERNS: tuple[PatternTemplate, ...] = (
    _pattern("tap", "tap", "tap"),
    _pattern("tap", "tap", "tap", "tap"),
    _pattern("tap", "tap", "tap", "tap", "tap"),
    PatternTemplate(actions=("tap", "tap", "tap"), beats=(0.0, 1.0, 3.0)),
    PatternTemplate(actions=("tap", "tap", "tap", "tap"), beats=(0.0, 0.5, 1.0, 2.0)),
)


GAMES: tuple[GameDefinition, ...] = (
    GameDefinition(
        code="arrow-match",
        title="Arrow Match",
        instructions=("Swipe the way the arrow points.",),
        config=SessionConfig(
            total_rounds=10,
            domain=StimulusDomain(actions=SIDES),
            profile=DifficultyProfile(initial_interval_ms=3000.0),
            per_round_reward=15,
            repeat_policy=RepeatPolicy.UNIFORM,
            advance_pause_ms=1000.0,
            game_code="arrow-match",
            title="Arrow Match",
            skill_tags=("direction", "visual-motor"),
        ),
    ),
    GameDefinition(
        code="elevator",
        title="Elevator",
        instructions=("Send the elevator to the floor that lights up.",),
        config=SessionConfig(
            total_rounds=10,
            domain=StimulusDomain(actions=("top", "ground")),
            profile=DifficultyProfile(initial_interval_ms=4000.0),
            per_round_reward=15,
            advance_pause_ms=1000.0,
            game_code="elevator",
            title="Elevator",
            skill_tags=("vertical-movement", "spatial"),
        ),
    ),
    GameDefinition(
        code="drum-duo",
        title="Drum Duo",
        instructions=("Hit the drum that glows. It will switch sides every beat.",),
        config=SessionConfig(
            total_rounds=6,
            domain=StimulusDomain(actions=SIDES),
            profile=DifficultyProfile(initial_interval_ms=2000.0),
            per_round_reward=15,
            repeat_policy=RepeatPolicy.ALTERNATE,
            advance_pause_ms=500.0,
            game_code="drum-duo",
            title="Drum Duo",
            skill_tags=("bilateral-coordination", "rhythm"),
        ),
    ),
    GameDefinition(
        code="jump-arrow",
        title="Jump Arrow",
        instructions=("Jump the way the arrow shows. The arrows get faster!",),
        config=SessionConfig(
            total_rounds=10,
            domain=StimulusDomain(actions=DIRECTIONS),
            profile=DifficultyProfile(
                initial_interval_ms=3000.0,
                min_interval_ms=1500.0,
                interval_step_ms=150.0,
            ),
            per_round_reward=15,
            repeat_policy=RepeatPolicy.ALTERNATE,
            cue_lead_ms=300.0,
            advance_pause_ms=800.0,
            game_code="jump-arrow",
            title="Jump Arrow",
            skill_tags=("direction", "motor-planning"),
        ),
    ),
    GameDefinition(
        code="odd-even",
        title="Odd or Even",
        instructions=("Is the number odd or even? Tap the matching side.",),
        config=SessionConfig(
            total_rounds=8,
            domain=StimulusDomain(actions=("odd", "even")),
            profile=DifficultyProfile(
                initial_interval_ms=5000.0,
                min_interval_ms=3000.0,
                interval_step_ms=250.0,
            ),
            per_round_reward=10,
            advance_pause_ms=800.0,
            game_code="odd-even",
            title="Odd or Even",
            skill_tags=("number-sense", "decision"),
        ),
    ),
    GameDefinition(
        code="clap-pattern",
        title="Clap Pattern",
        instructions=("Listen to the claps, then copy the pattern with the same hands.",),
        config=SessionConfig(
            total_rounds=8,
            domain=StimulusDomain(actions=SIDES, patterns=CLAP_PATTERNS),
            profile=DifficultyProfile(
                initial_interval_ms=600.0,
                deadline_ms=8000.0,
                tolerance=fixed_tolerance(250.0),
            ),
            retry_on_mismatch=True,
            per_round_reward=20,
            repeat_policy=RepeatPolicy.CYCLE,
            cue_lead_ms=500.0,
            advance_pause_ms=1000.0,
            game_code="clap-pattern",
            title="Clap Pattern",
            skill_tags=("rhythm", "midline", "cross-body-coordination", "pattern-copying"),
        ),
    ),
    GameDefinition(
        code="copy-my-rhythm",
        title="Copy My Rhythm",
        instructions=("Listen to the beat, then tap it back.",),
        config=SessionConfig(
            total_rounds=6,
            domain=StimulusDomain(actions=("tap",), patterns=RHYTHM_PATTERNS),
            profile=DifficultyProfile(
                initial_interval_ms=600.0,
                deadline_ms=6000.0,
                tolerance=fractional_tolerance(0.4),
            ),
            retry_on_mismatch=False,
            per_round_reward=20,
            repeat_policy=RepeatPolicy.CYCLE,
            cue_lead_ms=500.0,
            advance_pause_ms=1000.0,
            game_code="copy-my-rhythm",
            title="Copy My Rhythm",
            skill_tags=("rhythm", "auditory-memory", "timing"),
        ),
    ),
    GameDefinition(
        code="lights-in-order",
        title="Tap the Lights in Order",
        instructions=("Watch the lights, then tap them in the same order.",),
        config=SessionConfig(
            total_rounds=6,
            domain=StimulusDomain(actions=DIRECTIONS, pattern_length=3),
            profile=DifficultyProfile(
                initial_interval_ms=900.0,
                min_interval_ms=600.0,
                interval_step_ms=60.0,
                deadline_ms=7000.0,
                tolerance=fractional_tolerance(0.5),
            ),
            retry_on_mismatch=True,
            extend_deadline_on_retry=True,
            per_round_reward=15,
            repeat_policy=RepeatPolicy.ALTERNATE,
            cue_lead_ms=500.0,
            advance_pause_ms=1000.0,
            game_code="lights-in-order",
            title="Tap the Lights in Order",
            skill_tags=("sequencing", "visual-memory"),
        ),
    ),
)

GAMES_BY_CODE: dict[str, GameDefinition] = {g.code: g for g in GAMES}


def build_game_session(
    code: str,
    *,
    clock: Clock,
    seed: int,
    feedback: FeedbackPort | None = None,
    backend: ScoringBackend | None = None,
    submit_executor: Executor | None = None,
) -> TherapySession:
    """Build a validated session for a catalog game. Unknown codes raise KeyError."""

    game = GAMES_BY_CODE[code]
    return build_session(
        config=game.config,
        clock=clock,
        seed=seed,
        feedback=feedback,
        backend=backend,
        submit_executor=submit_executor,
    )
