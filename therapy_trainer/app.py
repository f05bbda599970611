"""Pygame shell for the therapy mini-game trainer.

Each catalog game runs on the shared round engine; this module only draws
the current stimulus, turns key presses into actions and shows feedback.
Deterministic timing/scoring/RNG/state lives in therapy_trainer/* (core modules).
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Protocol

import pygame

from .api_client import HttpScoringBackend
from .clock import RealClock
from .games import GAMES, GameDefinition, build_game_session
from .persistence import SqliteScoringBackend, default_db_path
from .ports import ScoringBackend
from .results import summary_lines
from .round_core import PatternStimulus, SequencerState, SessionSummary, SingleTarget, Stimulus
from .session import TherapySession

logger = logging.getLogger(__name__)

WINDOW_SIZE = (960, 640)
TARGET_FPS = 60

KEY_ACTIONS: dict[int, str] = {
    pygame.K_LEFT: "left",
    pygame.K_a: "left",
    pygame.K_RIGHT: "right",
    pygame.K_d: "right",
    pygame.K_UP: "up",
    pygame.K_w: "up",
    pygame.K_DOWN: "down",
    pygame.K_s: "down",
    pygame.K_SPACE: "tap",
    pygame.K_o: "odd",
    pygame.K_e: "even",
}

# Some games name the same physical gesture differently.
ACTION_ALIASES: dict[str, str] = {"up": "top", "down": "ground"}

ACTION_GLYPHS: dict[str, str] = {
    "left": "<",
    "right": ">",
    "up": "^",
    "down": "v",
    "top": "^",
    "ground": "v",
    "tap": "*",
}


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def update(self) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...
    def on_resume(self) -> None: ...
    def on_exit(self) -> None: ...


class App:
    """Screen stack. Popping a screen runs its exit hook before the one below resumes."""

    def __init__(self, surface: pygame.Surface) -> None:
        self._surface = surface
        self._stack: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def depth(self) -> int:
        return len(self._stack)

    def push(self, screen: Screen) -> None:
        self._stack.append(screen)

    def pop(self) -> None:
        if len(self._stack) <= 1:
            return
        self._stack.pop().on_exit()
        self._stack[-1].on_resume()

    def quit(self) -> None:
        while self._stack:
            self._stack.pop().on_exit()
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
        elif self._stack:
            self._stack[-1].handle_event(event)

    def update(self) -> None:
        if self._stack:
            self._stack[-1].update()

    def render(self) -> None:
        if self._stack:
            self._stack[-1].render(self._surface)


class GameMenuScreen:
    """Root menu: one row per catalog game plus the highlighted game's instructions."""

    def __init__(
        self,
        app: App,
        games: tuple[GameDefinition, ...],
        *,
        on_select: Callable[[GameDefinition], None],
        xp_total: Callable[[], int | None] | None = None,
    ) -> None:
        self._app = app
        self._games = games
        self._on_select = on_select
        self._xp_total = xp_total
        self._xp: int | None = None
        self._selected = 0
        self._title_font = pygame.font.Font(None, 42)
        self._item_font = pygame.font.Font(None, 30)
        self._hint_font = pygame.font.Font(None, 22)
        self.on_resume()

    @property
    def selected(self) -> GameDefinition:
        return self._games[self._selected]

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_UP, pygame.K_w):
            self._selected = (self._selected - 1) % len(self._games)
        elif event.key in (pygame.K_DOWN, pygame.K_s):
            self._selected = (self._selected + 1) % len(self._games)
        elif event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            self._on_select(self.selected)
        elif event.key in (pygame.K_ESCAPE, pygame.K_q):
            self._app.quit()

    def update(self) -> None:
        pass

    def on_resume(self) -> None:
        if self._xp_total is None:
            return
        try:
            self._xp = self._xp_total()
        except Exception:
            logger.exception("could not read XP total")
            self._xp = None

    def on_exit(self) -> None:
        pass

    def render(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        surface.fill((24, 16, 64))

        heading = self._title_font.render("Pick a game", True, (238, 245, 255))
        surface.blit(heading, heading.get_rect(center=(w // 2, 44)))
        if self._xp is not None:
            xp = self._hint_font.render(f"Total XP: {self._xp}", True, (250, 214, 92))
            surface.blit(xp, xp.get_rect(topright=(w - 24, 18)))

        list_w = w // 2
        row_h = max(28, min(40, (h - 140) // max(1, len(self._games))))
        y = 90
        for idx, game in enumerate(self._games):
            row = pygame.Rect(40, y, list_w - 60, row_h - 6)
            chosen = idx == self._selected
            pygame.draw.rect(surface, (250, 214, 92) if chosen else (48, 36, 112), row, border_radius=8)
            label = self._item_font.render(game.title, True, (30, 20, 60) if chosen else (238, 245, 255))
            surface.blit(label, (row.x + 12, row.y + (row.h - label.get_height()) // 2))
            y += row_h

        info_y = 96
        for line in self.selected.instructions:
            text = self._hint_font.render(line, True, (186, 200, 224))
            surface.blit(text, (list_w + 10, info_y))
            info_y += 26
        rounds = self._hint_font.render(
            f"{self.selected.config.total_rounds} rounds, {self.selected.config.per_round_reward} XP each",
            True,
            (186, 200, 224),
        )
        surface.blit(rounds, (list_w + 10, info_y + 10))

        foot = self._hint_font.render("Up/Down: choose  |  Enter: play  |  Esc: quit", True, (186, 200, 224))
        surface.blit(foot, foot.get_rect(midbottom=(w // 2, h - 12)))


class RoundGameScreen:
    """Presentation adapter: renders one session and forwards key presses."""

    def __init__(self, app: App, *, game: GameDefinition, session_factory: Callable[["RoundGameScreen"], TherapySession]) -> None:
        self._app = app
        self._game = game
        self._rng = random.Random()
        self._cue = "Get ready!"
        self._feedback = ""
        self._number_for_round: dict[int, int] = {}
        self._summary: SessionSummary | None = None
        self._title_font = pygame.font.Font(None, 40)
        self._big_font = pygame.font.Font(None, 140)
        self._small_font = pygame.font.Font(None, 28)
        self._session = session_factory(self)
        self._session.start()

    @property
    def session(self) -> TherapySession:
        return self._session

    # FeedbackPort

    def on_round_presented(self, round_index: int, stimulus: Stimulus) -> None:
        self._feedback = ""
        if isinstance(stimulus, PatternStimulus):
            self._cue = "Listen to the pattern!"
        else:
            self._cue = "Go!"
        if isinstance(stimulus, SingleTarget) and stimulus.expected in ("odd", "even"):
            n = self._rng.randint(1, 20)
            if (n % 2 == 1) != (stimulus.expected == "odd"):
                n += 1
            self._number_for_round[round_index] = n

    def on_capture_opened(self, round_index: int) -> None:
        stimulus = self._stimulus()
        if isinstance(stimulus, PatternStimulus):
            self._cue = "Now copy the pattern!"

    def on_round_success(self, round_index: int) -> None:
        self._feedback = "Perfect!"

    def on_round_miss(self, round_index: int) -> None:
        self._feedback = "Let's try the next one!"

    def on_round_retry(self, round_index: int) -> None:
        self._feedback = "Try again!"

    def on_session_completed(self, summary: SessionSummary) -> None:
        self._summary = summary
        self._cue = "Well done!"

    # Screen

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            self._app.pop()
            return
        action = KEY_ACTIONS.get(event.key)
        if action is None:
            return
        legal = self._game.config.domain.actions
        if action not in legal:
            action = ACTION_ALIASES.get(action, action)
        self._session.report_action(action)

    def update(self) -> None:
        self._session.update()

    def on_resume(self) -> None:
        pass

    def on_exit(self) -> None:
        self._session.close()

    def render(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        surface.fill((16, 40, 72))
        snap = self._session.snapshot()

        title = self._title_font.render(snap.title, True, (240, 240, 255))
        surface.blit(title, (24, 20))
        round_no = snap.total_rounds if snap.round_index is None else snap.round_index + 1
        status = f"Round {round_no}/{snap.total_rounds}  Score: {snap.score}"
        surface.blit(self._small_font.render(status, True, (200, 210, 230)), (24, 64))

        if snap.state is SequencerState.COMPLETED and self._summary is not None:
            y = 140
            for line in summary_lines(self._summary):
                text = self._title_font.render(line, True, (250, 230, 140))
                surface.blit(text, text.get_rect(center=(w // 2, y)))
                y += 48
            hint = self._small_font.render("Esc: back to games", True, (200, 210, 230))
            surface.blit(hint, hint.get_rect(midbottom=(w // 2, h - 16)))
            return

        glyph = self._stimulus_text(snap.round_index, snap.stimulus)
        if glyph:
            big = self._big_font.render(glyph, True, (255, 255, 255))
            surface.blit(big, big.get_rect(center=(w // 2, h // 2)))

        cue = self._title_font.render(self._cue, True, (160, 230, 255))
        surface.blit(cue, cue.get_rect(center=(w // 2, h // 2 - 120)))
        if self._feedback:
            fb = self._title_font.render(self._feedback, True, (250, 230, 140))
            surface.blit(fb, fb.get_rect(center=(w // 2, h // 2 + 120)))

        window = self._window_ms()
        if snap.time_remaining_ms is not None and window > 0.0:
            frac = max(0.0, min(1.0, snap.time_remaining_ms / window))
            bar = pygame.Rect(24, h - 40, int((w - 48) * frac), 14)
            pygame.draw.rect(surface, (120, 220, 140), bar, border_radius=6)

    def _window_ms(self) -> float:
        rnd = self._session.active_round
        if rnd is None or rnd.deadline_at_ms is None or rnd.capture_opened_at_ms is None:
            return 0.0
        return rnd.deadline_at_ms - rnd.capture_opened_at_ms

    def _stimulus(self) -> Stimulus | None:
        rnd = self._session.active_round
        return None if rnd is None else rnd.stimulus

    def _stimulus_text(self, round_index: int | None, stimulus: Stimulus | None) -> str:
        if stimulus is None or round_index is None:
            return ""
        if isinstance(stimulus, PatternStimulus):
            return " ".join(ACTION_GLYPHS.get(a, a) for a in stimulus.actions)
        if round_index in self._number_for_round:
            return str(self._number_for_round[round_index])
        return ACTION_GLYPHS.get(stimulus.expected, stimulus.expected)


def _new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


def _default_backend() -> ScoringBackend:
    http = HttpScoringBackend.from_env()
    if http is not None:
        return http
    return SqliteScoringBackend(default_db_path())


def run(*, max_frames: int | None = None, event_injector: Callable[[int], None] | None = None) -> int:
    pygame.init()
    pygame.display.set_caption("Therapy Trainer")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)
    frame_clock = pygame.time.Clock()
    app = App(surface)

    session_clock = RealClock()
    backend = _default_backend()
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="submit")
    xp_total = backend.total_reward if isinstance(backend, SqliteScoringBackend) else None

    def open_game(game: GameDefinition) -> None:
        seed = _new_seed()
        logger.debug("opening %s with seed %d", game.code, seed)

        def factory(screen: RoundGameScreen) -> TherapySession:
            return build_game_session(
                game.code,
                clock=session_clock,
                seed=seed,
                feedback=screen,
                backend=backend,
                submit_executor=executor,
            )

        app.push(RoundGameScreen(app, game=game, session_factory=factory))

    app.push(GameMenuScreen(app, GAMES, on_select=open_game, xp_total=xp_total))

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)
            for event in pygame.event.get():
                app.handle_event(event)
            if not app.running:
                break

            app.update()
            app.render()
            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break
            frame_clock.tick(TARGET_FPS)
    finally:
        app.quit()
        executor.shutdown(wait=False)
        pygame.quit()

    return 0
