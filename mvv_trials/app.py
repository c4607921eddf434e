"""Pygame shell that runs one move-view-and-categorize trial.

The trial definition comes from the JSON file named by ``MVV_TRIAL_CONFIG``;
without it a generated demo video (8 x 3 views, 12 frames, with an obstacle)
is used. The shell only forwards key presses, ticks the controller and draws
snapshots; deterministic timing/state lives in the core modules. The finished
result record is logged and handed to ``on_finish``; nothing is written to disk.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

import pygame

from .config import CONFIG_PATH_ENV, ObstacleConfig, TrialConfig, load_trial_config
from .controller import TrialController
from .renderer import ImageLibrary, TrialRenderer
from .results import TrialResult
from .trial_clock import RealClock

logger = logging.getLogger(__name__)

LOG_LEVEL_ENV = "MVV_LOG_LEVEL"
TARGET_FPS = 60


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


class App:
    def __init__(self, surface: pygame.Surface) -> None:
        self._surface = surface
        self._screens: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if not self._screens:
            return
        self._screens[-1].handle_event(event)

    def render(self) -> None:
        if not self._screens:
            return
        self._screens[-1].render(self._surface)


class TrialScreen:
    def __init__(self, app: App, *, controller: TrialController, renderer: TrialRenderer) -> None:
        self._app = app
        self._controller = controller
        self._renderer = renderer
        self._controller.start()

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        # Shift+Esc aborts the trial without a result.
        if event.key == pygame.K_ESCAPE and (event.mod & pygame.KMOD_SHIFT):
            logger.warning("Trial aborted by operator")
            self._controller.end_trial()
            self._app.quit()
            return
        self._controller.submit_key(pygame.key.name(event.key))

    def render(self, surface: pygame.Surface) -> None:
        self._controller.update()
        if self._controller.finished:
            self._app.quit()
            return
        self._renderer.render(surface, self._controller.snapshot())


def _demo_frame(theta: int, phi: int, t: int, *, n_thetas: int, n_frames: int, font: pygame.font.Font) -> pygame.Surface:
    w, h = 480, 320
    surface = pygame.Surface((w, h), pygame.SRCALPHA)
    hue = int(360 * theta / n_thetas)
    bg = pygame.Color(0)
    bg.hsva = (hue, 45, 35 + 20 * phi, 100)
    surface.fill(bg)

    # A dot orbiting the scene; its apparent position depends on the view angle.
    x = int(w * (0.15 + 0.7 * ((t / n_frames + theta / n_thetas) % 1.0)))
    y = int(h * (0.3 + 0.2 * phi))
    pygame.draw.circle(surface, (250, 250, 250), (x, y), 18)

    label = font.render(f"theta {theta}  phi {phi}  t {t}", True, (240, 240, 240))
    surface.blit(label, (12, 12))
    return surface


def _demo_obstacle(size: tuple[int, int]) -> pygame.Surface:
    w, h = size
    surface = pygame.Surface((w, h), pygame.SRCALPHA)
    surface.fill((120, 70, 40))
    for y in range(0, h, 24):
        offset = 0 if (y // 24) % 2 == 0 else 24
        for x in range(-offset, w, 48):
            pygame.draw.rect(surface, (90, 50, 30), pygame.Rect(x, y, 48, 24), 2)
    return surface


def build_demo_trial(images: ImageLibrary) -> TrialConfig:
    """Generated stimulus used when no trial config is given."""

    n_thetas, n_phis, n_frames = 8, 3, 12
    font = pygame.font.Font(None, 28)
    frames = tuple(
        tuple(tuple(f"demo/{theta}/{phi}/{t}" for t in range(n_frames)) for phi in range(n_phis))
        for theta in range(n_thetas)
    )
    for theta in range(n_thetas):
        for phi in range(n_phis):
            for t in range(n_frames):
                surface = _demo_frame(theta, phi, t, n_thetas=n_thetas, n_frames=n_frames, font=font)
                images.register(frames[theta][phi][t], surface)

    images.register("demo/obstacle", _demo_obstacle((1440, 320)))
    return TrialConfig(
        frames=frames,
        start_view=(0, 1),
        key_class="a",
        classification_keys=("a", "l"),
        movement_budgets=(4, -1),
        frame_time_ms=150.0,
        sequence_reps=2,
        allow_classification_in_playing=True,
        prompt="Arrows move the view. Press A or L to classify.",
        obstacle=ObstacleConfig(
            image="demo/obstacle",
            theta_left=2,
            theta_right=4,
            phi_top=0,
            phi_bottom=1,
        ),
    )


def _configure_logging() -> None:
    level_name = os.environ.get(LOG_LEVEL_ENV, "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def run(
    *,
    max_frames: int | None = None,
    config_path: Path | None = None,
    event_injector: Callable[[int], None] | None = None,
    on_finish: Callable[[TrialResult], None] | None = None,
) -> int:
    _configure_logging()
    pygame.init()
    pygame.display.set_caption("Multi-view video categorization")

    if config_path is None and os.environ.get(CONFIG_PATH_ENV):
        config_path = Path(os.environ[CONFIG_PATH_ENV])

    results: list[TrialResult] = []

    def finished(result: TrialResult) -> None:
        results.append(result)
        logger.info("Result record: %s", result.to_record())
        if on_finish is not None:
            on_finish(result)

    try:
        # A display mode must exist before images can be built or loaded.
        surface = pygame.display.set_mode((480, 320))
        images = ImageLibrary()
        config = load_trial_config(config_path) if config_path is not None else build_demo_trial(images)
        renderer = TrialRenderer(config=config, images=images)
        surface = pygame.display.set_mode(renderer.window_size)

        controller = TrialController(config=config, clock=RealClock(), on_finish=finished)
        app = App(surface=surface)
        app.push(TrialScreen(app, controller=controller, renderer=renderer))

        clock = pygame.time.Clock()
        frame = 0
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                controller.end_trial()
                break

            clock.tick(TARGET_FPS)
    finally:
        pygame.quit()

    return 0
