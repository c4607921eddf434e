from __future__ import annotations

import logging
from pathlib import Path

import pygame

from .config import TrialConfig
from .controller import FeedbackState, TrialSnapshot
from .occlusion import ObstaclePatch, OcclusionGeometry
from .viewpoint import EndedView, Viewpoint

logger = logging.getLogger(__name__)

BACKGROUND = (0, 0, 0)
PROMPT_COLOR = (220, 220, 230)
CORRECT_COLOR = (0, 255, 0)
INCORRECT_COLOR = (255, 0, 0)
PROMPT_HEIGHT = 48


class ImageLibrary:
    """Loads stimulus images once and keeps them as 32-bit surfaces.

    Generated surfaces can be registered under any name, which is how the demo
    stimulus and the tests avoid touching the filesystem.
    """

    def __init__(self) -> None:
        self._cache: dict[str, pygame.Surface] = {}

    def register(self, name: str, surface: pygame.Surface) -> None:
        self._cache[name] = self._normalise(surface)

    def get(self, name: str) -> pygame.Surface:
        surface = self._cache.get(name)
        if surface is None:
            try:
                loaded = pygame.image.load(str(Path(name)))
            except (pygame.error, FileNotFoundError) as exc:
                raise FileNotFoundError(f"cannot load stimulus image {name!r}: {exc}") from exc
            surface = self._normalise(loaded)
            self._cache[name] = surface
        return surface

    def size_of(self, name: str) -> tuple[int, int]:
        return self.get(name).get_size()

    @staticmethod
    def _normalise(surface: pygame.Surface) -> pygame.Surface:
        out = pygame.Surface(surface.get_size(), pygame.SRCALPHA)
        out.blit(surface, (0, 0))
        return out


def blur_surface(surface: pygame.Surface, radius: float) -> pygame.Surface:
    """Cheap blur: scale down by (1 + radius) and back up with smoothing."""

    if radius <= 0:
        return surface
    w, h = surface.get_size()
    factor = 1.0 + float(radius)
    small = pygame.transform.smoothscale(surface, (max(1, int(w / factor)), max(1, int(h / factor))))
    return pygame.transform.smoothscale(small, (w, h))


class TrialRenderer:
    """Draws trial snapshots onto a pygame surface.

    The stimulus is drawn at the top-left of the surface at its natural size;
    the prompt (if any) goes in a strip underneath.
    """

    def __init__(
        self,
        *,
        config: TrialConfig,
        images: ImageLibrary,
        font: pygame.font.Font | None = None,
    ) -> None:
        self._cfg = config
        self._images = images
        self._font = font
        self._prompt_font: pygame.font.Font | None = None

        self._frame_size = images.size_of(config.frames[0][0][0])
        self._geometry: OcclusionGeometry | None = None
        if config.obstacle is not None:
            self._geometry = OcclusionGeometry(
                obstacle=config.obstacle,
                n_thetas=config.grid_shape[0],
                frame_size=self._frame_size,
                obstacle_size=images.size_of(config.obstacle.image),
            )
            logger.debug(
                "Obstacle covers thetas %s and phis %s",
                self._geometry.covered_thetas,
                self._geometry.covered_phis,
            )

    @property
    def frame_size(self) -> tuple[int, int]:
        return self._frame_size

    @property
    def window_size(self) -> tuple[int, int]:
        w, h = self._frame_size
        return w, h + (PROMPT_HEIGHT if self._cfg.prompt else 0)

    @property
    def geometry(self) -> OcclusionGeometry | None:
        return self._geometry

    def render(self, surface: pygame.Surface, snap: TrialSnapshot) -> None:
        surface.fill(BACKGROUND)
        if snap.feedback is not None:
            self._draw_feedback(surface, snap.feedback)
        elif isinstance(snap.view, EndedView):
            if self._cfg.stimulus_end is not None:
                surface.blit(self._images.get(self._cfg.stimulus_end), (0, 0))
        else:
            self._draw_view(surface, snap)
        self._draw_prompt(surface)

    def _draw_view(self, surface: pygame.Surface, snap: TrialSnapshot) -> None:
        view = snap.view
        assert isinstance(view, Viewpoint) and isinstance(snap.frame, int)
        image = self._images.get(self._cfg.frames[view.theta][view.phi][snap.frame])
        image = blur_surface(image, self._cfg.blur)
        alpha = int(round(self._cfg.alpha * 255))
        if alpha < 255:
            image = image.copy()
            image.set_alpha(alpha)
        surface.blit(image, (0, 0))

        if self._geometry is None or self._cfg.obstacle is None:
            return
        obstacle = self._images.get(self._cfg.obstacle.image)
        for patch in self._geometry.patches_for(view):
            self._draw_patch(surface, obstacle, patch, alpha, self._cfg.blur)

    @staticmethod
    def _draw_patch(
        surface: pygame.Surface,
        obstacle: pygame.Surface,
        patch: ObstaclePatch,
        alpha: int,
        blur: float,
    ) -> None:
        dest = patch.dest
        if dest.empty:
            return
        dest_rect = pygame.Rect(dest.x, dest.y, dest.w, dest.h)
        surface.fill(BACKGROUND, dest_rect)
        if patch.source.empty:
            return
        src = patch.source
        piece = obstacle.subsurface(pygame.Rect(src.x, src.y, src.w, src.h))
        piece = pygame.transform.smoothscale(piece, (dest.w, dest.h))
        # Same blur as the frame.
        piece = blur_surface(piece, blur)
        if alpha < 255:
            piece.set_alpha(alpha)
        surface.blit(piece, dest_rect.topleft)

    def _draw_feedback(self, surface: pygame.Surface, feedback: FeedbackState) -> None:
        if feedback.image is not None:
            surface.blit(self._images.get(feedback.image), (0, 0))
            return
        font = self._feedback_font()
        color = CORRECT_COLOR if feedback.correct else INCORRECT_COLOR
        text = font.render(feedback.text, True, color)
        w, h = self._frame_size
        surface.blit(text, text.get_rect(center=(w // 2, h // 2)))

    def _draw_prompt(self, surface: pygame.Surface) -> None:
        if not self._cfg.prompt:
            return
        if self._prompt_font is None:
            self._prompt_font = pygame.font.Font(None, 24)
        text = self._prompt_font.render(self._cfg.prompt, True, PROMPT_COLOR)
        w, h = self._frame_size
        surface.blit(text, text.get_rect(center=(w // 2, h + PROMPT_HEIGHT // 2)))

    def _feedback_font(self) -> pygame.font.Font:
        if self._font is None:
            self._font = pygame.font.Font(None, 40)
            self._font.set_bold(True)
        return self._font
