"""Obstacle overlay geometry.

The obstacle is a wide image laid across a block of viewpoints. Thetas from
``theta_left`` to ``theta_right`` (wrapping past J-1) and phis from
``phi_top`` to ``phi_bottom`` show part of it. Walking across the covered
thetas slides a source window over the obstacle image:

- at ``theta_left`` the obstacle enters from the right, starting at the
  ``left_margin`` fraction of the frame width;
- interior thetas are fully covered by a window of the scaled frame width;
- at ``theta_right`` only the part left of ``right_margin`` is covered.

Phi works the same way with ``top_margin``/``bottom_margin``, without wrap.
When both edges fall on the same theta (or phi) the window collapses to the
band between the two fractions, or, if the left fraction is the larger one,
the obstacle wraps all the way around and that view shows both edges.

All values are integer pixels, rounded half-up, and every source rectangle is
clipped to the obstacle image.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from .config import ObstacleConfig
from .core import round_half_up
from .viewpoint import DisplayView, Viewpoint


@dataclass(frozen=True, slots=True)
class Rect:
    x: int
    y: int
    w: int
    h: int

    @property
    def empty(self) -> bool:
        return self.w <= 0 or self.h <= 0


@dataclass(frozen=True, slots=True)
class ObstaclePatch:
    source: Rect  # region of the obstacle image
    dest: Rect  # region of the stimulus frame that is cleared and covered


@dataclass(frozen=True, slots=True)
class AxisWindows:
    """Per-axis slicing: covered indices plus edge and interior windows."""

    covered: tuple[int, ...]
    full_source: int  # source extent for interior slices
    full_dest: int  # destination extent for interior slices (frame size)
    near_source: int  # left / top edge
    far_source: int  # right / bottom edge
    near_dest_offset: int
    far_dest_offset: int
    near_dest: int
    far_dest: int
    offsets: tuple[int, ...]  # source offset per covered slice


def _covered_thetas(left: int, right: int, lm: float, rm: float, n_thetas: int) -> tuple[int, ...]:
    if left < right:
        return tuple(range(left, right + 1))
    wrapped = tuple(range(left, n_thetas)) + tuple(range(0, right + 1))
    if left > right:
        return wrapped
    if lm < rm:
        return (left,)
    if rm < lm:
        return wrapped
    return ()


def _slice_offsets(
    *,
    n_slices: int,
    obstacle_extent: int,
    full_source: int,
    near_source: int,
    far_source: int,
    outer_margin: float,
) -> tuple[int, ...]:
    if n_slices <= 0:
        return ()
    first = full_source - near_source
    if n_slices == 1:
        return (0,)

    step = round_half_up((obstacle_extent - far_source + first) / (n_slices - 1))
    if outer_margin == 0:
        if step > full_source:
            step = round_half_up(full_source * 0.25)
    elif 0 < outer_margin <= 1:
        if step > full_source * outer_margin:
            step = round_half_up(full_source * outer_margin)

    offsets = [-first]
    for _ in range(1, n_slices):
        offsets.append(math.floor(offsets[-1] + step))
    offsets[0] = 0
    return tuple(offsets)


def _axis_windows(
    *,
    covered: tuple[int, ...],
    same_edge: bool,
    near: float,
    far: float,
    frame_extent: int,
    obstacle_extent: int,
    scale: float,
    wrap_single: bool,
) -> AxisWindows:
    full_source = round_half_up(frame_extent / scale)

    if not same_edge or (wrap_single and far < near):
        near_source = round_half_up(full_source * (1 - near))
        far_source = round_half_up(full_source * far)
        far_dest_offset = 0
        near_dest = round_half_up(frame_extent * (1 - near))
        far_dest = round_half_up(frame_extent * far)
    elif near < far:
        band = far - near
        near_source = far_source = round_half_up(full_source * band)
        far_dest_offset = round_half_up(frame_extent * near)
        near_dest = far_dest = round_half_up(frame_extent * band)
    else:
        near_source = far_source = 0
        far_dest_offset = 0
        near_dest = far_dest = 0

    offsets = _slice_offsets(
        n_slices=len(covered),
        obstacle_extent=obstacle_extent,
        full_source=full_source,
        near_source=near_source,
        far_source=far_source,
        outer_margin=max(near, 1 - far),
    )
    return AxisWindows(
        covered=covered,
        full_source=full_source,
        full_dest=frame_extent,
        near_source=near_source,
        far_source=far_source,
        near_dest_offset=round_half_up(frame_extent * near),
        far_dest_offset=far_dest_offset,
        near_dest=near_dest,
        far_dest=far_dest,
        offsets=offsets,
    )


def _clip(start: int, extent: int, limit: int) -> tuple[int, int]:
    start = max(0, min(start, limit))
    extent = max(0, min(extent, limit - start))
    return start, extent


class OcclusionGeometry:
    """Precomputed overlay rectangles for one trial."""

    def __init__(
        self,
        *,
        obstacle: ObstacleConfig,
        n_thetas: int,
        frame_size: tuple[int, int],
        obstacle_size: tuple[int, int],
    ) -> None:
        frame_w, frame_h = (int(v) for v in frame_size)
        obstacle_w, obstacle_h = (int(v) for v in obstacle_size)
        if frame_w <= 0 or frame_h <= 0:
            raise ValueError("frame_size must be positive")
        if obstacle_w <= 0 or obstacle_h <= 0:
            raise ValueError("obstacle_size must be positive")

        self._cfg = obstacle
        self._obstacle_size = (obstacle_w, obstacle_h)

        self._thetas = _axis_windows(
            covered=_covered_thetas(
                obstacle.theta_left,
                obstacle.theta_right,
                obstacle.left_margin,
                obstacle.right_margin,
                n_thetas,
            ),
            same_edge=obstacle.theta_left == obstacle.theta_right,
            near=obstacle.left_margin,
            far=obstacle.right_margin,
            frame_extent=frame_w,
            obstacle_extent=obstacle_w,
            scale=obstacle.scale_width,
            wrap_single=True,
        )
        phis: tuple[int, ...] = tuple(range(obstacle.phi_top, obstacle.phi_bottom + 1))
        self._phis = _axis_windows(
            covered=phis,
            same_edge=obstacle.phi_top == obstacle.phi_bottom,
            near=obstacle.top_margin,
            far=obstacle.bottom_margin,
            frame_extent=frame_h,
            obstacle_extent=obstacle_h,
            scale=obstacle.scale_height,
            wrap_single=False,
        )
        self._cache: dict[Viewpoint, tuple[ObstaclePatch, ...]] = {}

    @property
    def thetas(self) -> AxisWindows:
        return self._thetas

    @property
    def phis(self) -> AxisWindows:
        return self._phis

    @property
    def covered_thetas(self) -> tuple[int, ...]:
        return self._thetas.covered

    @property
    def covered_phis(self) -> tuple[int, ...]:
        return self._phis.covered

    def is_occluded(self, view: DisplayView) -> bool:
        if not isinstance(view, Viewpoint):
            return False
        return view.theta in self._thetas.covered and view.phi in self._phis.covered

    def patches_for(self, view: DisplayView) -> tuple[ObstaclePatch, ...]:
        """Rectangles to composite for a view, in drawing order."""

        if not self.is_occluded(view):
            return ()
        assert isinstance(view, Viewpoint)
        cached = self._cache.get(view)
        if cached is None:
            cached = self._compute(view)
            self._cache[view] = cached
        return cached

    def _compute(self, view: Viewpoint) -> tuple[ObstaclePatch, ...]:
        cfg = self._cfg
        tw, pw = self._thetas, self._phis
        e = tw.covered.index(view.theta)
        v = pw.covered.index(view.phi)

        if view.theta == cfg.theta_left:
            s_w, d_x, d_w = tw.near_source, tw.near_dest_offset, tw.near_dest
        elif view.theta == cfg.theta_right:
            s_w, d_x, d_w = tw.far_source, tw.far_dest_offset, tw.far_dest
        else:
            s_w, d_x, d_w = tw.full_source, tw.far_dest_offset, tw.full_dest

        if view.phi == cfg.phi_top:
            s_h, d_y, d_h = pw.near_source, pw.near_dest_offset, pw.near_dest
        elif view.phi == cfg.phi_bottom:
            s_h, d_y, d_h = pw.far_source, pw.far_dest_offset, pw.far_dest
        else:
            s_h, d_y, d_h = pw.full_source, pw.far_dest_offset, pw.full_dest

        patches = [self._patch(tw.offsets[e], pw.offsets[v], s_w, s_h, d_x, d_y, d_w, d_h)]

        wraps_in_place = (
            cfg.theta_left == cfg.theta_right
            and view.theta == cfg.theta_left
            and cfg.right_margin < cfg.left_margin
        )
        if wraps_in_place:
            patches.append(
                self._patch(
                    tw.offsets[-1],
                    pw.offsets[v],
                    tw.far_source,
                    s_h,
                    tw.far_dest_offset,
                    d_y,
                    tw.far_dest,
                    d_h,
                )
            )
        return tuple(patches)

    def _patch(self, s_x: int, s_y: int, s_w: int, s_h: int, d_x: int, d_y: int, d_w: int, d_h: int) -> ObstaclePatch:
        obstacle_w, obstacle_h = self._obstacle_size
        s_x, s_w = _clip(s_x, s_w, obstacle_w)
        s_y, s_h = _clip(s_y, s_h, obstacle_h)
        return ObstaclePatch(source=Rect(s_x, s_y, s_w, s_h), dest=Rect(d_x, d_y, d_w, d_h))
