from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Viewpoint:
    theta: int  # horizontal coordinate, 0 <= theta < J
    phi: int  # vertical coordinate, 0 <= phi < I


@dataclass(frozen=True, slots=True)
class EndedView:
    """Display marker for a finished sequence with an end stimulus configured."""


DisplayView = Viewpoint | EndedView


class ViewpointGrid:
    """Coordinate model of a J x I multi-view video.

    Theta wraps around (the cameras circle the scene). Phi is closed at both
    poles: a vertical move past a pole keeps phi where it is and turns theta by
    half a circle instead, i.e. the view goes over the top to the other side.
    """

    def __init__(self, *, n_thetas: int, n_phis: int) -> None:
        if n_thetas <= 0:
            raise ValueError("n_thetas must be > 0")
        if n_phis <= 0:
            raise ValueError("n_phis must be > 0")
        self._n_thetas = int(n_thetas)
        self._n_phis = int(n_phis)

    @property
    def n_thetas(self) -> int:
        return self._n_thetas

    @property
    def n_phis(self) -> int:
        return self._n_phis

    @property
    def half_turn(self) -> int:
        return self._n_thetas // 2

    def contains(self, view: Viewpoint) -> bool:
        return 0 <= view.theta < self._n_thetas and 0 <= view.phi < self._n_phis

    def advance(self, view: Viewpoint, d_theta: int, d_phi: int) -> tuple[Viewpoint, bool]:
        """Apply a movement delta. Returns (new_view, moved)."""

        theta = (view.theta + int(d_theta)) % self._n_thetas
        phi = view.phi
        if d_phi != 0:
            candidate = phi + int(d_phi)
            if 0 <= candidate < self._n_phis:
                phi = candidate
            else:
                theta = (theta + self.half_turn) % self._n_thetas

        moved = d_theta != 0 or d_phi != 0
        return Viewpoint(theta=theta, phi=phi), moved
