"""Append-only trajectory log of one trial.

The record has two groups of channels that are kept the same length:

- state channels (frame, repetition, time, theta, phi) open with the starting
  state and get one entry per logged tick;
- event channels (phase, moved, movement reaction time, delta theta, delta phi)
  get one entry per logged tick and one closing entry when the trial stops
  animating.

So entry k of the event channels describes the step that led away from state
entry k. Until the log is closed the event channels are one entry short.
"""

from __future__ import annotations

from dataclasses import dataclass

from .phases import NONE, NoValue, Phase, PhaseState
from .viewpoint import Viewpoint

Value = int | float | NoValue


@dataclass(frozen=True, slots=True)
class TrajectoryRow:
    frame: int | NoValue
    rep: int | NoValue
    phase: Phase
    theta: int | NoValue
    phi: int | NoValue
    delta_theta: int | NoValue
    delta_phi: int | NoValue
    reaction_time_ms: float | NoValue
    moved: int | NoValue  # 0/1, NONE on padding rows
    time_ms: float


@dataclass(frozen=True, slots=True)
class TrajectoryChannels:
    frames: tuple[Value, ...]
    reps_times: tuple[Value, ...]
    phases_times: tuple[Value, ...]
    times: tuple[Value, ...]
    thetas_views: tuple[Value, ...]
    phis_views: tuple[Value, ...]
    movements_times: tuple[Value, ...]
    RT_movements: tuple[Value, ...]
    deltas: tuple[Value, ...]
    lambdas: tuple[Value, ...]

    def lengths(self) -> dict[str, int]:
        return {name: len(getattr(self, name)) for name in self.__dataclass_fields__}


def _view_coords(state: PhaseState) -> tuple[int | NoValue, int | NoValue]:
    if isinstance(state.view, Viewpoint):
        return state.view.theta, state.view.phi
    return NONE, NONE


class TrajectoryRecorder:
    def __init__(self, start: PhaseState) -> None:
        theta, phi = _view_coords(start)
        self._start = (start.frame, start.rep, 0.0, theta, phi)
        self._rows: list[TrajectoryRow] = []
        self._closing_phase: Phase | None = None

    @property
    def rows(self) -> tuple[TrajectoryRow, ...]:
        return tuple(self._rows)

    @property
    def closed(self) -> bool:
        return self._closing_phase is not None

    def record_tick(
        self,
        state: PhaseState,
        *,
        phase: Phase,
        delta_theta: int,
        delta_phi: int,
        reaction_time_ms: float | NoValue,
        moved: bool,
        time_ms: float,
    ) -> TrajectoryRow:
        """Log the state reached by a tick that stepped the frame."""

        self._check_open()
        theta, phi = _view_coords(state)
        row = TrajectoryRow(
            frame=state.frame,
            rep=state.rep,
            phase=phase,
            theta=theta,
            phi=phi,
            delta_theta=delta_theta,
            delta_phi=delta_phi,
            reaction_time_ms=reaction_time_ms,
            moved=int(moved),
            time_ms=float(time_ms),
        )
        self._rows.append(row)
        return row

    def record_completion(self, state: PhaseState, *, phase: Phase, time_ms: float) -> TrajectoryRow:
        """Log the frozen end state and close the log with the ended phase."""

        self._check_open()
        theta, phi = _view_coords(state)
        row = TrajectoryRow(
            frame=state.frame,
            rep=state.rep,
            phase=phase,
            theta=theta,
            phi=phi,
            delta_theta=NONE,
            delta_phi=NONE,
            reaction_time_ms=NONE,
            moved=NONE,
            time_ms=float(time_ms),
        )
        self._rows.append(row)
        self._closing_phase = Phase.WAITING_CLASSIFICATION
        return row

    def record_interrupt(self, phase: Phase) -> None:
        """Close the log because a classification cut the phase short."""

        self._check_open()
        self._closing_phase = phase

    def channels(self) -> TrajectoryChannels:
        frame0, rep0, time0, theta0, phi0 = self._start
        rows = self._rows

        closing: tuple[Value, ...] = ()
        closing_none: tuple[Value, ...] = ()
        if self._closing_phase is not None:
            closing = (int(self._closing_phase),)
            closing_none = (NONE,)

        return TrajectoryChannels(
            frames=(frame0, *(r.frame for r in rows)),
            reps_times=(rep0, *(r.rep for r in rows)),
            phases_times=(*(int(r.phase) for r in rows), *closing),
            times=(time0, *(r.time_ms for r in rows)),
            thetas_views=(theta0, *(r.theta for r in rows)),
            phis_views=(phi0, *(r.phi for r in rows)),
            movements_times=(*(r.moved for r in rows), *closing_none),
            RT_movements=(*(r.reaction_time_ms for r in rows), *closing_none),
            deltas=(*(r.delta_theta for r in rows), *closing_none),
            lambdas=(*(r.delta_phi for r in rows), *closing_none),
        )

    def _check_open(self) -> None:
        if self._closing_phase is not None:
            raise RuntimeError("trajectory is closed")
