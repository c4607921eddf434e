"""Three-phase trial lifecycle as a pure state transition.

MOVE_TO_PLAY: the video only advances when the view is moved.
PLAYING: the video advances on every tick; movements are optional and capped.
WAITING_CLASSIFICATION: the sequence is over and the view is frozen.

``step`` takes one ``PhaseState`` plus the movement intent consumed at that
tick and returns the next state. It never touches timers, input or drawing,
so every rule here can be tested tick by tick.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum, IntEnum

from .viewpoint import DisplayView, EndedView, Viewpoint, ViewpointGrid


class NoValue(Enum):
    """Explicit "not applicable" marker for logged values."""

    NONE = "none"

    def __str__(self) -> str:
        return self.value


NONE = NoValue.NONE


class Phase(IntEnum):
    MOVE_TO_PLAY = 0
    PLAYING = 1
    WAITING_CLASSIFICATION = 2


@dataclass(frozen=True, slots=True)
class Unbounded:
    def allows(self, used: int) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Bounded:
    limit: int

    def allows(self, used: int) -> bool:
        return used < self.limit


MovementBudget = Unbounded | Bounded


def parse_budget(value: int) -> MovementBudget:
    """Integer form used by experiment configs: -1 = unlimited, n >= 0 = at most n."""

    n = int(value)
    if n == -1:
        return Unbounded()
    if n < 0:
        raise ValueError("movement budget must be >= -1")
    return Bounded(n)


@dataclass(frozen=True, slots=True)
class MovementIntent:
    d_theta: int = 0
    d_phi: int = 0
    reaction_time_ms: float | NoValue = NONE

    @property
    def is_empty(self) -> bool:
        return self.d_theta == 0 and self.d_phi == 0


NO_MOVEMENT = MovementIntent()


@dataclass(frozen=True, slots=True)
class PhaseRules:
    grid: ViewpointGrid
    n_frames: int
    move_to_play_budget: MovementBudget
    playing_budget: MovementBudget
    sequence_reps: int = 1  # -1 = unlimited
    freeze_on_end_stimulus: bool = False

    def reps_remaining(self, completed: int) -> bool:
        return self.sequence_reps == -1 or completed < self.sequence_reps


@dataclass(frozen=True, slots=True)
class PhaseState:
    phase: Phase
    view: DisplayView
    frame: int | NoValue = 0
    rep: int | NoValue = 0
    moves_to_play: int = 0
    moves_playing: int = 0
    moves_total: int = 0
    movable: bool = True

    @property
    def animating(self) -> bool:
        return self.phase is not Phase.WAITING_CLASSIFICATION


@dataclass(frozen=True, slots=True)
class TickOutcome:
    state: PhaseState
    ticked_phase: Phase
    advanced: bool = False  # the frame stepped, so the tick is logged
    moved: bool = False  # a movement was applied to the view
    completed: bool = False  # the last repetition ended at this tick


def initial_state(start_view: Viewpoint, rules: PhaseRules) -> PhaseState:
    if rules.move_to_play_budget.allows(0):
        return PhaseState(phase=Phase.MOVE_TO_PLAY, view=start_view, movable=True)
    return PhaseState(
        phase=Phase.PLAYING,
        view=start_view,
        movable=rules.playing_budget.allows(0),
    )


def step(state: PhaseState, intent: MovementIntent, rules: PhaseRules) -> TickOutcome:
    """Advance the trial by one tick."""

    if state.phase is Phase.WAITING_CLASSIFICATION:
        return TickOutcome(state=state, ticked_phase=state.phase)

    assert isinstance(state.view, Viewpoint)
    assert isinstance(state.frame, int) and isinstance(state.rep, int)

    ticked_phase = state.phase
    wants_move = state.movable and not intent.is_empty

    if state.phase is Phase.MOVE_TO_PLAY:
        if not wants_move:
            return TickOutcome(state=state, ticked_phase=ticked_phase)
        view, _ = rules.grid.advance(state.view, intent.d_theta, intent.d_phi)
        moves_to_play = state.moves_to_play + 1
        if rules.move_to_play_budget.allows(moves_to_play):
            phase = Phase.MOVE_TO_PLAY
            movable = True
        else:
            phase = Phase.PLAYING
            movable = rules.playing_budget.allows(0)
        nxt = replace(
            state,
            phase=phase,
            view=view,
            frame=state.frame + 1,
            moves_to_play=moves_to_play,
            moves_total=state.moves_total + 1,
            movable=movable,
        )
        moved = True
    else:
        view = state.view
        moves_playing = state.moves_playing
        moved = False
        if wants_move and rules.playing_budget.allows(moves_playing):
            view, _ = rules.grid.advance(state.view, intent.d_theta, intent.d_phi)
            moves_playing += 1
            moved = True
        nxt = replace(
            state,
            view=view,
            frame=state.frame + 1,
            moves_playing=moves_playing,
            moves_total=state.moves_total + (1 if moved else 0),
            movable=rules.playing_budget.allows(moves_playing),
        )

    assert isinstance(nxt.frame, int)
    if nxt.frame < rules.n_frames:
        return TickOutcome(state=nxt, ticked_phase=ticked_phase, advanced=True, moved=moved)

    rep = state.rep + 1
    if rules.reps_remaining(rep):
        nxt = replace(nxt, frame=0, rep=rep)
        return TickOutcome(state=nxt, ticked_phase=ticked_phase, advanced=True, moved=moved)

    # Last repetition: the overflowing tick is discarded and the view freezes.
    if rules.freeze_on_end_stimulus:
        frozen_view: DisplayView = EndedView()
        frozen_frame: int | NoValue = NONE
    else:
        frozen_view = state.view
        frozen_frame = state.frame
    ended = replace(
        nxt,
        phase=Phase.WAITING_CLASSIFICATION,
        view=frozen_view,
        frame=frozen_frame,
        rep=NONE,
        moves_total=state.moves_total,
        movable=False,
    )
    return TickOutcome(state=ended, ticked_phase=ticked_phase, advanced=True, completed=True)
