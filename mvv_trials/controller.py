from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, replace

from .config import TrialConfig
from .core import SeededRng, new_seed
from .movement import MovementInputMapper
from .phases import (
    NONE,
    NoValue,
    Phase,
    PhaseRules,
    PhaseState,
    initial_state,
    parse_budget,
    step,
)
from .results import TrialResult, trial_result_from_recorder
from .trajectory import TrajectoryRecorder
from .trial_clock import Clock, TrialClock
from .viewpoint import DisplayView, Viewpoint, ViewpointGrid

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class KeyPress:
    key: str
    at_ms: float  # since trial start


class InputQueue:
    """Bounded FIFO of key presses, drained by the trial once per tick."""

    def __init__(self, maxlen: int = 64) -> None:
        if maxlen <= 0:
            raise ValueError("maxlen must be > 0")
        self._items: deque[KeyPress] = deque()
        self._maxlen = int(maxlen)

    def __len__(self) -> int:
        return len(self._items)

    def put(self, press: KeyPress) -> bool:
        if len(self._items) >= self._maxlen:
            logger.warning("Input queue full; dropping key %r", press.key)
            return False
        self._items.append(press)
        return True

    def drain(self, until_ms: float | None = None) -> list[KeyPress]:
        """Pop presses in arrival order; with ``until_ms``, only those made by then."""

        out: list[KeyPress] = []
        while self._items and (until_ms is None or self._items[0].at_ms <= until_ms):
            out.append(self._items.popleft())
        return out

    def clear(self) -> None:
        self._items.clear()


class ClassificationGate:
    """Accepts classification keys while the listener is live."""

    def __init__(self, *, keys: tuple[str, ...] | None) -> None:
        self._keys = None if keys is None else frozenset(keys)
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def accepts(self, key: str) -> bool:
        if not self._active:
            return False
        return self._keys is None or key in self._keys

    def revoke(self) -> None:
        self._active = False


@dataclass(frozen=True, slots=True)
class FeedbackState:
    correct: bool
    text: str
    image: str | None


@dataclass(frozen=True, slots=True)
class TrialSnapshot:
    """View model for the renderer (pure data)."""

    phase: Phase
    view: DisplayView
    frame: int | NoValue
    rep: int | NoValue
    moves_total: int
    movable: bool
    prompt: str | None
    feedback: FeedbackState | None
    finished: bool


def build_phase_rules(config: TrialConfig) -> PhaseRules:
    n_thetas, n_phis, n_frames = config.grid_shape
    m0, m1 = config.movement_budgets
    return PhaseRules(
        grid=ViewpointGrid(n_thetas=n_thetas, n_phis=n_phis),
        n_frames=n_frames,
        move_to_play_budget=parse_budget(m0),
        playing_budget=parse_budget(m1),
        sequence_reps=config.sequence_reps,
        freeze_on_end_stimulus=config.stimulus_end is not None,
    )


class TrialController:
    """Runs one move-view-and-categorize trial.

    Key presses are queued by ``submit_key`` and processed at the start of the
    next tick (or on the next ``update`` once the animation has stopped). Every
    way out of the trial goes through ``end_trial``, which releases the tick
    clock, both input listeners and the pending feedback timer together and
    hands the result to ``on_finish`` exactly once.
    """

    def __init__(
        self,
        *,
        config: TrialConfig,
        clock: Clock,
        seed: int | None = None,
        on_finish: Callable[[TrialResult], None] | None = None,
        queue_size: int = 64,
    ) -> None:
        self._cfg = config
        self._on_finish = on_finish
        if seed is None:
            seed = config.seed if config.seed is not None else new_seed()
        self._seed = int(seed)

        self._rules = build_phase_rules(config)
        self._trial_clock = TrialClock(clock=clock, frame_time_ms=config.frame_time_ms)
        self._queue = InputQueue(queue_size)
        self._mapper = MovementInputMapper(
            keys=config.movement_keys,
            policy=config.movement_policy,
            rng=SeededRng(self._seed),
        )
        self._gate = ClassificationGate(keys=config.classification_keys)

        theta, phi = config.start_view
        self._state: PhaseState = initial_state(Viewpoint(theta=theta, phi=phi), self._rules)
        if not self._state.movable:
            self._mapper.revoke()
        self._recorder = TrajectoryRecorder(self._state)

        self._started = False
        self._ended = False
        self._result: TrialResult | None = None
        self._feedback: FeedbackState | None = None
        self._deadline_ms: float | None = None

    @property
    def seed(self) -> int:
        return self._seed

    @property
    def config(self) -> TrialConfig:
        return self._cfg

    @property
    def state(self) -> PhaseState:
        return self._state

    @property
    def phase(self) -> Phase:
        return self._state.phase

    @property
    def recorder(self) -> TrajectoryRecorder:
        return self._recorder

    @property
    def trial_clock(self) -> TrialClock:
        return self._trial_clock

    @property
    def movement_active(self) -> bool:
        return self._mapper.active

    @property
    def classification_active(self) -> bool:
        return self._gate.active

    @property
    def result(self) -> TrialResult | None:
        return self._result

    @property
    def finished(self) -> bool:
        return self._ended

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._trial_clock.start()
        logger.info(
            "Trial started: grid=%s view=%s phase=%s seed=%d",
            self._cfg.grid_shape,
            self._cfg.start_view,
            self._state.phase.name,
            self._seed,
        )

    def submit_key(self, key: str) -> bool:
        """Queue a key press. Returns False if the trial is not accepting input."""

        if not self._started or self._ended:
            return False
        if not (self._mapper.active or self._gate.active):
            return False
        return self._queue.put(KeyPress(key=str(key), at_ms=self._trial_clock.elapsed_ms()))

    def update(self) -> None:
        if not self._started or self._ended:
            return

        for time_ms in self._trial_clock.poll():
            self._tick(time_ms)
            if self._ended:
                return

        if not self._state.animating or not self._trial_clock.running:
            self._drain_input()

        if self._deadline_ms is not None and self._trial_clock.elapsed_ms() >= self._deadline_ms:
            self._on_deadline()

    def snapshot(self) -> TrialSnapshot:
        return TrialSnapshot(
            phase=self._state.phase,
            view=self._state.view,
            frame=self._state.frame,
            rep=self._state.rep,
            moves_total=self._state.moves_total,
            movable=self._mapper.active,
            prompt=self._cfg.prompt,
            feedback=self._feedback,
            finished=self._ended,
        )

    def end_trial(self) -> None:
        """Release everything and emit the result. Safe to call more than once."""

        self._trial_clock.stop()
        self._mapper.revoke()
        self._gate.revoke()
        self._deadline_ms = None
        self._queue.clear()

        if self._ended:
            return
        self._ended = True

        if self._result is None:
            logger.info("Trial ended without a result")
            return
        logger.info(
            "Trial ended: key=%s correct=%d movements=%d",
            self._result.key_classification,
            int(self._result.correct),
            self._result.n_movements,
        )
        if self._on_finish is not None:
            self._on_finish(self._result)

    def _tick(self, time_ms: float) -> None:
        if self._result is not None:
            return

        self._drain_input(until_ms=time_ms)
        if self._result is not None or not self._state.animating:
            return

        intent = self._mapper.take()
        outcome = step(self._state, intent, self._rules)
        self._state = outcome.state

        if outcome.advanced:
            if outcome.completed:
                self._recorder.record_completion(outcome.state, phase=outcome.ticked_phase, time_ms=time_ms)
                self._on_sequence_complete()
            else:
                self._recorder.record_tick(
                    outcome.state,
                    phase=outcome.ticked_phase,
                    delta_theta=intent.d_theta if outcome.moved else 0,
                    delta_phi=intent.d_phi if outcome.moved else 0,
                    reaction_time_ms=intent.reaction_time_ms if outcome.moved else NONE,
                    moved=outcome.moved,
                    time_ms=time_ms,
                )

        if outcome.ticked_phase is not outcome.state.phase:
            logger.debug("Phase %s -> %s", outcome.ticked_phase.name, outcome.state.phase.name)
        if not self._state.movable and self._mapper.active:
            self._mapper.revoke()

    def _drain_input(self, until_ms: float | None = None) -> None:
        for press in self._queue.drain(until_ms):
            self._mapper.offer(press.key, at_ms=press.at_ms)
            if self._offer_classification(press):
                self._queue.clear()
                return

    def _offer_classification(self, press: KeyPress) -> bool:
        if self._result is not None or not self._gate.accepts(press.key):
            return False

        phase = self._state.phase
        if phase is Phase.MOVE_TO_PLAY and not self._cfg.allow_classification_in_move_to_play:
            logger.debug("Classification %r ignored during move-to-play", press.key)
            return False
        if phase is Phase.PLAYING and not self._cfg.allow_classification_in_playing:
            logger.debug("Classification %r ignored during playing", press.key)
            return False

        if self._state.animating:
            self._recorder.record_interrupt(phase)
        self._state = replace(self._state, phase=Phase.WAITING_CLASSIFICATION, movable=False)
        self._trial_clock.stop()
        self._mapper.revoke()
        self._gate.revoke()

        self._result = trial_result_from_recorder(
            self._recorder,
            key=press.key,
            key_class=self._cfg.key_class,
            rt_ms=press.at_ms,
            n_movements=self._state.moves_total,
        )
        logger.info(
            "Classified %r at %.1f ms during %s (correct=%s)",
            press.key,
            press.at_ms,
            phase.name,
            self._result.correct,
        )

        fb = self._cfg.feedback
        if fb.enabled:
            correct = self._result.correct
            self._feedback = FeedbackState(
                correct=correct,
                text=fb.text_correct if correct else fb.text_incorrect,
                image=fb.image_correct if correct else fb.image_incorrect,
            )
            self._deadline_ms = self._trial_clock.elapsed_ms() + fb.duration_ms
        else:
            self.end_trial()
        return True

    def _on_sequence_complete(self) -> None:
        self._trial_clock.stop()
        self._mapper.revoke()
        logger.info("Sequence complete after %d movement(s)", self._state.moves_total)
        if not self._cfg.require_classification:
            self._deadline_ms = self._trial_clock.elapsed_ms() + self._cfg.feedback.duration_ms

    def _on_deadline(self) -> None:
        self._deadline_ms = None
        if self._result is None and self._recorder.closed:
            self._result = trial_result_from_recorder(
                self._recorder,
                key=None,
                key_class=self._cfg.key_class,
                rt_ms=None,
                n_movements=self._state.moves_total,
            )
        self.end_trial()
