from __future__ import annotations

import random
from dataclasses import dataclass

import pytest

from mvv_trials.config import FeedbackConfig, MovementPolicy, TrialConfig
from mvv_trials.controller import InputQueue, KeyPress, TrialController
from mvv_trials.core import SeededRng
from mvv_trials.phases import NONE, Phase
from mvv_trials.results import TrialResult
from mvv_trials.viewpoint import EndedView, Viewpoint

FRAME_S = 0.1


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


def _config(
    *,
    shape: tuple[int, int, int] = (4, 2, 3),
    feedback: bool = False,
    **overrides: object,
) -> TrialConfig:
    j, i, t = shape
    params: dict[str, object] = {
        "frames": tuple(
            tuple(tuple(f"{a}/{b}/{c}" for c in range(t)) for b in range(i)) for a in range(j)
        ),
        "start_view": (0, 0),
        "key_class": "a",
        "classification_keys": ("a", "l"),
        "frame_time_ms": FRAME_S * 1000,
        "feedback": FeedbackConfig(enabled=feedback, duration_ms=1000),
    }
    params.update(overrides)
    return TrialConfig(**params)  # type: ignore[arg-type]


def _build(cfg: TrialConfig, *, seed: int = 1) -> tuple[FakeClock, TrialController, list[TrialResult]]:
    clock = FakeClock()
    emitted: list[TrialResult] = []
    ctl = TrialController(config=cfg, clock=clock, seed=seed, on_finish=emitted.append)
    ctl.start()
    return clock, ctl, emitted


def _tick(clock: FakeClock, ctl: TrialController, n: int = 1) -> None:
    for _ in range(n):
        clock.advance(FRAME_S)
        ctl.update()


def test_watch_to_end_then_classify() -> None:
    clock, ctl, emitted = _build(_config())
    _tick(clock, ctl, 3)

    assert ctl.phase is Phase.WAITING_CLASSIFICATION
    assert ctl.recorder.closed
    assert ctl.movement_active is False
    assert ctl.classification_active is True
    assert emitted == []

    clock.advance(0.05)
    assert ctl.submit_key("a") is True
    ctl.update()

    assert ctl.finished
    assert len(emitted) == 1
    record = emitted[0].to_record()
    assert record["key_classification"] == "a"
    assert record["correct"] == 1
    assert record["RT_classification"] == pytest.approx(350.0)
    assert record["frames"] == "0 1 2 2"
    assert record["reps_times"] == "0 0 0 none"
    assert record["phases_times"] == "1 1 1 2"
    assert record["times"] == "0 100 200 300"
    assert record["thetas_views"] == "0 0 0 0"
    assert record["phis_views"] == "0 0 0 0"
    assert record["n_movements"] == 0
    assert record["movements_times"] == "0 0 none none"
    assert record["RT_movements"] == "none none none none"
    assert record["deltas"] == "0 0 none none"
    assert record["lambdas"] == "0 0 none none"


def test_record_field_order() -> None:
    clock, ctl, emitted = _build(_config())
    _tick(clock, ctl, 1)
    ctl.submit_key("l")
    _tick(clock, ctl, 1)
    assert list(emitted[0].to_record()) == [
        "key_classification",
        "correct",
        "RT_classification",
        "frames",
        "reps_times",
        "phases_times",
        "times",
        "thetas_views",
        "phis_views",
        "n_movements",
        "movements_times",
        "RT_movements",
        "deltas",
        "lambdas",
    ]
    assert emitted[0].correct is False


def test_move_to_play_then_classify_while_playing() -> None:
    clock, ctl, emitted = _build(_config(shape=(4, 2, 10), movement_budgets=(3, -1)))
    assert ctl.phase is Phase.MOVE_TO_PLAY

    _tick(clock, ctl)
    assert ctl.state.frame == 0
    assert ctl.recorder.rows == ()

    for key in ("right", "up", "down"):
        ctl.submit_key(key)
        _tick(clock, ctl)
    assert ctl.phase is Phase.PLAYING
    assert ctl.state.view == Viewpoint(3, 1)

    _tick(clock, ctl)
    ctl.submit_key("a")
    _tick(clock, ctl)

    record = emitted[0].to_record()
    assert record["frames"] == "0 1 2 3 4"
    assert record["phases_times"] == "0 0 0 1 1"
    assert record["thetas_views"] == "0 1 3 3 3"
    assert record["phis_views"] == "0 0 0 1 1"
    assert record["movements_times"] == "1 1 1 0 none"
    assert record["deltas"] == "1 0 0 0 none"
    assert record["lambdas"] == "0 -1 1 0 none"
    assert record["RT_movements"] == "100 200 300 none none"
    assert record["times"] == "0 200 300 400 500"
    assert record["n_movements"] == 3
    assert record["RT_classification"] == pytest.approx(500.0)


def test_classification_ignored_in_move_to_play_by_default() -> None:
    clock, ctl, emitted = _build(_config(shape=(4, 2, 10), movement_budgets=(3, -1)))
    ctl.submit_key("a")
    _tick(clock, ctl, 2)
    assert ctl.phase is Phase.MOVE_TO_PLAY
    assert ctl.result is None
    assert ctl.classification_active is True
    assert emitted == []


def test_classification_allowed_in_move_to_play() -> None:
    cfg = _config(shape=(4, 2, 10), movement_budgets=(3, -1), allow_classification_in_move_to_play=True)
    clock, ctl, emitted = _build(cfg)
    ctl.submit_key("a")
    _tick(clock, ctl)
    record = emitted[0].to_record()
    assert record["frames"] == "0"
    assert record["phases_times"] == "0"
    assert record["movements_times"] == "none"


def test_classification_ignored_while_playing_when_disallowed() -> None:
    clock, ctl, emitted = _build(_config(allow_classification_in_playing=False))
    ctl.submit_key("a")
    _tick(clock, ctl)
    assert ctl.result is None
    _tick(clock, ctl, 2)
    assert ctl.phase is Phase.WAITING_CLASSIFICATION
    ctl.submit_key("a")
    ctl.update()
    assert len(emitted) == 1


def test_non_classification_keys_do_not_end_the_trial() -> None:
    clock, ctl, emitted = _build(_config())
    ctl.submit_key("x")
    _tick(clock, ctl)
    assert ctl.result is None
    assert ctl.state.frame == 1


def test_playing_budget_lockout() -> None:
    clock, ctl, _ = _build(_config(shape=(4, 2, 10), movement_budgets=(0, 2)))
    for _ in range(2):
        ctl.submit_key("right")
        _tick(clock, ctl)
    assert ctl.movement_active is False
    assert ctl.state.view == Viewpoint(2, 0)

    ctl.submit_key("right")
    _tick(clock, ctl)
    assert ctl.state.view == Viewpoint(2, 0)
    assert ctl.state.moves_total == 2
    assert ctl.snapshot().movable is False


def test_no_playing_movements_revokes_movement_up_front() -> None:
    clock, ctl, _ = _build(_config(movement_budgets=(0, 0)))
    assert ctl.movement_active is False
    ctl.submit_key("right")
    _tick(clock, ctl)
    assert ctl.state.view == Viewpoint(0, 0)


def test_end_stimulus_hides_the_view_at_completion() -> None:
    clock, ctl, emitted = _build(_config(stimulus_end="end.png"))
    _tick(clock, ctl, 3)
    assert ctl.state.view == EndedView()
    ctl.submit_key("l")
    ctl.update()
    record = emitted[0].to_record()
    assert record["frames"] == "0 1 2 none"
    assert record["thetas_views"] == "0 0 0 none"


def test_feedback_is_shown_until_its_deadline() -> None:
    clock, ctl, emitted = _build(_config(feedback=True))
    _tick(clock, ctl)
    ctl.submit_key("a")
    _tick(clock, ctl)

    snap = ctl.snapshot()
    assert snap.feedback is not None
    assert snap.feedback.correct is True
    assert snap.feedback.text == "Correct!"
    assert not ctl.finished
    assert emitted == []

    clock.advance(0.5)
    ctl.update()
    assert not ctl.finished

    clock.advance(0.6)
    ctl.update()
    assert ctl.finished
    assert len(emitted) == 1
    assert ctl.snapshot().finished is True


def test_incorrect_feedback_text() -> None:
    clock, ctl, _ = _build(_config(feedback=True))
    ctl.submit_key("l")
    _tick(clock, ctl)
    snap = ctl.snapshot()
    assert snap.feedback is not None
    assert snap.feedback.correct is False
    assert snap.feedback.text == "Incorrect!"


def test_trial_ends_without_classification_when_not_required() -> None:
    clock, ctl, emitted = _build(_config(require_classification=False))
    _tick(clock, ctl, 3)
    assert not ctl.finished

    clock.advance(1.05)
    ctl.update()
    assert ctl.finished
    record = emitted[0].to_record()
    assert record["key_classification"] == "none"
    assert record["correct"] == 0
    assert record["RT_classification"] == "none"
    assert record["frames"] == "0 1 2 2"


def test_end_trial_is_idempotent_and_emits_once() -> None:
    clock, ctl, emitted = _build(_config())
    ctl.submit_key("a")
    _tick(clock, ctl)
    assert ctl.finished

    ctl.end_trial()
    ctl.end_trial()
    assert len(emitted) == 1
    assert ctl.submit_key("a") is False
    assert ctl.trial_clock.running is False
    assert ctl.movement_active is False
    assert ctl.classification_active is False


def test_abort_before_any_result_emits_nothing() -> None:
    clock, ctl, emitted = _build(_config())
    _tick(clock, ctl)
    ctl.end_trial()
    assert ctl.finished
    assert ctl.result is None
    assert emitted == []
    _tick(clock, ctl, 5)
    assert ctl.state.frame == 1


def test_keys_before_start_are_refused() -> None:
    ctl = TrialController(config=_config(), clock=FakeClock(), seed=1)
    assert ctl.submit_key("a") is False


def test_seed_falls_back_to_config_seed() -> None:
    ctl = TrialController(config=_config(seed=77), clock=FakeClock())
    assert ctl.seed == 77


def test_random_movements_follow_the_seeded_stream() -> None:
    seed = 4242
    cfg = _config(shape=(8, 3, 20), movement_policy=MovementPolicy.RANDOM, start_view=(0, 1))
    clock, ctl, _ = _build(cfg, seed=seed)

    mirror = SeededRng(seed)
    expected = []
    for _ in range(5):
        d_theta, d_phi = 0, 0
        while d_theta == 0 and d_phi == 0:
            d_theta = mirror.randint(-1, 1)
            d_phi = mirror.randint(-1, 1)
        expected.append((d_theta, d_phi))

    for _ in range(5):
        ctl.submit_key("left")
        ctl.submit_key("up")
        _tick(clock, ctl)

    assert [(r.delta_theta, r.delta_phi) for r in ctl.recorder.rows] == expected


def test_input_queue_is_bounded() -> None:
    queue = InputQueue(maxlen=2)
    assert queue.put(KeyPress("a", 1.0))
    assert queue.put(KeyPress("b", 2.0))
    assert not queue.put(KeyPress("c", 3.0))
    assert [p.key for p in queue.drain()] == ["a", "b"]
    assert len(queue) == 0


def test_channels_stay_aligned_under_scripted_play() -> None:
    script = random.Random(2024)
    keys = ["left", "right", "up", "down", "a", "l", "x"]
    for trial in range(40):
        j = script.randint(2, 6)
        i = script.randint(1, 3)
        t = script.randint(1, 6)
        cfg = _config(
            shape=(j, i, t),
            start_view=(script.randrange(j), script.randrange(i)),
            movement_budgets=(script.choice([0, 1, 3, -1]), script.choice([0, 2, -1])),
            sequence_reps=script.choice([1, 2]),
            allow_classification_in_move_to_play=script.random() < 0.5,
            stimulus_end=script.choice([None, "end.png"]),
        )
        clock, ctl, emitted = _build(cfg, seed=trial)

        for _ in range(200):
            if ctl.finished:
                break
            if script.random() < 0.6:
                ctl.submit_key(script.choice(keys))
            if ctl.phase is Phase.WAITING_CLASSIFICATION:
                ctl.submit_key("a")
            _tick(clock, ctl)

        if not ctl.finished:
            ctl.submit_key("a")
            ctl.update()
        if not ctl.finished:
            # Only an unfinished move-to-play phase without classification can hang.
            assert ctl.phase is Phase.MOVE_TO_PLAY
            continue

        assert len(emitted) == 1
        lengths = set(emitted[0].channels.lengths().values())
        assert len(lengths) == 1
        record = emitted[0].to_record()
        assert record["phases_times"].split()[-1] in {"0", "1", "2"}
        moves = [v for v in record["movements_times"].split() if v != "none"]
        assert record["n_movements"] == sum(int(v) for v in moves)
        assert emitted[0].channels.movements_times[-1] is NONE


def test_stalled_host_applies_movement_on_the_tick_after_the_press() -> None:
    clock, ctl, _ = _build(_config(shape=(4, 2, 10)))
    clock.advance(0.25)
    ctl.submit_key("right")
    clock.advance(0.1)
    ctl.update()

    rows = [(r.time_ms, r.moved, r.reaction_time_ms) for r in ctl.recorder.rows]
    assert rows == [(100.0, 0, NONE), (200.0, 0, NONE), (300.0, 1, 250.0)]
    for row in ctl.recorder.rows:
        if row.moved:
            assert row.reaction_time_ms <= row.time_ms


def test_stalled_host_keeps_ticks_before_a_late_classification() -> None:
    clock, ctl, emitted = _build(_config(shape=(4, 2, 10)))
    clock.advance(0.25)
    ctl.submit_key("a")
    clock.advance(0.1)
    ctl.update()

    record = emitted[0].to_record()
    assert record["frames"] == "0 1 2"
    assert record["phases_times"] == "1 1 1"
    assert record["times"] == "0 100 200"
    assert record["RT_classification"] == pytest.approx(250.0)


def test_presses_after_the_last_due_tick_wait_for_the_next_one() -> None:
    clock, ctl, _ = _build(_config(shape=(4, 2, 10)))
    clock.advance(0.15)
    ctl.submit_key("right")
    ctl.update()
    assert ctl.state.view == Viewpoint(0, 0)
    assert ctl.state.frame == 1

    clock.advance(0.05)
    ctl.update()
    assert ctl.state.view == Viewpoint(1, 0)
    assert ctl.recorder.rows[-1].time_ms == 200.0


def test_input_queue_drains_up_to_a_time() -> None:
    queue = InputQueue()
    for key, at_ms in (("a", 10.0), ("b", 20.0), ("c", 30.0)):
        queue.put(KeyPress(key, at_ms))
    assert [p.key for p in queue.drain(20.0)] == ["a", "b"]
    assert len(queue) == 1
    assert [p.key for p in queue.drain()] == ["c"]
