from __future__ import annotations

from dataclasses import dataclass

from .phases import NONE, NoValue
from .trajectory import TrajectoryChannels, TrajectoryRecorder, Value

CHANNEL_FIELDS: tuple[str, ...] = (
    "frames",
    "reps_times",
    "phases_times",
    "times",
    "thetas_views",
    "phis_views",
    "movements_times",
    "RT_movements",
    "deltas",
    "lambdas",
)


def format_value(value: Value) -> str:
    """Numeric text as stored in the result record ("none" for no value)."""

    if isinstance(value, NoValue):
        return str(value)
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return f"{value:.3f}".rstrip("0").rstrip(".")
    return str(value)


def join_channel(values: tuple[Value, ...]) -> str:
    return " ".join(format_value(v) for v in values)


@dataclass(frozen=True, slots=True)
class TrialResult:
    """Persistable outcome of one trial: classification plus full trajectory.

    Built once when the trial stops and handed to the experiment runner.
    """

    key_classification: str | NoValue
    correct: bool
    rt_classification_ms: float | NoValue
    n_movements: int
    channels: TrajectoryChannels

    def to_record(self) -> dict[str, object]:
        rt = self.rt_classification_ms
        record: dict[str, object] = {
            "key_classification": str(self.key_classification),
            "correct": int(self.correct),
            "RT_classification": format_value(rt) if isinstance(rt, NoValue) else float(rt),
        }
        for name in CHANNEL_FIELDS[:6]:
            record[name] = join_channel(getattr(self.channels, name))
        record["n_movements"] = int(self.n_movements)
        for name in CHANNEL_FIELDS[6:]:
            record[name] = join_channel(getattr(self.channels, name))
        return record


def trial_result_from_recorder(
    recorder: TrajectoryRecorder,
    *,
    key: str | None,
    key_class: str,
    rt_ms: float | None,
    n_movements: int,
) -> TrialResult:
    """Build a TrialResult from a closed trajectory (key None = no response)."""

    if not recorder.closed:
        raise RuntimeError("trajectory must be closed before building a result")
    return TrialResult(
        key_classification=NONE if key is None else str(key),
        correct=key is not None and key == key_class,
        rt_classification_ms=NONE if rt_ms is None else float(rt_ms),
        n_movements=int(n_movements),
        channels=recorder.channels(),
    )
