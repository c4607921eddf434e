"""Trial configuration for the move-view-and-categorize task.

Configuration is validated once, when the dataclasses are built, so a bad
parameter is reported before the first tick and a running trial never has to
re-check its inputs. :func:`trial_config_from_mapping` accepts the parameter
names used by the host experiment framework (``directories_mvv``, ``M``,
``choices_movements`` ...) and :func:`load_trial_config` reads the same mapping
from a JSON file.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "MVV_TRIAL_CONFIG"

_NONE_KEY_SPELLINGS = ("none", "None", "NONE")


class TrialConfigError(ValueError):
    """Raised when a trial cannot start with the given parameters."""


class MovementPolicy(StrEnum):
    CONTROLLED = "c"
    RANDOM = "r"


def is_disabled_key(key: str | None) -> bool:
    return key is None or key in _NONE_KEY_SPELLINGS


@dataclass(frozen=True, slots=True)
class MovementKeys:
    """Key names for [left, right, down, up]; None or "none" disables a slot."""

    left: str | None = "left"
    right: str | None = "right"
    down: str | None = "down"
    up: str | None = "up"

    def enabled(self) -> dict[str, str]:
        """Direction name -> key, for enabled slots only."""

        slots = {"left": self.left, "right": self.right, "down": self.down, "up": self.up}
        return {name: key for name, key in slots.items() if not is_disabled_key(key)}


@dataclass(frozen=True, slots=True)
class ObstacleConfig:
    image: str
    theta_left: int
    theta_right: int
    phi_top: int
    phi_bottom: int

    # Fractions of the stimulus width/height (0 = left/top, 1 = right/bottom).
    left_margin: float = 0.75
    right_margin: float = 0.25
    top_margin: float = 0.75
    bottom_margin: float = 0.25

    scale_width: float = 1.0
    scale_height: float = 1.0

    def __post_init__(self) -> None:
        for name in ("left_margin", "right_margin", "top_margin", "bottom_margin"):
            value = float(getattr(self, name))
            if not (0.0 <= value <= 1.0):
                raise TrialConfigError(f"obstacle {name} must be in [0, 1]")
        if self.scale_width <= 0 or self.scale_height <= 0:
            raise TrialConfigError("obstacle scales must be > 0")
        if self.phi_top > self.phi_bottom:
            raise TrialConfigError("obstacle phi_top must be <= phi_bottom")

    def check_grid(self, *, n_thetas: int, n_phis: int) -> None:
        for name in ("theta_left", "theta_right"):
            value = int(getattr(self, name))
            if not (0 <= value < n_thetas):
                raise TrialConfigError(f"obstacle {name}={value} outside 0..{n_thetas - 1}")
        for name in ("phi_top", "phi_bottom"):
            value = int(getattr(self, name))
            if not (0 <= value < n_phis):
                raise TrialConfigError(f"obstacle {name}={value} outside 0..{n_phis - 1}")


@dataclass(frozen=True, slots=True)
class FeedbackConfig:
    enabled: bool = True
    duration_ms: float = 2000.0
    text_correct: str = "Correct!"
    text_incorrect: str = "Incorrect!"
    image_correct: str | None = None
    image_incorrect: str | None = None

    def __post_init__(self) -> None:
        if self.duration_ms < 0:
            raise TrialConfigError("feedback duration_ms must be >= 0")


@dataclass(frozen=True, slots=True)
class TrialConfig:
    # Image paths of the multi-view video, shape [J][I][T].
    frames: tuple[tuple[tuple[str, ...], ...], ...]
    start_view: tuple[int, int]
    key_class: str

    movement_budgets: tuple[int, int] = (0, -1)
    classification_keys: tuple[str, ...] | None = None  # None = any key
    movement_keys: MovementKeys = field(default_factory=MovementKeys)
    movement_policy: MovementPolicy = MovementPolicy.CONTROLLED

    frame_time_ms: float = 500.0
    sequence_reps: int = 1  # -1 = repeat until classified

    allow_classification_in_move_to_play: bool = False
    allow_classification_in_playing: bool = True
    require_classification: bool = True

    alpha: float = 1.0
    blur: float = 0.0
    stimulus_end: str | None = None
    prompt: str | None = None

    feedback: FeedbackConfig = field(default_factory=FeedbackConfig)
    obstacle: ObstacleConfig | None = None

    seed: int | None = None

    def __post_init__(self) -> None:
        n_thetas, n_phis, _ = self._check_frames()

        theta, phi = self.start_view
        if not (0 <= theta < n_thetas and 0 <= phi < n_phis):
            raise TrialConfigError(
                f"start_view {list(self.start_view)} outside grid {n_thetas}x{n_phis}"
            )

        if len(self.movement_budgets) != 2:
            raise TrialConfigError("movement_budgets must be [M0, M1]")
        for value in self.movement_budgets:
            if int(value) < -1:
                raise TrialConfigError("movement budgets must be >= -1 (-1 = unlimited)")

        if not self.key_class:
            raise TrialConfigError("key_class must be a key name")
        if self.frame_time_ms <= 0:
            raise TrialConfigError("frame_time_ms must be > 0")
        if self.sequence_reps != -1 and self.sequence_reps < 1:
            raise TrialConfigError("sequence_reps must be >= 1 or -1")
        if not (0.0 <= self.alpha <= 1.0):
            raise TrialConfigError("alpha must be in [0, 1]")
        if self.blur < 0:
            raise TrialConfigError("blur must be >= 0")

        if self.obstacle is not None:
            self.obstacle.check_grid(n_thetas=n_thetas, n_phis=n_phis)

        self._check_movement_preconditions()

    @property
    def grid_shape(self) -> tuple[int, int, int]:
        return len(self.frames), len(self.frames[0]), len(self.frames[0][0])

    def _check_frames(self) -> tuple[int, int, int]:
        if not self.frames or not self.frames[0] or not self.frames[0][0]:
            raise TrialConfigError("frames must be a non-empty [J][I][T] grid")
        n_thetas = len(self.frames)
        n_phis = len(self.frames[0])
        n_frames = len(self.frames[0][0])
        for j, column in enumerate(self.frames):
            if len(column) != n_phis:
                raise TrialConfigError(f"frames[{j}] has {len(column)} phis, expected {n_phis}")
            for i, video in enumerate(column):
                if len(video) != n_frames:
                    raise TrialConfigError(
                        f"frames[{j}][{i}] has {len(video)} frames, expected {n_frames}"
                    )
        return n_thetas, n_phis, n_frames

    def _check_movement_preconditions(self) -> None:
        m0, m1 = (int(v) for v in self.movement_budgets)
        needs_movement = m0 != 0
        if needs_movement and not self.movement_keys.enabled():
            raise TrialConfigError(
                "move-to-play phase needs movements (M[0] != 0) but no movement key is enabled"
            )
        if m0 == -1 and not self.allow_classification_in_move_to_play:
            logger.warning(
                "M[0] = -1 with classification disabled in move-to-play: "
                "the trial only ends if the participant moves through the whole sequence"
            )
        if m1 > 0 and not self.movement_keys.enabled():
            logger.warning("M[1] = %d but no movement key is enabled", m1)
        if self.grid_shape[0] % 2 == 1:
            logger.warning(
                "odd number of thetas (%d): pole crossings turn by %d views",
                self.grid_shape[0],
                self.grid_shape[0] // 2,
            )


def _as_frames(value: object) -> tuple[tuple[tuple[str, ...], ...], ...]:
    if not isinstance(value, Sequence) or isinstance(value, str):
        raise TrialConfigError("directories_mvv must be a [J][I][T] array of image paths")
    try:
        return tuple(tuple(tuple(str(p) for p in video) for video in column) for column in value)
    except TypeError as exc:
        raise TrialConfigError("directories_mvv must be a [J][I][T] array of image paths") from exc


def _as_pair(value: object, name: str) -> tuple[int, int]:
    if not isinstance(value, Sequence) or isinstance(value, str) or len(value) != 2:
        raise TrialConfigError(f"{name} must be a pair of integers")
    try:
        return int(value[0]), int(value[1])
    except (TypeError, ValueError) as exc:
        raise TrialConfigError(f"{name} must be a pair of integers") from exc


def _as_int(value: object, name: str) -> int:
    try:
        return int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError) as exc:
        raise TrialConfigError(f"{name} must be an integer") from exc


def _as_float(value: object, name: str) -> float:
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise TrialConfigError(f"{name} must be a number") from exc


def _obstacle_from_mapping(data: Mapping[str, object]) -> ObstacleConfig | None:
    image = data.get("obstacle")
    edges = (
        "theta_left_margin_obstacle",
        "theta_right_margin_obstacle",
        "phi_top_margin_obstacle",
        "phi_bottom_margin_obstacle",
    )
    if image is None or any(data.get(name) is None for name in edges):
        return None
    theta_left, theta_right, phi_top, phi_bottom = (_as_int(data[name], name) for name in edges)
    return ObstacleConfig(
        image=str(image),
        theta_left=theta_left,
        theta_right=theta_right,
        phi_top=phi_top,
        phi_bottom=phi_bottom,
        left_margin=_as_float(data.get("left_margin_obstacle", 0.75), "left_margin_obstacle"),
        right_margin=_as_float(data.get("right_margin_obstacle", 0.25), "right_margin_obstacle"),
        top_margin=_as_float(data.get("top_margin_obstacle", 0.75), "top_margin_obstacle"),
        bottom_margin=_as_float(data.get("bottom_margin_obstacle", 0.25), "bottom_margin_obstacle"),
        scale_width=_as_float(data.get("scale_width_obstacle", 1.0), "scale_width_obstacle"),
        scale_height=_as_float(data.get("scale_height_obstacle", 1.0), "scale_height_obstacle"),
    )


def trial_config_from_mapping(data: Mapping[str, object]) -> TrialConfig:
    """Build a TrialConfig from host-framework parameter names."""

    for required in ("directories_mvv", "view", "key_class"):
        if data.get(required) is None:
            raise TrialConfigError(f"missing required parameter {required!r}")

    raw_keys = data.get("choices_movements", ["left", "right", "down", "up"])
    if not isinstance(raw_keys, Sequence) or isinstance(raw_keys, str) or len(raw_keys) != 4:
        raise TrialConfigError("choices_movements must list [left, right, down, up] keys")
    movement_keys = MovementKeys(*(None if k is None else str(k) for k in raw_keys))

    raw_classes = data.get("choices_classes")
    if raw_classes is not None and (not isinstance(raw_classes, Sequence) or isinstance(raw_classes, str)):
        raise TrialConfigError("choices_classes must be a list of key names or null")
    classification_keys = None if raw_classes is None else tuple(str(k) for k in raw_classes)

    try:
        policy = MovementPolicy(str(data.get("type_of_movements", "c")))
    except ValueError as exc:
        raise TrialConfigError("type_of_movements must be 'c' or 'r'") from exc

    feedback = FeedbackConfig(
        enabled=bool(data.get("feedback", True)),
        duration_ms=_as_float(data.get("feedback_duration", 2000), "feedback_duration"),
        text_correct=str(data.get("text_correct", "Correct!")),
        text_incorrect=str(data.get("text_incorrect", "Incorrect!")),
        image_correct=None if data.get("image_correct") is None else str(data["image_correct"]),
        image_incorrect=None if data.get("image_incorrect") is None else str(data["image_incorrect"]),
    )

    seed = data.get("seed")
    return TrialConfig(
        frames=_as_frames(data["directories_mvv"]),
        start_view=_as_pair(data["view"], "view"),
        key_class=str(data["key_class"]),
        movement_budgets=_as_pair(data.get("M", [0, -1]), "M"),
        classification_keys=classification_keys,
        movement_keys=movement_keys,
        movement_policy=policy,
        frame_time_ms=_as_float(data.get("frame_time", 500), "frame_time"),
        sequence_reps=_as_int(data.get("sequence_reps", 1), "sequence_reps"),
        allow_classification_in_move_to_play=bool(data.get("allow_classification_in_move_to_play", False)),
        allow_classification_in_playing=bool(data.get("allow_classification_in_playing", True)),
        require_classification=bool(data.get("require_classification", True)),
        alpha=_as_float(data.get("alpha_images", 1.0), "alpha_images"),
        blur=_as_float(data.get("blur_images", 0), "blur_images"),
        stimulus_end=None if data.get("stimulus_end") is None else str(data["stimulus_end"]),
        prompt=None if data.get("prompt") is None else str(data["prompt"]),
        feedback=feedback,
        obstacle=_obstacle_from_mapping(data),
        seed=None if seed is None else _as_int(seed, "seed"),
    )


def load_trial_config(path: Path) -> TrialConfig:
    """Read a JSON trial definition; relative image paths resolve against its folder."""

    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise TrialConfigError(f"cannot read trial config {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise TrialConfigError("trial config must be a JSON object")

    base = Path(path).resolve().parent
    data = dict(raw)
    for key in ("obstacle", "stimulus_end", "image_correct", "image_incorrect"):
        if data.get(key) is not None:
            data[key] = str(base / str(data[key]))
    if isinstance(data.get("directories_mvv"), list):
        data["directories_mvv"] = [
            [[str(base / str(p)) for p in video] for video in column]
            for column in data["directories_mvv"]
        ]

    config = trial_config_from_mapping(data)
    logger.info("Loaded trial config %s (grid %s)", path, config.grid_shape)
    return config
