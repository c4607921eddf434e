"""Move-view-and-categorize trials for multi-view video stimuli.

Deterministic timing/state lives in the core modules (viewpoint, movement,
phases, trajectory, occlusion, controller); ``renderer`` and ``app`` hold the
pygame side.
"""

from .config import TrialConfig, TrialConfigError, load_trial_config, trial_config_from_mapping
from .controller import TrialController
from .results import TrialResult

__all__ = [
    "TrialConfig",
    "TrialConfigError",
    "TrialController",
    "TrialResult",
    "load_trial_config",
    "trial_config_from_mapping",
]

__version__ = "0.1.0"
