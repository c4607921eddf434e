from __future__ import annotations

import math
import random


class SeededRng:
    """Simple seeded RNG wrapper to keep deterministic streams explicit."""

    def __init__(self, seed: int) -> None:
        self._seed = int(seed)
        self._rng = random.Random(self._seed)

    @property
    def seed(self) -> int:
        return self._seed

    def randint(self, a: int, b: int) -> int:
        return self._rng.randint(a, b)


def new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


def round_half_up(x: float) -> int:
    # Pixel geometry rounds .5 upwards, also for negative values.
    return int(math.floor(x + 0.5))
