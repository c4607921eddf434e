from __future__ import annotations

import logging

from .config import MovementKeys, MovementPolicy
from .core import SeededRng
from .phases import NO_MOVEMENT, NONE, MovementIntent, NoValue

logger = logging.getLogger(__name__)

_DIRECTIONS: dict[str, tuple[int, int]] = {
    "left": (-1, 0),
    "right": (1, 0),
    "down": (0, 1),
    "up": (0, -1),
}


class MovementInputMapper:
    """Turns movement key presses into the pending intent for the next tick.

    Controlled policy: each enabled key moves one step in its direction. A press
    on an axis replaces whatever is pending on that axis; the reaction time is
    stamped whenever the pending value changes.

    Random policy: any enabled key, when nothing is pending yet, draws a random
    non-zero step from {-1, 0, 1} x {-1, 0, 1}.

    The tick consumes the intent with ``take()``; after ``revoke()`` every key is
    refused.
    """

    def __init__(
        self,
        *,
        keys: MovementKeys,
        policy: MovementPolicy,
        rng: SeededRng,
    ) -> None:
        self._policy = MovementPolicy(policy)
        self._rng = rng
        self._key_to_delta: dict[str, tuple[int, int]] = {
            key: _DIRECTIONS[name] for name, key in keys.enabled().items()
        }
        self._active = bool(self._key_to_delta)

        self._d_theta = 0
        self._d_phi = 0
        self._rt_ms: float | NoValue = NONE

    @property
    def valid_keys(self) -> frozenset[str]:
        return frozenset(self._key_to_delta)

    @property
    def active(self) -> bool:
        return self._active

    @property
    def pending(self) -> MovementIntent:
        return MovementIntent(d_theta=self._d_theta, d_phi=self._d_phi, reaction_time_ms=self._rt_ms)

    def offer(self, key: str, *, at_ms: float) -> bool:
        """Feed one key press. Returns True if it was a movement key and accepted."""

        if not self._active:
            return False
        delta = self._key_to_delta.get(key)
        if delta is None:
            return False

        if self._policy is MovementPolicy.RANDOM:
            if self._d_theta != 0 or self._d_phi != 0:
                return False
            d_theta, d_phi = 0, 0
            while d_theta == 0 and d_phi == 0:
                d_theta = self._rng.randint(-1, 1)
                d_phi = self._rng.randint(-1, 1)
            self._d_theta, self._d_phi = d_theta, d_phi
            self._rt_ms = float(at_ms)
            return True

        d_theta, d_phi = delta
        if d_theta != 0 and self._d_theta != d_theta:
            self._d_theta = d_theta
            self._rt_ms = float(at_ms)
        if d_phi != 0 and self._d_phi != d_phi:
            self._d_phi = d_phi
            self._rt_ms = float(at_ms)
        return True

    def take(self) -> MovementIntent:
        """Return the pending intent and clear it."""

        if self._d_theta == 0 and self._d_phi == 0:
            return NO_MOVEMENT
        intent = self.pending
        self._d_theta = 0
        self._d_phi = 0
        self._rt_ms = NONE
        return intent

    def revoke(self) -> None:
        if self._active:
            logger.debug("Movement input revoked")
        self._active = False
        self._d_theta = 0
        self._d_phi = 0
        self._rt_ms = NONE
