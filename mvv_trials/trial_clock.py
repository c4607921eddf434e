from __future__ import annotations

import logging
import math
import time
from typing import Protocol

logger = logging.getLogger(__name__)


class Clock(Protocol):
    """Monotonic clock abstraction.

    Core logic depends on this interface rather than calling real time directly.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


class TrialClock:
    """Fixed-period tick source for one trial.

    Ticks are produced by polling with the current clock reading. Each due tick
    is reported with its scheduled elapsed time (ms since start), so the stamps
    are exact multiples of the frame period rather than whatever the host loop
    happened to measure.

    If the host stalls, at most ``max_catch_up`` ticks are replayed per poll and
    the rest of the backlog is dropped.
    """

    def __init__(self, *, clock: Clock, frame_time_ms: float, max_catch_up: int = 8) -> None:
        if frame_time_ms <= 0:
            raise ValueError("frame_time_ms must be > 0")
        if max_catch_up < 1:
            raise ValueError("max_catch_up must be >= 1")
        self._clock = clock
        self._period_ms = float(frame_time_ms)
        self._period_s = self._period_ms / 1000.0
        self._max_catch_up = int(max_catch_up)

        self._started_at_s: float | None = None
        self._running = False
        self._ticks = 0
        self._dropped = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def ticks(self) -> int:
        return self._ticks

    @property
    def dropped_ticks(self) -> int:
        return self._dropped

    @property
    def period_ms(self) -> float:
        return self._period_ms

    def start(self) -> None:
        if self._started_at_s is not None:
            return
        self._started_at_s = self._clock.now()
        self._running = True

    def stop(self) -> None:
        self._running = False

    def elapsed_ms(self) -> float:
        """Milliseconds since start() (0.0 before start)."""

        if self._started_at_s is None:
            return 0.0
        return max(0.0, self._clock.now() - self._started_at_s) * 1000.0

    def poll(self) -> list[float]:
        """Return the scheduled elapsed times (ms) of every tick now due."""

        if not self._running or self._started_at_s is None:
            return []

        elapsed_s = self._clock.now() - self._started_at_s
        due = int(math.floor(elapsed_s / self._period_s + 1e-6))
        pending = due - self._dropped - self._ticks
        if pending <= 0:
            return []

        if pending > self._max_catch_up:
            skipped = pending - self._max_catch_up
            self._dropped += skipped
            pending = self._max_catch_up
            logger.warning("Trial clock fell behind; dropped %d tick(s)", skipped)

        out: list[float] = []
        for _ in range(pending):
            self._ticks += 1
            out.append((self._ticks + self._dropped) * self._period_ms)
        return out
