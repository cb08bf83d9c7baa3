"""Simulation clock with clock-scaled, cancellable timers."""

import heapq
import itertools
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


@dataclass(order=True)
class TimerToken:
    """Handle for a scheduled callback. Once cancelled it never fires."""
    deadline: float
    seq: int
    callback: Callable[[], None] = field(compare=False, repr=False)
    cancelled: bool = field(default=False, compare=False)
    fired: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.fired)


class SimulationClock:
    """
    Monotonic simulated time with a configurable speed.

    Time only moves when advance() is called, which keeps every timer callback
    on the caller's turn. Durations passed to schedule_after() are in simulated
    seconds; the clock scales real elapsed time by `speed`.
    """

    def __init__(self, start: float = 0.0, speed: float = 1.0):
        self._time = float(start)
        self.speed = speed
        self._timers: List[TimerToken] = []
        self._seq = itertools.count()

    def now(self) -> float:
        """Current simulated time in seconds."""
        return self._time

    @property
    def realtime_speed(self) -> bool:
        return self.speed == 1

    def schedule_after(self, duration: float, callback: Callable[[], None]) -> TimerToken:
        """Schedule `callback` after `duration` simulated seconds."""
        token = TimerToken(self._time + max(0.0, duration), next(self._seq), callback)
        heapq.heappush(self._timers, token)
        return token

    def cancel(self, token: Optional[TimerToken]) -> None:
        if token is not None:
            token.cancel()

    def pending(self) -> int:
        """Number of timers that can still fire."""
        return sum(1 for t in self._timers if t.active)

    def advance(self, real_seconds: float) -> int:
        """
        Move time forward by `real_seconds * speed` and fire due timers in order.

        Returns:
            Number of callbacks invoked.
        """
        return self.run_until(self._time + real_seconds * self.speed)

    def run_until(self, target: float) -> int:
        """Advance simulated time to `target`, firing due timers in deadline order."""
        fired = 0
        while self._timers and self._timers[0].deadline <= target:
            token = heapq.heappop(self._timers)
            if token.cancelled:
                continue
            self._time = max(self._time, token.deadline)
            token.fired = True
            token.callback()
            fired += 1
        self._time = max(self._time, target)
        return fired

    def set_time(self, time: float) -> None:
        """
        Jump the clock to `time` without firing timers.

        Pending deadlines are kept as scheduled; callers normally stop all
        vehicles after a jump.
        """
        logger.info(f"Clock moved from {self._time:.0f} to {time:.0f}")
        self._time = float(time)

    def set_speed(self, speed: float) -> None:
        self.speed = speed

    def service_day_start(self, day_offset: float) -> float:
        """Start of the current service day, `day_offset` seconds after midnight."""
        return (self._time - day_offset) // 86400 * 86400 + day_offset
