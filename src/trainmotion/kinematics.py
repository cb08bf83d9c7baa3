"""Motion profile solver for sections of known distance."""

import math
from dataclasses import dataclass
from typing import Optional, Tuple

from .config import EngineConfig
from .models import MotionProfile


@dataclass(frozen=True)
class PhysicalLimits:
    """Top speed and acceleration of a vehicle kind."""
    max_speed: float
    acceleration: float

    @property
    def max_acceleration_time(self) -> float:
        return self.max_speed / self.acceleration

    @property
    def max_acc_distance(self) -> float:
        """Distance covered while accelerating to top speed."""
        t = self.max_acceleration_time
        return self.acceleration * t * t / 2

    @classmethod
    def for_trains(cls, config: EngineConfig) -> "PhysicalLimits":
        return cls(config.max_speed, config.acceleration)

    @classmethod
    def for_buses(cls, config: EngineConfig) -> "PhysicalLimits":
        return cls(config.max_bus_speed, config.bus_acceleration)


def clamp(value: float, lower: float, upper: float) -> float:
    return min(max(value, lower), upper)


def solve_section(
    distance: float,
    limits: PhysicalLimits,
    min_duration: Optional[float] = None,
    max_duration: Optional[float] = None,
    start_time: float = 0.0,
) -> MotionProfile:
    """
    Solve a symmetric accelerate/cruise/decelerate profile covering `distance`.

    When `max_duration` is given and positive, the natural duration is clamped
    into [min_duration, max_duration] and the acceleration (and cruise speed)
    are re-derived so the profile still covers exactly `distance` in exactly
    the clamped duration.

    Args:
        distance: Section length, >= 0.
        limits: Vehicle top speed and acceleration.
        min_duration: Lower bound from the timetable, may be None.
        max_duration: Upper bound from the timetable, may be None.
        start_time: Clock time at which motion begins.

    Returns:
        MotionProfile. A zero distance yields a zero-duration profile.
    """
    if distance <= 0:
        return MotionProfile(start_time, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0)

    max_speed = limits.max_speed
    acceleration = limits.acceleration
    max_acc_distance = limits.max_acc_distance
    windowed = max_duration is not None and max_duration > 0

    if distance <= max_acc_distance * 2:
        # No cruise phase
        duration = math.sqrt(distance / acceleration) * 2
        if windowed:
            duration = clamp(duration, min_duration or 0, max_duration)
            acceleration = distance * 4 / duration / duration
        acceleration_time = duration / 2
        max_speed = acceleration * acceleration_time
    else:
        duration = limits.max_acceleration_time * 2 + (distance - max_acc_distance * 2) / max_speed
        if windowed:
            duration = clamp(duration, min_duration or 0, max_duration)
            max_acc_distance = acceleration * duration * duration / 8
            if distance >= max_acc_distance * 2:
                # Top speed is out of reach in the clamped time
                max_speed = distance * 2 / duration
                acceleration = max_speed * 2 / duration
            else:
                max_speed = acceleration * duration / 2 - math.sqrt(
                    acceleration * (max_acc_distance * 2 - distance)
                )
        acceleration_time = max_speed / acceleration

    return MotionProfile(
        start_time=start_time,
        duration=duration,
        distance=distance,
        acceleration_time=acceleration_time,
        acceleration=acceleration,
        deceleration_time=acceleration_time,
        deceleration=acceleration,
        max_speed=max_speed,
    )


def departure_window(
    now: float,
    departure_time: Optional[float],
    arrival_time: Optional[float],
    next_departure_time: Optional[float],
    delay: float,
    advancing: bool,
    realtime_speed: bool,
    min_standing_duration: float,
    min_delay: float,
) -> Tuple[float, Optional[float], Optional[float]]:
    """
    Compute when a vehicle actually departs and the duration window for the leg.

    Returns:
        (actual_departure, min_duration, max_duration)
    """
    if advancing:
        scheduled = departure_time + delay if departure_time is not None else now
        actual_departure = max(scheduled, now + (min_standing_duration if realtime_speed else 0.0))
    elif departure_time is not None:
        actual_departure = departure_time + delay
    else:
        actual_departure = now

    min_duration = max_duration = None
    if next_departure_time is not None:
        max_duration = next_departure_time - min_standing_duration + 60 + delay - min_delay - actual_departure
    if arrival_time is not None:
        min_duration = arrival_time + delay - min_delay - actual_departure
        if not (max_duration is not None and max_duration < min_duration + 60):
            max_duration = min_duration + 60

    return actual_departure, min_duration, max_duration


def solve_flight(distance: float, max_speed: float, acceleration: float, start_time: float = 0.0) -> MotionProfile:
    """
    Solve a one-sided profile: a take-off (positive acceleration) reaches
    cruise speed, a landing (negative acceleration) decelerates from it.
    """
    accel = acceleration if acceleration > 0 else 0.0
    decel = -acceleration if acceleration < 0 else 0.0
    acceleration_time = max_speed / accel if accel > 0 else 0.0
    deceleration_time = max_speed / decel if decel > 0 else 0.0
    duration = acceleration_time / 2 + distance / max_speed + deceleration_time / 2

    return MotionProfile(
        start_time=start_time,
        duration=duration,
        distance=distance,
        acceleration_time=acceleration_time,
        acceleration=accel,
        deceleration_time=deceleration_time,
        deceleration=decel,
        max_speed=max_speed,
    )
