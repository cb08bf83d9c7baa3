"""Bus lifecycle: trip-scheduled buses and buses positioned by realtime data."""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from .clock import SimulationClock
from .config import EngineConfig
from .kinematics import PhysicalLimits, departure_window, solve_section
from .lifecycle import BaseLifecycle
from .models import Bus, BusTrip, PendingAction
from .stores import LifecycleEvents, Selection, VehicleRegistry

logger = logging.getLogger(__name__)


@dataclass
class BusReport:
    """A realtime vehicle position for a bus trip."""
    trip_id: str
    stop: Optional[str] = None  # Current stop ID
    offset: Optional[float] = None  # Distance along the trip shape, when no stop is given


def set_bus_section(bus: Bus, now: float, index: Optional[int] = None, final: bool = False) -> bool:
    """
    Resolve the bus's current section. Bus sections always span one stop.

    Returns:
        True if a section was set, False if the trip has no further section.
    """
    trip = bus.trip
    stops = trip.stops
    departure_times = trip.departure_times

    if bus.stop is None:
        if index is None:
            current = 0
            for i, departure in enumerate(departure_times):
                if departure <= now:
                    current = i
        else:
            current = index
    else:
        current = stops.index(bus.stop) if bus.stop in stops else -1

    if current < 0:
        logger.warning(f"Bus {bus.id} reported at unknown stop {bus.stop}")
        return False

    final_section = len(stops) - 1

    if bus.stop is None:
        if current < final_section:
            bus.section_index = current
            bus.section_length = 1
            bus.departure_time = departure_times[current]
            bus.next_departure_time = departure_times[current + 1]
            return True
    else:
        if bus.section_index is None:
            actual = next_section = current
        else:
            actual = bus.section_index + bus.section_length
            next_section = min(current + 1, final_section)

        if not final and actual != final_section:
            bus.section_index = actual
            bus.section_length = next_section - actual
            return True

    return False


class BusLifecycle(BaseLifecycle):
    """Starts, advances and retires buses along their trips."""

    kind = "bus"

    def __init__(
        self,
        clock: SimulationClock,
        config: EngineConfig,
        trips: Optional[Dict[str, BusTrip]] = None,
        registry: Optional[VehicleRegistry] = None,
        selection: Optional[Selection] = None,
        events: Optional[LifecycleEvents] = None,
    ):
        super().__init__(clock, config, registry, selection, events)
        self.trips: Dict[str, BusTrip] = trips or {}
        self.limits = PhysicalLimits.for_buses(config)

    def refresh(self, now: Optional[float] = None) -> int:
        """Start every bus whose trip is running at `now`."""
        now = self.clock.now() if now is None else now
        started = 0
        for trip in self.trips.values():
            times = trip.departure_times
            if times and times[0] <= now <= times[-1] and trip.id not in self.registry:
                if self.start(Bus(id=trip.id, trip=trip)):
                    started += 1
        return started

    def apply_realtime(self, reports: Iterable[BusReport]) -> None:
        """Move or start buses from realtime vehicle positions."""
        self.registry.realtime_ids.clear()
        for report in reports:
            self.registry.realtime_ids.add(report.trip_id)
            trip = self.trips.get(report.trip_id)
            if trip is None:
                continue

            bus = self.registry.get(report.trip_id)
            is_active = bus is not None
            if not is_active:
                bus = Bus(id=trip.id, trip=trip, realtime=True)

            if report.stop is not None:
                bus.stop = report.stop
            elif report.offset is not None:
                stop_index = 0
                for i, offset in enumerate(trip.offsets):
                    if offset < report.offset:
                        stop_index = min(i + 1, len(trip.offsets) - 1)
                bus.stop = trip.stops[stop_index]
            else:
                continue

            if not is_active:
                self.start(bus)

    def _prepare(self, bus: Bus, index: Optional[int]) -> bool:
        return set_bus_section(bus, self.clock.now(), index)

    def _repeat(self, bus: Bus, index: Optional[int]) -> None:
        now = self.clock.now()
        scheduled = bus.stop is None

        if scheduled:
            final = not set_bus_section(bus, now, index)
        else:
            final = not set_bus_section(bus, now, final=bus.id not in self.registry.realtime_ids)

        self._advanced(bus)

        offsets = bus.trip.offsets
        section_index, section_length = bus.section_index, bus.section_length
        distance = 0.0
        if section_index is not None:
            distance = abs(offsets[section_index + section_length] - offsets[section_index])

        if not final and section_length > 0 and distance == 0:
            # Several stops can share coordinates in the source shapes
            logger.debug(f"Bus {bus.id} has a zero-length section at {section_index}")

        if not final and section_length > 0 and distance > 0:
            actual_departure, _, max_duration = departure_window(
                now,
                bus.departure_time,
                None,
                bus.next_departure_time,
                0.0,
                advancing=index is not None,
                realtime_speed=self.clock.realtime_speed,
                min_standing_duration=self.config.min_bus_standing_duration,
                min_delay=self.config.min_delay,
            )
            profile = solve_section(distance, self.limits, None, max_duration, start_time=actual_departure)
            bus.profile = profile
            self._schedule(
                bus,
                profile.end_time - now,
                PendingAction.ADVANCE,
                section_index + 1 if scheduled else None,
            )
            return

        bus.profile = None
        if scheduled:
            next_departure = bus.next_departure_time if bus.next_departure_time is not None else now
            duration = max(next_departure - now, self.config.min_bus_standing_duration)
        elif final:
            duration = self.config.min_bus_standing_duration
        else:
            duration = self.config.realtime_check_interval
        self._schedule(bus, duration, PendingAction.RETIRE if final else PendingAction.ADVANCE)
