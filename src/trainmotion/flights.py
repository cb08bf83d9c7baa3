"""Flight lifecycle: a single take-off or landing leg between entry and end."""

import logging
from dataclasses import replace
from typing import Dict, Optional

from .clock import SimulationClock
from .config import EngineConfig
from .kinematics import solve_flight
from .lifecycle import BaseLifecycle
from .models import Flight, PendingAction, VehicleState
from .stores import LifecycleEvents, Selection, VehicleRegistry

logger = logging.getLogger(__name__)


class FlightLifecycle(BaseLifecycle):
    """Shows each flight from its entry time and retires it at its end time."""

    kind = "flight"

    def __init__(
        self,
        clock: SimulationClock,
        config: EngineConfig,
        flights: Optional[Dict[str, Flight]] = None,
        registry: Optional[VehicleRegistry] = None,
        selection: Optional[Selection] = None,
        events: Optional[LifecycleEvents] = None,
    ):
        super().__init__(clock, config, registry, selection, events)
        self.flights: Dict[str, Flight] = flights or {}

    def refresh(self, now: Optional[float] = None) -> int:
        """Start a fresh instance of every flight visible at `now`."""
        now = self.clock.now() if now is None else now
        started = 0
        for flight in self.flights.values():
            if flight.entry <= now < flight.end and flight.id not in self.registry:
                instance = replace(flight, state=VehicleState.PENDING, token=None, profile=None)
                if self.start(instance):
                    started += 1
        return started

    def _prepare(self, flight: Flight, index: Optional[int]) -> bool:
        if flight.distance <= 0 or flight.max_speed <= 0:
            return False
        flight.section_index = 0
        flight.section_length = 1
        return True

    def _repeat(self, flight: Flight, index: Optional[int]) -> None:
        now = self.clock.now()
        flight.profile = solve_flight(flight.distance, flight.max_speed, flight.acceleration, start_time=flight.start)
        self._schedule(flight, flight.end - now, PendingAction.RETIRE)
