"""
Vehicle lifecycle state machine shared by trains, buses and flights.

Each vehicle moves PENDING -> ACTIVE -> RETIRED. Transitions are driven by
discrete events through a single table; timer callbacks only ever dispatch
TIMER_FIRED back into it, so completion never re-enters the section logic
directly.
"""

import logging
from enum import Enum
from typing import Optional

from .clock import SimulationClock
from .config import EngineConfig
from .models import PendingAction, Vehicle, VehicleState
from .stores import ADVANCED, RETIRED, STARTED, LifecycleEvents, Selection, VehicleRegistry

logger = logging.getLogger(__name__)


class VehicleEvent(Enum):
    START = "start"
    TIMER_FIRED = "timer_fired"
    STOP = "stop"


# (state, event) -> handler method name
TRANSITIONS = {
    (VehicleState.PENDING, VehicleEvent.START): "_on_start",
    (VehicleState.ACTIVE, VehicleEvent.TIMER_FIRED): "_on_timer",
    (VehicleState.ACTIVE, VehicleEvent.STOP): "_on_stop",
    (VehicleState.PENDING, VehicleEvent.STOP): "_on_discard",
}


class BaseLifecycle:
    """
    Start/advance/stop machinery for one vehicle kind.

    Subclasses implement `_can_start`, `_prepare` and `_repeat`.
    """

    kind = "vehicle"

    def __init__(
        self,
        clock: SimulationClock,
        config: EngineConfig,
        registry: Optional[VehicleRegistry] = None,
        selection: Optional[Selection] = None,
        events: Optional[LifecycleEvents] = None,
    ):
        self.clock = clock
        self.config = config
        self.registry = registry if registry is not None else VehicleRegistry()
        self.selection = selection if selection is not None else Selection()
        self.events = events if events is not None else LifecycleEvents()

    # Event dispatch

    def dispatch(self, vehicle: Vehicle, event: VehicleEvent, **kwargs) -> bool:
        handler = TRANSITIONS.get((vehicle.state, event))
        if handler is None:
            logger.debug(f"Ignoring {event.value} for {self.kind} {vehicle.id} in state {vehicle.state.value}")
            return False
        return getattr(self, handler)(vehicle, **kwargs)

    def start(self, vehicle: Vehicle, index: Optional[int] = None, marked: bool = False, tracked: bool = False) -> bool:
        """Start a pending vehicle. Returns False if it was refused."""
        return self.dispatch(vehicle, VehicleEvent.START, index=index, marked=marked, tracked=tracked)

    def stop(self, vehicle: Vehicle) -> bool:
        """Cancel the vehicle's timer and retire it."""
        return self.dispatch(vehicle, VehicleEvent.STOP)

    def stop_all(self) -> int:
        """Stop every active vehicle and forget standby and realtime state."""
        vehicles = self.registry.snapshot()
        for vehicle in vehicles:
            self.stop(vehicle)
        self.registry.standby.clear()
        self.registry.realtime_ids.clear()
        if vehicles:
            logger.info(f"Stopped {len(vehicles)} {self.kind}s")
        return len(vehicles)

    # Transition handlers

    def _on_start(self, vehicle: Vehicle, index: Optional[int] = None, marked: bool = False, tracked: bool = False) -> bool:
        if not self._can_start(vehicle):
            return False
        if not self._prepare(vehicle, index):
            logger.warning(f"Cannot resolve section for {self.kind} {vehicle.id}; not starting")
            return False

        vehicle.state = VehicleState.ACTIVE
        self.registry.active[vehicle.id] = vehicle
        self.events.emit(STARTED, vehicle)
        if marked:
            self.selection.mark(vehicle)
        if tracked:
            self.selection.track(vehicle)
        self._repeat(vehicle, index)
        return True

    def _on_timer(self, vehicle: Vehicle) -> bool:
        vehicle.token = None
        action, index = vehicle.pending_action, vehicle.pending_index
        vehicle.pending_action = vehicle.pending_index = None
        if action is PendingAction.RETIRE:
            return self.stop(vehicle)
        self._repeat(vehicle, index)
        return True

    def _on_stop(self, vehicle: Vehicle) -> bool:
        self.clock.cancel(vehicle.token)
        vehicle.token = None
        vehicle.pending_action = vehicle.pending_index = None
        self.selection.release(vehicle)
        if self.registry.active.get(vehicle.id) is vehicle:
            del self.registry.active[vehicle.id]
        vehicle.state = VehicleState.RETIRED
        self.events.emit(RETIRED, vehicle)
        logger.debug(f"Retired {self.kind} {vehicle.id}")
        return True

    def _on_discard(self, vehicle: Vehicle) -> bool:
        vehicle.state = VehicleState.RETIRED
        return True

    # Timer glue

    def _schedule(self, vehicle: Vehicle, duration: float, action: PendingAction, index: Optional[int] = None) -> None:
        """Replace the vehicle's pending timer. One live token per vehicle."""
        self.clock.cancel(vehicle.token)
        vehicle.pending_action = action
        vehicle.pending_index = index
        vehicle.token = self.clock.schedule_after(
            max(0.0, duration), lambda: self.dispatch(vehicle, VehicleEvent.TIMER_FIRED)
        )

    def _advanced(self, vehicle: Vehicle) -> None:
        self.events.emit(ADVANCED, vehicle)

    # Hooks

    def _can_start(self, vehicle: Vehicle) -> bool:
        return vehicle.id not in self.registry

    def _prepare(self, vehicle: Vehicle, index: Optional[int]) -> bool:
        raise NotImplementedError

    def _repeat(self, vehicle: Vehicle, index: Optional[int]) -> None:
        raise NotImplementedError
