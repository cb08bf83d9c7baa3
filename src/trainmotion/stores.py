"""State containers owned by the lifecycle managers and injected at construction."""

import logging
from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Optional, Set

from .models import Timetable, Vehicle

logger = logging.getLogger(__name__)

STARTED = "started"
ADVANCED = "advanced"
RETIRED = "retired"


class VehicleRegistry:
    """Active and standby vehicles of one kind, keyed by vehicle ID."""

    def __init__(self):
        self.active: Dict[str, Vehicle] = {}
        self.standby: Dict[str, Vehicle] = {}  # timetable ID -> vehicle waiting for its window
        self.realtime_ids: Set[str] = set()  # vehicles confirmed by the realtime feed

    def get(self, vehicle_id: str) -> Optional[Vehicle]:
        return self.active.get(vehicle_id)

    def __contains__(self, vehicle_id: str) -> bool:
        return vehicle_id in self.active

    def __len__(self) -> int:
        return len(self.active)

    def snapshot(self) -> List[Vehicle]:
        """Copy of the active vehicles, safe to iterate while vehicles retire."""
        return list(self.active.values())


class TimetableStore:
    """Timetables for the current service day. Replaced wholesale, never patched."""

    def __init__(self, timetables: Iterable[Timetable] = ()):
        self._by_id: Dict[str, Timetable] = {}
        self._by_train_id: Dict[str, List[Timetable]] = defaultdict(list)
        self.replace(timetables)

    def replace(self, timetables: Iterable[Timetable]) -> None:
        self.clear()
        for timetable in timetables:
            self._by_id[timetable.id] = timetable
            self._by_train_id[timetable.train_id].append(timetable)
        logger.info(f"Loaded {len(self._by_id)} timetables")

    def clear(self) -> None:
        self._by_id.clear()
        self._by_train_id.clear()

    def get(self, timetable_id: str) -> Timetable:
        """
        Get a timetable by ID.

        Raises:
            ValueError: If the timetable is not loaded.
        """
        if timetable_id not in self._by_id:
            raise ValueError(f"Timetable {timetable_id} not found")
        return self._by_id[timetable_id]

    def find(self, timetable_id: str) -> Optional[Timetable]:
        return self._by_id.get(timetable_id)

    def get_by_train_id(self, train_id: str) -> List[Timetable]:
        return list(self._by_train_id.get(train_id, []))

    def all(self) -> List[Timetable]:
        return list(self._by_id.values())

    def __len__(self) -> int:
        return len(self._by_id)


class Selection:
    """The vehicle currently marked (popup) and tracked (camera) by the UI."""

    def __init__(self):
        self.marked: Optional[Vehicle] = None
        self.tracked: Optional[Vehicle] = None

    def mark(self, vehicle: Optional[Vehicle]) -> None:
        self.marked = vehicle

    def track(self, vehicle: Optional[Vehicle]) -> None:
        self.tracked = vehicle

    def release(self, vehicle: Vehicle) -> None:
        """Clear any selection pointing at `vehicle`."""
        if self.marked is vehicle:
            self.marked = None
        if self.tracked is vehicle:
            self.tracked = None


class LifecycleEvents:
    """Listeners for started/advanced/retired notifications."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable[[Vehicle], None]]] = defaultdict(list)

    def on(self, event: str, listener: Callable[[Vehicle], None]) -> None:
        self._listeners[event].append(listener)

    def emit(self, event: str, vehicle: Vehicle) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(vehicle)
            except Exception as e:
                logger.error(f"Listener for '{event}' failed on {vehicle.id}: {e}", exc_info=True)
