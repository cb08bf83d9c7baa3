"""Top-level engine: periodic refresh of every vehicle kind and the live tracker."""

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from .buses import BusLifecycle, BusReport
from .clock import SimulationClock
from .config import EngineConfig
from .feeds import LivePoller
from .flights import FlightLifecycle
from .live_tracker import LiveTrackEstimator
from .models import BusTrip, Flight, Railway, RailwayStatus, Timetable, TrainReport, Vehicle, VehiclePosition
from .stores import Selection, TimetableStore, VehicleRegistry
from .trains import TrainLifecycle

logger = logging.getLogger(__name__)

PLAYBACK = "playback"
REALTIME = "realtime"


@dataclass
class RealtimeSnapshot:
    """One round of realtime train, railway status and bus data."""
    train_reports: List[TrainReport] = field(default_factory=list)
    railway_statuses: List[RailwayStatus] = field(default_factory=list)
    bus_reports: List[BusReport] = field(default_factory=list)


def _bucket(time: float, interval: float) -> float:
    return math.floor(time / interval) if interval > 0 else time


class MotionEngine:
    """
    Drives trains, buses, flights and live-tracked vehicles off one clock.

    Call tick() regularly (for example once per rendered frame). Each call
    advances nothing by itself; it only reacts to the clock crossing refresh
    boundaries, so the caller decides how time moves.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        clock: Optional[SimulationClock] = None,
        railways: Optional[Dict[str, Railway]] = None,
        timetables: Iterable[Timetable] = (),
        trips: Optional[Dict[str, BusTrip]] = None,
        flights: Optional[Dict[str, Flight]] = None,
        timetable_loader: Optional[Callable[[float], Iterable[Timetable]]] = None,
        realtime_source: Optional[Callable[[], RealtimeSnapshot]] = None,
        poller: Optional[LivePoller] = None,
        mode: str = PLAYBACK,
    ):
        """
        Initialize the engine.

        Args:
            config: Engine constants.
            clock: Simulation clock. A clock at time 0 is created when omitted.
            railways: Railways by ID.
            timetables: Initial timetables for the current service day.
            trips: Bus trips by ID.
            flights: Flights by ID.
            timetable_loader: Called with the service day start to reload timetables.
            realtime_source: Called on realtime-check boundaries in realtime mode.
            poller: Optional live prediction poller.
            mode: PLAYBACK (timetables only) or REALTIME (timetables plus realtime data).
        """
        if mode not in (PLAYBACK, REALTIME):
            raise ValueError(f"Unknown clock mode: {mode}")

        self.config = config or EngineConfig()
        self.clock = clock or SimulationClock()
        self.mode = mode
        self.selection = Selection()
        self.timetables = TimetableStore(timetables)
        self.timetable_loader = timetable_loader
        self.realtime_source = realtime_source
        self.poller = poller

        self.trains = TrainLifecycle(
            self.clock, self.config, self.timetables, railways, VehicleRegistry(), self.selection
        )
        self.buses = BusLifecycle(self.clock, self.config, trips, VehicleRegistry(), self.selection)
        self.flights = FlightLifecycle(self.clock, self.config, flights, VehicleRegistry(), self.selection)
        if poller is not None:
            poller.bind_clock(self.clock)
            self.estimator = poller.estimator
        else:
            self.estimator = LiveTrackEstimator(self.config, clock=self.clock)

        self._last_refresh: Optional[float] = None
        self._last_realtime_check: Optional[float] = None
        self._last_poll: Optional[float] = None
        self.last_timetable_refresh = self.clock.service_day_start(self.config.service_day_start)

    @property
    def railways(self) -> Dict[str, Railway]:
        return self.trains.railways

    def tick(self) -> None:
        """React to any refresh boundary the clock has crossed since the last tick."""
        now = self.clock.now()
        config = self.config

        if now - self.last_timetable_refresh >= config.timetable_refresh_interval:
            self.refresh_timetables()

        shifted = now - config.min_delay

        if self._last_refresh is None or _bucket(shifted, config.refresh_interval) != _bucket(
            self._last_refresh, config.refresh_interval
        ):
            if self.mode == PLAYBACK:
                self.refresh(now)
            self._last_refresh = shifted

        if self._last_realtime_check is None or _bucket(shifted, config.realtime_check_interval) != _bucket(
            self._last_realtime_check, config.realtime_check_interval
        ):
            if self.mode == REALTIME:
                self.refresh_realtime(now)
            self._last_realtime_check = shifted

        if self.poller is not None and (
            self._last_poll is None or now - self._last_poll >= config.live_poll_interval
        ):
            self._last_poll = now
            self.poller.poll()

    def refresh(self, now: Optional[float] = None) -> None:
        """Start every timetabled vehicle whose window contains `now`."""
        now = self.clock.now() if now is None else now
        started = self.trains.refresh(now) + self.flights.refresh(now) + self.buses.refresh(now)
        if started:
            logger.info(f"Refresh at {now:.0f} started {started} vehicles")

    def refresh_realtime(self, now: Optional[float] = None) -> None:
        """Apply one realtime snapshot, then start anything newly due."""
        now = self.clock.now() if now is None else now
        if self.realtime_source is None:
            self.refresh(now)
            return

        try:
            snapshot = self.realtime_source()
        except Exception as e:
            logger.warning(f"Realtime data unavailable, keeping current vehicles: {e}")
            return

        self.trains.apply_realtime(snapshot.train_reports, snapshot.railway_statuses, now)
        self.buses.apply_realtime(snapshot.bus_reports)
        self.buses.refresh(now)
        self.flights.refresh(now)

    def refresh_timetables(self) -> None:
        """
        Reload timetables for the service day containing the current time.

        Trains are stopped and the store replaced only when a loader is
        configured and succeeds. Without a loader the store is kept as the
        standing timetable and only the refresh stamp moves to the new day.
        """
        day_start = self.clock.service_day_start(self.config.service_day_start)
        if self.timetable_loader is not None:
            try:
                timetables = list(self.timetable_loader(day_start))
            except Exception as e:
                logger.error(f"Failed to load timetables for service day {day_start:.0f}: {e}")
            else:
                self.trains.stop_all()
                self.timetables.replace(timetables)
        self.last_timetable_refresh = day_start

    def on_clock_change(self) -> None:
        """Handle a clock jump or mode switch: drop all vehicles and resync."""
        self.stop_all()
        self.selection.mark(None)
        self.selection.track(None)
        self.estimator.clear()

        if self.last_timetable_refresh != self.clock.service_day_start(self.config.service_day_start):
            self.refresh_timetables()

        self._last_refresh = self._last_realtime_check = self._last_poll = None

    def set_mode(self, mode: str) -> None:
        if mode not in (PLAYBACK, REALTIME):
            raise ValueError(f"Unknown clock mode: {mode}")
        if mode != self.mode:
            self.mode = mode
            self.on_clock_change()

    def stop_all(self) -> None:
        """Stop every train, bus and flight."""
        self.trains.stop_all()
        self.buses.stop_all()
        self.flights.stop_all()

    def vehicles(self) -> List[Vehicle]:
        return self.trains.registry.snapshot() + self.buses.registry.snapshot() + self.flights.registry.snapshot()

    def positions(self, now: Optional[float] = None) -> List[VehiclePosition]:
        """Uniform position read across scheduled and live-tracked vehicles."""
        now = self.clock.now() if now is None else now
        positions = []
        for vehicle in self.vehicles():
            railway = getattr(vehicle, "railway", None)
            trip = getattr(vehicle, "trip", None)
            if railway is not None:
                railway_id = railway.id
            elif trip is not None:
                railway_id = trip.route_id
            else:
                railway_id = None
            positions.append(
                VehiclePosition(
                    id=vehicle.id,
                    kind=vehicle.kind.value,
                    railway_id=railway_id,
                    section_index=vehicle.section_index if vehicle.section_index is not None else 0,
                    section_length=vehicle.section_length,
                    progress=vehicle.progress_at(now),
                )
            )
        positions.extend(self.estimator.positions(now))
        return positions
