"""Train lifecycle: timetable sections, through-service chaining and realtime reports."""

import logging
from typing import Dict, Iterable, List, Optional

from .clock import SimulationClock
from .config import EngineConfig
from .kinematics import PhysicalLimits, departure_window, solve_section
from .lifecycle import BaseLifecycle
from .models import PendingAction, Railway, RailwayStatus, Timetable, Train, TrainReport
from .stations import find_station_index
from .stores import LifecycleEvents, Selection, TimetableStore, VehicleRegistry

logger = logging.getLogger(__name__)


def _at(values: List, index: int):
    return values[index] if 0 <= index < len(values) else None


def set_train_section(train: Train, now: float, index: Optional[int] = None, final: bool = False) -> bool:
    """
    Resolve the train's current section.

    For timetabled trains `index` is the timetable stop the train departs
    from; when omitted, the last stop already departed (delay-adjusted) is
    used. Ad-hoc trains continue from their current section towards the
    realtime `to_station`, or run to their destination when `final` is set.

    Returns:
        True if a section was set, False if the run has no further section.
    """
    stations = train.railway.stations
    timetable = train.timetable
    delay = train.delay or 0
    reverse = train.direction < 0

    if timetable:
        departure_times = timetable.departure_times
        arrival_times = timetable.arrival_times
        if index is None:
            tt_index = 0
            for i, departure in enumerate(departure_times):
                if departure is not None and departure + delay <= now:
                    tt_index = i
        else:
            tt_index = index
        departure_station = _at(timetable.stations, tt_index)
        arrival_station = _at(timetable.stations, tt_index + 1)
    else:
        departure_station = train.from_station or train.to_station
        arrival_station = train.to_station or train.from_station

    current = find_station_index(stations, departure_station, len(stations) - 1 if reverse else 0, reverse)
    next_section = find_station_index(stations, arrival_station, current, reverse)

    if timetable:
        train.timetable_index = tt_index
        train.departure_station = departure_station
        departure = _at(departure_times, tt_index)
        train.departure_time = departure if departure is not None else _at(arrival_times, tt_index)

        if current >= 0 and next_section >= 0:
            train.section_index = current
            train.section_length = next_section - current
            train.arrival_station = arrival_station
            train.arrival_time = _at(arrival_times, tt_index + 1)
            train.next_departure_time = _at(departure_times, tt_index + 1)
            return True
    else:
        final_section = find_station_index(stations, train.destination, current, reverse)
        if final_section == -1:
            final_section = 0 if reverse else len(stations) - 1

        if train.section_index is None:
            actual = next_section = current
        else:
            actual = train.section_index + train.section_length

        train.departure_station = departure_station

        if actual >= 0 and actual != final_section and (
            (not final and next_section >= 0) or (final and final_section >= 0)
        ):
            train.section_index = actual
            train.section_length = (final_section if final else next_section) - actual
            if arrival_station == departure_station:
                arrival_station = _at(stations, actual + train.direction)
            train.arrival_station = arrival_station
            return True

    train.arrival_station = None
    train.arrival_time = None
    return False


class TrainLifecycle(BaseLifecycle):
    """
    Starts, advances and retires trains against their timetables.

    Trains without a timetable are driven by realtime reports and re-checked
    every `realtime_check_interval` seconds.
    """

    kind = "train"

    def __init__(
        self,
        clock: SimulationClock,
        config: EngineConfig,
        timetables: TimetableStore,
        railways: Optional[Dict[str, Railway]] = None,
        registry: Optional[VehicleRegistry] = None,
        selection: Optional[Selection] = None,
        events: Optional[LifecycleEvents] = None,
    ):
        super().__init__(clock, config, registry, selection, events)
        self.timetables = timetables
        self.railways: Dict[str, Railway] = railways or {}
        self.railway_status: Dict[str, RailwayStatus] = {}
        self.limits = PhysicalLimits.for_trains(config)

    def refresh(self, now: Optional[float] = None) -> int:
        """Start every train whose timetable window contains `now`."""
        now = self.clock.now() if now is None else now
        started = 0
        for timetable in self.timetables.all():
            if timetable.start <= now <= timetable.end and timetable.id not in self.registry.standby:
                if self.start(Train.from_timetable(timetable)):
                    started += 1
        if started:
            logger.debug(f"Started {started} trains at {now:.0f}")
        return started

    def is_chain_active(self, train: Train) -> bool:
        """True if this timetable, or one linked through it, is already running."""
        if train.timetable is None:
            return False
        for link in ("previous", "next"):
            pending = [train.timetable]
            seen = set()
            while pending:
                timetable = pending.pop()
                if timetable.id in seen:
                    continue
                seen.add(timetable.id)
                active = self.registry.active.get(timetable.train_id)
                if active is not None and active.timetable is not None and active.timetable.id == timetable.id:
                    return True
                for linked_id in getattr(timetable, link):
                    linked = self.timetables.find(linked_id)
                    if linked is not None:
                        pending.append(linked)
        return False

    def _can_start(self, train: Train) -> bool:
        if train.id in self.registry or self.is_chain_active(train):
            return False
        status = self.railway_status.get(train.railway.id)
        if status is None:
            return True
        if status.suspended:
            return False
        if status.status and train.railway.dynamic and train.id not in self.registry.realtime_ids:
            return False
        return True

    def _prepare(self, train: Train, index: Optional[int]) -> bool:
        return set_train_section(train, self.clock.now(), index)

    def _repeat(self, train: Train, index: Optional[int]) -> None:
        now = self.clock.now()
        timetable = train.timetable

        if timetable:
            final = not set_train_section(train, now, index)
            if final and timetable.next:
                next_timetables = [t for t in map(self.timetables.find, timetable.next) if t is not None]
                if next_timetables:
                    self._hand_over(train, next_timetables)
                    return
        else:
            final = not set_train_section(train, now, final=train.id not in self.registry.realtime_ids)

        self._advanced(train)

        if not final and train.section_length != 0:
            distance = train.railway.section_distance(train.section_index, train.section_length)
            actual_departure, min_duration, max_duration = departure_window(
                now,
                train.departure_time,
                train.arrival_time,
                train.next_departure_time,
                train.delay or 0,
                advancing=index is not None,
                realtime_speed=self.clock.realtime_speed,
                min_standing_duration=self.config.min_standing_duration,
                min_delay=self.config.min_delay,
            )
            profile = solve_section(distance, self.limits, min_duration, max_duration, start_time=actual_departure)
            train.profile = profile
            next_index = train.timetable_index + 1 if timetable else None

            if timetable and profile.duration == 0 and actual_departure <= now:
                # Coincident stations: nothing to animate
                self._repeat(train, next_index)
                return
            self._schedule(train, profile.end_time - now, PendingAction.ADVANCE, next_index)
            return

        train.profile = None
        if timetable:
            departure = train.departure_time if train.departure_time is not None else now
            duration = max(departure - now, self.config.min_standing_duration)
        elif final:
            duration = self.config.min_standing_duration
        else:
            duration = self.config.realtime_check_interval
        self._schedule(train, duration, PendingAction.RETIRE if final else PendingAction.ADVANCE)

    def _hand_over(self, train: Train, next_timetables: List[Timetable]) -> None:
        """
        Through-service rendezvous at the end of a run.

        The continuation starts only once every train feeding into it has
        reached its final stop. Until then this train waits without a timer;
        the last arriving partner performs the hand-over for all of them.
        """
        partners = [train]
        for previous_id in next_timetables[0].previous:
            previous = self.timetables.find(previous_id)
            if previous is None:
                continue
            partner = self.registry.active.get(previous.train_id)
            if partner is not None and partner is not train and partner.timetable is previous:
                partners.append(partner)

        if any(p.arrival_station is not None for p in partners):
            logger.debug(f"Train {train.id} waiting at {train.departure_station} for connecting trains")
            self.clock.cancel(train.token)
            train.token = None
            train.profile = None
            return

        marked = any(self.selection.marked is p for p in partners)
        tracked = any(self.selection.tracked is p for p in partners)
        for partner in partners:
            self.stop(partner)

        for i, timetable in enumerate(next_timetables):
            successor = self.registry.standby.pop(timetable.id, None) or Train.from_timetable(timetable)
            if i == 0:
                self.start(successor, index=0, marked=marked, tracked=tracked)
            else:
                self.start(successor, index=0)

    def apply_realtime(
        self,
        reports: Iterable[TrainReport],
        statuses: Iterable[RailwayStatus] = (),
        now: Optional[float] = None,
    ) -> None:
        """
        Reconcile running trains with a realtime train-information snapshot.

        Trains whose delay, destination or type changed are restarted; trains
        outside their delay-adjusted window wait in standby; trains on dynamic
        railways that are no longer reported are stopped.
        """
        now = self.clock.now() if now is None else now
        registry = self.registry

        self.railway_status = {status.railway_id: status for status in statuses}
        registry.standby.clear()
        registry.realtime_ids.clear()

        for report in reports:
            registry.realtime_ids.add(report.id)
            active = registry.get(report.id)
            marked = tracked = False

            if active is not None:
                if self._report_changed(active, report):
                    marked = self.selection.marked is active
                    tracked = self.selection.tracked is active
                    self.stop(active)
                else:
                    if active.timetable is None:
                        active.from_station = report.from_station
                        active.to_station = report.to_station
                    continue

            timetables = self.timetables.get_by_train_id(report.id)
            if timetables:
                for timetable in timetables:
                    train = Train.from_timetable(timetable)
                    self._apply_report(train, report)
                    delay = train.delay
                    if timetable.start + delay <= now <= timetable.end + delay:
                        self.start(train, marked=marked, tracked=tracked)
                    else:
                        registry.standby[timetable.id] = train
                continue

            railway = self.railways.get(report.railway_id) if report.railway_id else None
            if railway is None:
                continue

            train = Train(id=report.id, railway=railway, direction=report.direction or 1, realtime=True)
            self._apply_report(train, report)
            train.from_station = report.from_station
            train.to_station = report.to_station
            self.start(train, marked=marked, tracked=tracked)

        for train in registry.snapshot():
            status = self.railway_status.get(train.railway.id)
            unconfirmed = train.id not in registry.realtime_ids
            if status is not None and status.suspended:
                self.stop(train)
            elif unconfirmed and (train.timetable is None or (status is not None and status.status and train.railway.dynamic)):
                self.stop(train)

        self.refresh(now)

    @staticmethod
    def _apply_report(train: Train, report: TrainReport) -> None:
        if report.delay is not None:
            train.delay = report.delay
        if report.destination is not None:
            train.destination = report.destination
        if report.train_type is not None:
            train.train_type = report.train_type
        train.realtime = True

    @staticmethod
    def _report_changed(train: Train, report: TrainReport) -> bool:
        return (
            (report.delay is not None and report.delay != train.delay)
            or (report.destination is not None and report.destination != train.destination)
            or (report.train_type is not None and report.train_type != train.train_type)
        )
