"""Data models for the vehicle scheduling and motion engine."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional


@dataclass
class Station:
    """Represents a station or stop on a railway."""
    id: str
    name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@dataclass
class Railway:
    """A named path with ordered stations and cumulative distance offsets (km)."""
    id: str
    stations: List[str]  # Station IDs in ascending order
    station_offsets: List[float]  # Aligned 1:1 with stations
    ascending: str = "ascending"
    descending: str = "descending"
    title: str = ""
    dynamic: bool = False  # Trains only run when confirmed by realtime data

    def section_distance(self, section_index: int, section_length: int) -> float:
        """Physical length of the section starting at section_index."""
        offsets = self.station_offsets
        return abs(offsets[section_index + section_length] - offsets[section_index])

    def station_index(self, station_id: str) -> int:
        """Index of a station on this railway, or -1."""
        try:
            return self.stations.index(station_id)
        except ValueError:
            return -1


@dataclass
class RailwayStatus:
    """Realtime operating status for a railway."""
    railway_id: str
    status: Optional[str] = None
    text: Optional[str] = None
    suspended: bool = False


@dataclass
class Timetable:
    """One scheduled run of a railway in one direction.

    Times are seconds on the simulation clock's timeline. Either time of a stop
    may be missing (pass-through or terminal stops).
    """
    id: str
    train_id: str
    railway: Railway
    direction: int  # +1 ascending, -1 descending
    stations: List[str]
    arrival_times: List[Optional[float]]
    departure_times: List[Optional[float]]
    start: Optional[float] = None
    end: Optional[float] = None
    previous: List[str] = field(default_factory=list)  # Timetable IDs
    next: List[str] = field(default_factory=list)  # Timetable IDs
    train_type: Optional[str] = None
    destination: Optional[str] = None

    def __post_init__(self):
        if self.start is None:
            times = [t for t in self.departure_times + self.arrival_times if t is not None]
            self.start = min(times) if times else 0.0
        if self.end is None:
            times = [t for t in self.arrival_times + self.departure_times if t is not None]
            self.end = max(times) if times else self.start


@dataclass
class BusTrip:
    """A scheduled bus trip with per-stop distance offsets along its shape."""
    id: str
    stops: List[str]
    departure_times: List[float]
    offsets: List[float]
    route_id: Optional[str] = None


class VehicleKind(Enum):
    TRAIN = "train"
    BUS = "bus"
    FLIGHT = "flight"


class VehicleState(Enum):
    PENDING = "pending"
    ACTIVE = "active"
    RETIRED = "retired"


class PendingAction(Enum):
    """What a vehicle does when its current timer fires."""
    ADVANCE = "advance"
    RETIRE = "retire"


@dataclass
class MotionProfile:
    """Acceleration, cruise and deceleration profile for one section."""
    start_time: float
    duration: float
    distance: float
    acceleration_time: float
    acceleration: float
    deceleration_time: float
    deceleration: float
    max_speed: float

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    def distance_at(self, time: float) -> float:
        """Distance covered at the given clock time."""
        if self.duration <= 0:
            return self.distance
        elapsed = min(max(time - self.start_time, 0.0), self.duration)
        if elapsed >= self.duration:
            return self.distance

        remaining = self.duration - elapsed
        if elapsed < self.acceleration_time:
            return self.acceleration * elapsed * elapsed / 2
        if remaining < self.deceleration_time:
            return self.distance - self.deceleration * remaining * remaining / 2
        covered = self.acceleration * self.acceleration_time * self.acceleration_time / 2
        return covered + self.max_speed * (elapsed - self.acceleration_time)

    def fraction_at(self, time: float) -> float:
        """Progress fraction in [0, 1] at the given clock time."""
        if self.distance <= 0:
            return 1.0
        return min(max(self.distance_at(time) / self.distance, 0.0), 1.0)


@dataclass(eq=False)
class Vehicle:
    """A live vehicle occurrence. Compared by identity."""
    id: str
    kind: VehicleKind = VehicleKind.TRAIN
    state: VehicleState = VehicleState.PENDING
    section_index: Optional[int] = None
    section_length: int = 0
    departure_time: Optional[float] = None
    arrival_time: Optional[float] = None
    next_departure_time: Optional[float] = None
    delay: float = 0.0
    realtime: bool = False
    profile: Optional[MotionProfile] = None
    token: Any = None  # TimerToken for the pending timer
    pending_action: Optional[PendingAction] = None
    pending_index: Optional[int] = None

    def progress_at(self, time: float) -> float:
        """Progress fraction along the current section."""
        if self.profile is None or self.section_length == 0:
            return 0.0
        return self.profile.fraction_at(time)


@dataclass(eq=False)
class Train(Vehicle):
    """A train bound to a timetable, or ad-hoc when driven by realtime data only."""
    railway: Optional[Railway] = None
    timetable: Optional[Timetable] = None
    direction: int = 1
    destination: Optional[str] = None
    from_station: Optional[str] = None  # Realtime: last station passed
    to_station: Optional[str] = None  # Realtime: station being approached
    train_type: Optional[str] = None
    timetable_index: Optional[int] = None
    departure_station: Optional[str] = None
    arrival_station: Optional[str] = None

    @classmethod
    def from_timetable(cls, timetable: Timetable) -> "Train":
        return cls(
            id=timetable.train_id,
            railway=timetable.railway,
            timetable=timetable,
            direction=timetable.direction,
            destination=timetable.destination,
            train_type=timetable.train_type,
        )


@dataclass(eq=False)
class Bus(Vehicle):
    """A bus running a trip; `stop` is set when driven by realtime data."""
    trip: Optional[BusTrip] = None
    stop: Optional[str] = None

    def __post_init__(self):
        self.kind = VehicleKind.BUS


@dataclass(eq=False)
class Flight(Vehicle):
    """A flight moving along a precomputed approach or departure path."""
    distance: float = 0.0
    entry: float = 0.0  # Time the flight becomes visible
    start: float = 0.0  # Time motion along the path begins
    end: float = 0.0
    max_speed: float = 0.0
    acceleration: float = 0.0  # Positive takes off, negative lands

    def __post_init__(self):
        self.kind = VehicleKind.FLIGHT


@dataclass
class TrainReport:
    """A single train entry from a realtime train-information feed."""
    id: str
    railway_id: Optional[str] = None
    direction: Optional[int] = None
    destination: Optional[str] = None
    from_station: Optional[str] = None
    to_station: Optional[str] = None
    delay: Optional[float] = None
    train_type: Optional[str] = None


@dataclass
class Prediction:
    """Represents a live arrival prediction for one vehicle at one station."""
    station_name: str
    vehicle_id: str = ""
    direction: str = ""  # "inbound" / "outbound" / ""
    destination: str = ""
    station_id: str = ""
    time_to_station: Optional[float] = None  # Seconds
    expected_arrival: Optional[float] = None  # Unix timestamp
    current_location: str = ""
    destination_id: str = ""
    towards: str = ""
    platform_name: str = ""


@dataclass
class LiveTrackRecord:
    """Inferred, smoothed position of a vehicle known only through predictions."""
    key: str
    vehicle_id: str
    railway_id: str
    section_index: int
    section_length: int
    progress: float  # Reported progress, after de-overlap
    base_progress: float  # Smoothing baseline, before de-overlap
    duration: float  # Seconds to traverse the section
    last_update: float
    time_to_station: float = 0.0
    departure_station: Optional[str] = None
    arrival_station: Optional[str] = None
    destination_name: str = ""
    current_location: str = ""
    previous_time: Optional[float] = None
    next_time: Optional[float] = None

    def progress_at(self, now: float, max_progress: float = 0.99) -> float:
        """Dead-reckoned progress at `now` using the stored duration."""
        elapsed = max(0.0, now - self.last_update)
        return min(max_progress, self.progress + elapsed / max(self.duration, 0.1))


@dataclass
class VehiclePosition:
    """Uniform position read for the renderer."""
    id: str
    kind: str
    railway_id: Optional[str]
    section_index: int
    section_length: int
    progress: float
    live: bool = False
