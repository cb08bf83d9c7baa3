"""TrainMotion - Vehicle scheduling and motion engine for transit map animation."""

__version__ = "0.1.0"

from .models import (
    Station,
    Railway,
    RailwayStatus,
    Timetable,
    BusTrip,
    Train,
    Bus,
    Flight,
    MotionProfile,
    Prediction,
    LiveTrackRecord,
    TrainReport,
    VehiclePosition,
)
from .config import EngineConfig, load_config, configure_logging
from .clock import SimulationClock
from .kinematics import PhysicalLimits, solve_section, solve_flight
from .stations import StationResolver, normalize_station_key
from .trains import TrainLifecycle
from .buses import BusLifecycle, BusReport
from .flights import FlightLifecycle
from .live_tracker import LiveTrackEstimator, parse_location
from .feeds import TfLClient, GTFSRealtimeClient, LivePoller
from .engine import MotionEngine, RealtimeSnapshot

__all__ = [
    "MotionEngine",
    "RealtimeSnapshot",
    "EngineConfig",
    "load_config",
    "configure_logging",
    "SimulationClock",
    "PhysicalLimits",
    "solve_section",
    "solve_flight",
    "StationResolver",
    "normalize_station_key",
    "TrainLifecycle",
    "BusLifecycle",
    "BusReport",
    "FlightLifecycle",
    "LiveTrackEstimator",
    "parse_location",
    "TfLClient",
    "GTFSRealtimeClient",
    "LivePoller",
    "Station",
    "Railway",
    "RailwayStatus",
    "Timetable",
    "BusTrip",
    "Train",
    "Bus",
    "Flight",
    "MotionProfile",
    "Prediction",
    "LiveTrackRecord",
    "TrainReport",
    "VehiclePosition",
]
