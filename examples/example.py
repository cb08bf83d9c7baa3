"""Example usage of MotionEngine: a timetable playback and a live TfL tracker."""

import logging
import sys
import time
from pathlib import Path

# Add src to path so we can import trainmotion
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from trainmotion import (
    EngineConfig,
    LiveTrackEstimator,
    LivePoller,
    MotionEngine,
    Railway,
    SimulationClock,
    Station,
    StationResolver,
    TfLClient,
    Timetable,
    configure_logging,
    load_config,
)

logger = logging.getLogger(__name__)

# Victoria line, northbound station order with approximate offsets (km)
VICTORIA_STATIONS = [
    ("940GZZLUBXN", "Brixton Underground Station", 0.0),
    ("940GZZLUSKW", "Stockwell Underground Station", 1.9),
    ("940GZZLUVXL", "Vauxhall Underground Station", 3.4),
    ("940GZZLUPCO", "Pimlico Underground Station", 4.4),
    ("940GZZLUVIC", "Victoria Underground Station", 5.4),
    ("940GZZLUGPK", "Green Park Underground Station", 6.5),
    ("940GZZLUOXC", "Oxford Circus Underground Station", 7.5),
    ("940GZZLUWRR", "Warren Street Underground Station", 8.6),
    ("940GZZLUEUS", "Euston Underground Station", 9.3),
    ("940GZZLUKSX", "King's Cross St. Pancras Underground Station", 10.2),
    ("940GZZLUHAI", "Highbury & Islington Underground Station", 12.6),
    ("940GZZLUFPK", "Finsbury Park Underground Station", 14.6),
    ("940GZZLUSVS", "Seven Sisters Underground Station", 18.0),
    ("940GZZLUTMH", "Tottenham Hale Underground Station", 19.0),
    ("940GZZLUBLR", "Blackhorse Road Underground Station", 20.2),
    ("940GZZLUWWL", "Walthamstow Central Underground Station", 21.0),
]


def build_victoria_line():
    railway = Railway(
        id="victoria",
        stations=[station_id for station_id, _, _ in VICTORIA_STATIONS],
        station_offsets=[offset for _, _, offset in VICTORIA_STATIONS],
        ascending="northbound",
        descending="southbound",
        title="Victoria",
    )
    resolver = StationResolver.from_stations(Station(id=s, name=n) for s, n, _ in VICTORIA_STATIONS)
    return railway, resolver


def demo_timetable(railway: Railway, start: float, train_id: str) -> Timetable:
    """A northbound run with 30 s dwell at every stop."""
    arrivals, departures = [], []
    t = start
    for i, offset in enumerate(railway.station_offsets):
        if i > 0:
            t += (offset - railway.station_offsets[i - 1]) / 0.015
            arrivals.append(t)
            t += 30
        else:
            arrivals.append(None)
        departures.append(t if i < len(railway.stations) - 1 else None)
    return Timetable(
        id=f"victoria.{train_id}",
        train_id=train_id,
        railway=railway,
        direction=1,
        stations=list(railway.stations),
        arrival_times=arrivals,
        departure_times=departures,
        destination="940GZZLUWWL",
    )


def playback_demo(minutes: int = 20):
    """Run a few timetabled trains through simulated time and print positions."""
    railway, _ = build_victoria_line()
    timetables = [demo_timetable(railway, start, str(100 + i)) for i, start in enumerate(range(0, 1800, 300))]

    clock = SimulationClock(start=0, speed=60)
    engine = MotionEngine(EngineConfig(), clock, railways={railway.id: railway}, timetables=timetables)

    for _ in range(minutes):
        engine.tick()
        print(f"\n--- t = {clock.now() / 60:.0f} min ---")
        for position in engine.positions():
            station = railway.stations[position.section_index]
            print(f"  Train {position.id}: leaving {station} ({position.progress:.0%})")
        clock.advance(1)


def live_demo(polls: int = 6):
    """Track Victoria line trains from TfL arrival predictions."""
    config = load_config()
    railway, resolver = build_victoria_line()
    client = TfLClient(config.tfl_app_key, timeout=config.feed_timeout, cache_ttl=config.feed_cache_ttl)
    estimator = LiveTrackEstimator(config)
    poller = LivePoller(client, estimator, railway, resolver, config.tfl_line_id)

    for _ in range(polls):
        records = poller.poll()
        if records is None:
            print(f"Feed unavailable: {poller.last_error}")
        else:
            print(f"\n{len(records)} vehicles on the {railway.title} line")
            for record in sorted(records, key=lambda r: (r.section_index, r.progress)):
                print(
                    f"  {record.vehicle_id:>4} {record.departure_station} -> {record.arrival_station} "
                    f"{record.progress:.0%} ({record.current_location})"
                )
        time.sleep(config.live_poll_interval)


if __name__ == "__main__":
    configure_logging("INFO")

    if len(sys.argv) > 1 and sys.argv[1] == "live":
        try:
            live_demo()
        except KeyboardInterrupt:
            print("\nExiting...")
    else:
        playback_demo()
