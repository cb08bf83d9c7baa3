"""Tests for MotionEngine and configuration loading."""

import os
import unittest
from unittest.mock import patch, MagicMock
import sys
from pathlib import Path

# Add src to path so we can import trainmotion
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from trainmotion.buses import BusReport
from trainmotion.clock import SimulationClock
from trainmotion.config import EngineConfig, load_config
from trainmotion.engine import PLAYBACK, REALTIME, MotionEngine, RealtimeSnapshot
from trainmotion.feeds import LivePoller
from trainmotion.live_tracker import LiveTrackEstimator
from trainmotion.models import BusTrip, Flight, Prediction, Railway, Station, Timetable, TrainReport
from trainmotion.stations import StationResolver


def make_railway():
    return Railway(id="line", stations=["A", "B", "C"], station_offsets=[0.0, 1.5, 3.0])


def make_timetable(railway, timetable_id="t1", train_id="101", start=0.0):
    return Timetable(
        id=timetable_id,
        train_id=train_id,
        railway=railway,
        direction=1,
        stations=["A", "B", "C"],
        arrival_times=[None, start + 100, start + 230],
        departure_times=[start, start + 130, None],
    )


class TestMotionEngine(unittest.TestCase):
    """Test refresh boundaries and the uniform position read."""

    def setUp(self):
        self.railway = make_railway()
        self.clock = SimulationClock(start=0)
        self.trip = BusTrip(id="trip-1", stops=["s1", "s2"], departure_times=[0.0, 100.0], offsets=[0.0, 0.6], route_id="R1")
        self.flight = Flight(id="NH1", distance=10, entry=0, start=0, end=300, max_speed=0.1, acceleration=0.01)

    def make_engine(self, **kwargs):
        return MotionEngine(
            EngineConfig(),
            self.clock,
            railways={"line": self.railway},
            timetables=[make_timetable(self.railway)],
            **kwargs,
        )

    def test_playback_tick_starts_vehicles(self):
        engine = self.make_engine()
        engine.buses.trips[self.trip.id] = self.trip
        engine.flights.flights[self.flight.id] = self.flight

        engine.tick()

        kinds = sorted(p.kind for p in engine.positions())
        self.assertEqual(kinds, ["bus", "flight", "train"])
        bus = next(p for p in engine.positions() if p.kind == "bus")
        self.assertEqual(bus.railway_id, "R1")

    def test_positions_follow_clock(self):
        engine = self.make_engine()
        engine.tick()

        self.clock.advance(50)
        position = engine.positions()[0]

        self.assertEqual(position.id, "101")
        self.assertEqual(position.railway_id, "line")
        self.assertEqual((position.section_index, position.section_length), (0, 1))
        self.assertAlmostEqual(position.progress, 0.5, places=6)
        self.assertFalse(position.live)

    def test_refresh_only_on_boundaries(self):
        engine = self.make_engine()
        with patch.object(engine, "refresh") as refresh:
            engine.tick()
            self.clock.advance(30)
            engine.tick()
            self.assertEqual(refresh.call_count, 1)

            self.clock.advance(30)
            engine.tick()
            self.assertEqual(refresh.call_count, 2)

    def test_realtime_mode_applies_snapshots(self):
        source = MagicMock(
            return_value=RealtimeSnapshot(
                train_reports=[TrainReport(id="101", delay=0)],
                bus_reports=[BusReport(trip_id="trip-1", stop="s1")],
            )
        )
        engine = self.make_engine(realtime_source=source, mode=REALTIME)
        engine.buses.trips[self.trip.id] = self.trip

        engine.tick()
        engine.tick()

        source.assert_called_once()
        self.assertIn("101", engine.trains.registry.realtime_ids)
        self.assertIn("101", engine.trains.registry)
        self.assertTrue(engine.buses.registry.get("trip-1").realtime)

        self.clock.advance(60)
        engine.tick()
        self.assertEqual(source.call_count, 2)

    def test_realtime_source_failure_keeps_vehicles(self):
        source = MagicMock(side_effect=ConnectionError("offline"))
        engine = self.make_engine(realtime_source=source, mode=REALTIME)
        engine.refresh()

        with self.assertLogs("trainmotion.engine", level="WARNING"):
            engine.tick()

        self.assertIn("101", engine.trains.registry)

    def test_daily_timetable_reload(self):
        replacement = make_timetable(self.railway, timetable_id="t2", train_id="202", start=4 * 3600)
        loader = MagicMock(return_value=[replacement])
        engine = self.make_engine(timetable_loader=loader)

        engine.tick()
        loader.assert_not_called()

        self.clock.set_time(4 * 3600)
        engine.tick()

        loader.assert_called_once_with(3 * 3600)
        self.assertEqual([t.id for t in engine.timetables.all()], ["t2"])
        self.assertNotIn("101", engine.trains.registry)
        self.assertIn("202", engine.trains.registry)

    def test_failed_reload_keeps_timetables(self):
        loader = MagicMock(side_effect=IOError("missing"))
        engine = self.make_engine(timetable_loader=loader)

        with self.assertLogs("trainmotion.engine", level="ERROR"):
            engine.refresh_timetables()

        self.assertEqual(len(engine.timetables), 1)

    def test_day_boundary_without_loader_keeps_timetables(self):
        engine = self.make_engine()
        engine.tick()

        self.clock.set_time(4 * 3600)
        engine.tick()

        self.assertEqual([t.id for t in engine.timetables.all()], ["t1"])
        self.assertEqual(engine.last_timetable_refresh, 3 * 3600)

    def test_clock_change_stops_everything(self):
        engine = self.make_engine()
        engine.tick()
        engine.selection.mark(engine.trains.registry.get("101"))

        self.clock.set_time(60)
        engine.on_clock_change()

        self.assertEqual(engine.vehicles(), [])
        self.assertIsNone(engine.selection.marked)
        self.assertEqual(self.clock.pending(), 0)

        engine.tick()
        self.assertIn("101", engine.trains.registry)

    def test_set_mode(self):
        engine = self.make_engine()
        engine.tick()

        engine.set_mode(REALTIME)
        self.assertEqual(engine.mode, REALTIME)
        self.assertEqual(engine.vehicles(), [])

        with self.assertRaises(ValueError):
            engine.set_mode("fast-forward")
        with self.assertRaises(ValueError):
            MotionEngine(mode="fast-forward")

    def test_live_poller_on_interval(self):
        stations = [Station(id="A", name="Alpha"), Station(id="B", name="Bravo"), Station(id="C", name="Charlie")]
        client = MagicMock()
        client.get_line_arrivals.return_value = [
            Prediction("Bravo", vehicle_id="7", direction="outbound", time_to_station=30),
            Prediction("Charlie", vehicle_id="7", direction="outbound", time_to_station=90),
        ]
        estimator = LiveTrackEstimator(EngineConfig(), clock=self.clock)
        poller = LivePoller(
            client, estimator, self.railway, StationResolver.from_stations(stations), "line", now=self.clock.now
        )
        engine = MotionEngine(EngineConfig(), self.clock, poller=poller)

        engine.tick()
        self.clock.advance(5)
        engine.tick()
        self.assertEqual(client.get_line_arrivals.call_count, 1)

        self.clock.advance(5)
        engine.tick()
        self.assertEqual(client.get_line_arrivals.call_count, 2)

        live = [p for p in engine.positions() if p.live]
        self.assertEqual(len(live), 1)
        self.assertEqual((live[0].section_index, live[0].section_length), (0, 1))
        self.assertEqual(engine.mode, PLAYBACK)

    def test_default_poller_ages_on_engine_clock(self):
        stations = [Station(id="A", name="Alpha"), Station(id="B", name="Bravo"), Station(id="C", name="Charlie")]
        client = MagicMock()
        client.get_line_arrivals.return_value = [
            Prediction("Bravo", vehicle_id="7", direction="outbound", time_to_station=30),
            Prediction("Charlie", vehicle_id="7", direction="outbound", time_to_station=90),
        ]
        poller = LivePoller(
            client, LiveTrackEstimator(EngineConfig()), self.railway, StationResolver.from_stations(stations), "line"
        )
        engine = MotionEngine(EngineConfig(), self.clock, poller=poller)

        engine.tick()
        live = [p for p in engine.positions() if p.live]
        self.assertAlmostEqual(live[0].progress, 0.5)

        client.get_line_arrivals.side_effect = ConnectionError("offline")
        self.clock.advance(10)
        with self.assertLogs("trainmotion.feeds", level="WARNING"):
            engine.tick()

        live = [p for p in engine.positions() if p.live]
        self.assertEqual(len(live), 1)
        self.assertAlmostEqual(live[0].progress, 0.5 + 10 / 60)

        self.clock.advance(20)
        self.assertEqual([p for p in engine.positions() if p.live], [])


class TestLoadConfig(unittest.TestCase):
    """Test environment overrides."""

    @patch.dict(os.environ, {"TRAINMOTION_MAX_SPEED": "0.03", "TRAINMOTION_TFL_LINE_ID": "jubilee", "TFL_APP_KEY": "abc"})
    def test_environment_overrides(self):
        config = load_config("/nonexistent/.env")

        self.assertEqual(config.max_speed, 0.03)
        self.assertAlmostEqual(config.acceleration, 0.03 / 40)
        self.assertEqual(config.tfl_line_id, "jubilee")
        self.assertEqual(config.tfl_app_key, "abc")

    def test_defaults(self):
        config = EngineConfig()
        self.assertEqual(config.min_standing_duration, 30)
        self.assertEqual(config.stale_after, 30)
        self.assertAlmostEqual(config.bus_acceleration, 0.012 / 20)


if __name__ == "__main__":
    unittest.main()
