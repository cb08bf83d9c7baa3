"""Tests for BusLifecycle and FlightLifecycle."""

import unittest
import sys
from pathlib import Path

# Add src to path so we can import trainmotion
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from trainmotion.buses import BusLifecycle, BusReport, set_bus_section
from trainmotion.clock import SimulationClock
from trainmotion.config import EngineConfig
from trainmotion.flights import FlightLifecycle
from trainmotion.models import Bus, BusTrip, Flight, VehicleKind, VehicleState


def make_trip():
    return BusTrip(
        id="trip-1",
        stops=["s1", "s2", "s3"],
        departure_times=[0.0, 100.0, 200.0],
        offsets=[0.0, 0.6, 1.2],
        route_id="R1",
    )


class TestBusLifecycle(unittest.TestCase):
    """Test trip-scheduled and realtime buses."""

    def setUp(self):
        self.clock = SimulationClock(start=0)
        self.trip = make_trip()
        self.lifecycle = BusLifecycle(self.clock, EngineConfig(), {self.trip.id: self.trip})

    def test_section_from_departures(self):
        bus = Bus(id="trip-1", trip=self.trip)

        self.assertTrue(set_bus_section(bus, 150))

        self.assertEqual((bus.section_index, bus.section_length), (1, 1))
        self.assertEqual(bus.departure_time, 100)
        self.assertEqual(bus.next_departure_time, 200)
        self.assertIs(bus.kind, VehicleKind.BUS)

    def test_scheduled_bus_runs_trip(self):
        self.assertEqual(self.lifecycle.refresh(), 1)
        bus = self.lifecycle.registry.get("trip-1")
        self.assertEqual(bus.section_index, 0)
        self.assertAlmostEqual(bus.profile.duration, 70)

        self.clock.run_until(120)
        self.assertEqual(bus.section_index, 1)
        self.assertAlmostEqual(bus.profile.start_time, 100)

        self.clock.run_until(180)
        self.assertIsNone(bus.profile)
        self.assertIn("trip-1", self.lifecycle.registry)

        self.clock.run_until(205)
        self.assertNotIn("trip-1", self.lifecycle.registry)
        self.assertIs(bus.state, VehicleState.RETIRED)

    def test_refresh_outside_trip(self):
        self.assertEqual(self.lifecycle.refresh(500), 0)

    def test_realtime_stop_report(self):
        self.lifecycle.apply_realtime([BusReport(trip_id="trip-1", stop="s2")])

        bus = self.lifecycle.registry.get("trip-1")
        self.assertTrue(bus.realtime)
        self.assertEqual(bus.stop, "s2")
        self.assertEqual((bus.section_index, bus.section_length), (1, 1))

    def test_realtime_offset_report(self):
        self.lifecycle.apply_realtime([BusReport(trip_id="trip-1", offset=0.3)])

        bus = self.lifecycle.registry.get("trip-1")
        self.assertEqual(bus.stop, "s2")

    def test_unknown_trip_is_ignored(self):
        self.lifecycle.apply_realtime([BusReport(trip_id="other", stop="s1")])
        self.assertEqual(len(self.lifecycle.registry), 0)
        self.assertIn("other", self.lifecycle.registry.realtime_ids)


class TestFlightLifecycle(unittest.TestCase):
    """Test take-off and landing legs."""

    def setUp(self):
        self.clock = SimulationClock(start=5)
        self.flight = Flight(
            id="NH1", distance=10.0, entry=0.0, start=10.0, end=200.0, max_speed=0.1, acceleration=0.01
        )
        self.lifecycle = FlightLifecycle(self.clock, EngineConfig(), {"NH1": self.flight})

    def test_flight_runs_until_end(self):
        self.assertEqual(self.lifecycle.refresh(), 1)
        flight = self.lifecycle.registry.get("NH1")

        self.assertIsNot(flight, self.flight)
        self.assertIs(flight.kind, VehicleKind.FLIGHT)
        self.assertEqual(flight.progress_at(5), 0)
        self.assertAlmostEqual(flight.profile.duration, 105)

        self.clock.run_until(199)
        self.assertIn("NH1", self.lifecycle.registry)
        self.clock.run_until(200)
        self.assertNotIn("NH1", self.lifecycle.registry)

    def test_flight_can_be_shown_again(self):
        """Test a stopped flight restarts on the next refresh inside its window."""
        self.lifecycle.refresh()
        self.lifecycle.stop_all()

        self.assertEqual(self.lifecycle.refresh(), 1)

    def test_flight_outside_window(self):
        self.assertEqual(self.lifecycle.refresh(200), 0)

    def test_zero_distance_flight_is_not_started(self):
        self.flight.distance = 0
        with self.assertLogs("trainmotion.lifecycle", level="WARNING"):
            self.assertEqual(self.lifecycle.refresh(), 0)


if __name__ == "__main__":
    unittest.main()
