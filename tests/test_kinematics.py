"""Tests for the motion profile solver."""

import unittest
import sys
from pathlib import Path

# Add src to path so we can import trainmotion
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from trainmotion.config import EngineConfig
from trainmotion.kinematics import PhysicalLimits, departure_window, solve_flight, solve_section


def covered_distance(profile):
    """Closed-form distance of a symmetric profile."""
    return (
        profile.acceleration * profile.acceleration_time ** 2
        + profile.max_speed * (profile.duration - 2 * profile.acceleration_time)
    )


class TestSolveSection(unittest.TestCase):
    """Test accelerate/cruise/decelerate profiles."""

    def setUp(self):
        self.trains = PhysicalLimits.for_trains(EngineConfig())

    def test_trapezoid_without_window(self):
        """Test 2000 units at a=1 with a 10 s acceleration time."""
        limits = PhysicalLimits(max_speed=10, acceleration=1)
        self.assertAlmostEqual(limits.max_acc_distance, 50)

        profile = solve_section(2000, limits)

        self.assertAlmostEqual(profile.duration, 20 + (2000 - 100) / 10)
        self.assertAlmostEqual(profile.acceleration_time, 10)
        self.assertAlmostEqual(profile.max_speed, 10)

    def test_triangle_without_window(self):
        """Test short sections never reach top speed."""
        profile = solve_section(0.5, self.trains)

        self.assertAlmostEqual(profile.duration, 2 * (0.5 / self.trains.acceleration) ** 0.5)
        self.assertLess(profile.max_speed, self.trains.max_speed)
        self.assertAlmostEqual(profile.acceleration_time, profile.duration / 2)

    def test_window_stretches_duration(self):
        """Test a slow timetable window lowers the cruise speed."""
        profile = solve_section(1.5, self.trains, min_duration=150, max_duration=170)

        self.assertAlmostEqual(profile.duration, 150)
        self.assertLess(profile.max_speed, self.trains.max_speed)
        self.assertAlmostEqual(profile.max_speed, profile.acceleration * profile.acceleration_time)
        self.assertAlmostEqual(covered_distance(profile), 1.5, places=9)

    def test_window_compresses_to_triangle(self):
        """Test a tight window degenerates into a faster triangle."""
        profile = solve_section(1.5, self.trains, max_duration=40)

        self.assertAlmostEqual(profile.duration, 40)
        self.assertAlmostEqual(profile.max_speed, 2 * 1.5 / 40)
        self.assertAlmostEqual(profile.acceleration_time, 20)
        self.assertAlmostEqual(covered_distance(profile), 1.5, places=9)

    def test_short_section_window(self):
        """Test triangle profiles re-derive acceleration for the window."""
        profile = solve_section(0.5, self.trains, min_duration=60, max_duration=120)

        self.assertAlmostEqual(profile.duration, 60)
        self.assertAlmostEqual(profile.acceleration, 0.5 * 4 / 3600)
        self.assertAlmostEqual(covered_distance(profile), 0.5, places=9)

    def test_inverted_window_prefers_upper_bound(self):
        profile = solve_section(1.5, self.trains, min_duration=200, max_duration=150)
        self.assertAlmostEqual(profile.duration, 150)

    def test_duration_stays_in_window(self):
        """Test the solved duration always respects the window."""
        for distance in (0.2, 0.9, 1.5, 3.0, 8.0):
            for window in ((30, 90), (100, 160), (300, 360)):
                profile = solve_section(distance, self.trains, *window)
                self.assertGreaterEqual(profile.duration, window[0] - 1e-9)
                self.assertLessEqual(profile.duration, window[1] + 1e-9)
                self.assertAlmostEqual(covered_distance(profile), distance, places=9)

    def test_distance_increases_monotonically(self):
        profile = solve_section(3.0, self.trains, start_time=100)
        samples = [profile.distance_at(100 + profile.duration * i / 50) for i in range(51)]

        self.assertEqual(samples[0], 0)
        self.assertAlmostEqual(samples[-1], 3.0)
        for before, after in zip(samples, samples[1:]):
            self.assertLessEqual(before, after + 1e-12)

    def test_profile_is_continuous_at_phase_boundaries(self):
        profile = solve_section(3.0, self.trains)
        t = profile.acceleration_time
        self.assertAlmostEqual(profile.distance_at(t - 1e-6), profile.distance_at(t + 1e-6), places=6)
        t = profile.duration - profile.deceleration_time
        self.assertAlmostEqual(profile.distance_at(t - 1e-6), profile.distance_at(t + 1e-6), places=6)

    def test_zero_distance(self):
        profile = solve_section(0, self.trains, start_time=50)
        self.assertEqual(profile.duration, 0)
        self.assertEqual(profile.end_time, 50)
        self.assertEqual(profile.fraction_at(50), 1.0)


class TestDepartureWindow(unittest.TestCase):
    """Test actual departure and duration bounds."""

    def test_first_section_departs_on_schedule(self):
        departure, min_duration, max_duration = departure_window(
            0, 0, 100, 130, 0, advancing=False, realtime_speed=True, min_standing_duration=30, min_delay=0
        )
        self.assertEqual(departure, 0)
        self.assertEqual(min_duration, 100)
        self.assertEqual(max_duration, 160)

    def test_delay_shifts_departure(self):
        departure, min_duration, _ = departure_window(
            60, 0, 100, 130, 60, advancing=False, realtime_speed=True, min_standing_duration=30, min_delay=0
        )
        self.assertEqual(departure, 60)
        self.assertEqual(min_duration, 100)

    def test_advancing_waits_minimum_standing_time(self):
        """Test a late arrival still stands before departing at normal speed."""
        departure, _, _ = departure_window(
            120, 130, 230, None, 0, advancing=True, realtime_speed=True, min_standing_duration=30, min_delay=0
        )
        self.assertEqual(departure, 150)

        departure, _, _ = departure_window(
            120, 130, 230, None, 0, advancing=True, realtime_speed=False, min_standing_duration=30, min_delay=0
        )
        self.assertEqual(departure, 130)

    def test_missing_departure_uses_now(self):
        departure, min_duration, max_duration = departure_window(
            42, None, None, None, 0, advancing=False, realtime_speed=True, min_standing_duration=30, min_delay=0
        )
        self.assertEqual(departure, 42)
        self.assertIsNone(min_duration)
        self.assertIsNone(max_duration)

    def test_next_departure_caps_window(self):
        """Test a tight next departure keeps the smaller upper bound."""
        _, min_duration, max_duration = departure_window(
            0, 0, 100, 110, 0, advancing=False, realtime_speed=True, min_standing_duration=30, min_delay=0
        )
        self.assertEqual(min_duration, 100)
        self.assertEqual(max_duration, 140)


class TestSolveFlight(unittest.TestCase):
    """Test take-off and landing profiles."""

    def test_take_off(self):
        profile = solve_flight(10, 0.1, 0.01, start_time=10)

        self.assertAlmostEqual(profile.acceleration_time, 10)
        self.assertEqual(profile.deceleration_time, 0)
        self.assertAlmostEqual(profile.duration, 105)
        self.assertAlmostEqual(profile.distance_at(20), 0.5)
        self.assertAlmostEqual(profile.distance_at(profile.end_time), 10)

    def test_landing(self):
        profile = solve_flight(10, 0.1, -0.01)

        self.assertEqual(profile.acceleration_time, 0)
        self.assertAlmostEqual(profile.deceleration_time, 10)
        self.assertAlmostEqual(profile.duration, 105)
        self.assertAlmostEqual(profile.distance_at(95), 9.5)


if __name__ == "__main__":
    unittest.main()
