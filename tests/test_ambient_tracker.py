import random
import unittest

from ambient_tracker import RollingBaselineTracker, window_percentile


class TestAmbientTracker(unittest.TestCase):
    def test_window_evicts_oldest_first(self):
        tracker = RollingBaselineTracker(window_size=200, percentile=0.15)
        for value in range(1, 251):
            tracker.push(float(value))

        self.assertEqual(tracker.window(), [float(v) for v in range(51, 251)])

    def test_estimate_is_low_percentile(self):
        tracker = RollingBaselineTracker(window_size=200, percentile=0.15)
        for value in range(1, 251):
            tracker.push(float(value))

        # sorted window 51..250, index floor(199 * 0.15) = 29
        self.assertEqual(tracker.current_estimate(), 80.0)

    def test_empty_window_estimate_is_zero(self):
        tracker = RollingBaselineTracker()
        self.assertEqual(tracker.current_estimate(), 0.0)
        self.assertEqual(window_percentile([], 0.5), 0.0)

    def test_reset_clears_window(self):
        tracker = RollingBaselineTracker(window_size=10)
        for value in (40.0, 50.0, 60.0):
            tracker.push(value)
        tracker.reset()

        self.assertEqual(tracker.window(), [])
        self.assertEqual(tracker.current_estimate(), 0.0)

    def test_percentile_monotone_and_member_of_window(self):
        rng = random.Random(7)
        values = [rng.uniform(20.0, 90.0) for _ in range(57)]
        previous = None
        for step in range(0, 101):
            p = step / 100.0
            result = window_percentile(values, p)
            self.assertIn(result, values)
            if previous is not None:
                self.assertGreaterEqual(result, previous)
            previous = result

    def test_configure_shrinks_keeping_newest(self):
        tracker = RollingBaselineTracker(window_size=5, percentile=0.0)
        for value in range(1, 6):
            tracker.push(float(value))
        tracker.configure(window_size=3)

        self.assertEqual(tracker.window(), [3.0, 4.0, 5.0])
        self.assertEqual(tracker.current_estimate(), 3.0)

    def test_invalid_arguments(self):
        with self.assertRaises(ValueError):
            RollingBaselineTracker(window_size=0)
        with self.assertRaises(ValueError):
            RollingBaselineTracker(percentile=1.5)


if __name__ == "__main__":
    unittest.main()
