import unittest
from unittest import mock

from config import VolumeConfig
import volume_sinks
from volume_controller import (
    VolumeChangeRecord,
    VolumeController,
    VolumeDirection,
    decide,
    target_volume_step,
)
from volume_sinks import DryRunVolumeSink, create_volume_sink


class TestVolumeDecision(unittest.TestCase):
    def test_floor_and_ceiling(self):
        low = decide(ambient_db=0.0, target_ratio_db=0.0, min_volume_step=1,
                     current_volume_step=5, max_volume_step=15)
        high = decide(ambient_db=200.0, target_ratio_db=0.0, min_volume_step=1,
                      current_volume_step=5, max_volume_step=15)

        self.assertEqual(low.new_volume, 1)
        self.assertEqual(high.new_volume, 15)

    def test_midpoint_rounds_half_up(self):
        # 50 + 10 = 60 dB -> halfway between 30 and 90 -> 7.5 of 15 steps
        self.assertEqual(target_volume_step(50.0, 10.0, 1, 15), 8)
        self.assertEqual(target_volume_step(50.0, 10.0, 1, 10), 5)

    def test_idempotent(self):
        first = decide(55.0, 10.0, 1, current_volume_step=3, max_volume_step=15)
        second = decide(55.0, 10.0, 1, current_volume_step=first.new_volume, max_volume_step=15)

        self.assertEqual(first.new_volume, second.new_volume)
        self.assertIs(first.direction, VolumeDirection.UP)
        self.assertIs(second.direction, VolumeDirection.UNCHANGED)

    def test_record_direction(self):
        self.assertIs(VolumeChangeRecord(0.0, 40.0, 9, 4).direction, VolumeDirection.DOWN)
        self.assertIs(VolumeChangeRecord(0.0, 40.0, 4, 9).direction, VolumeDirection.UP)
        self.assertTrue(VolumeChangeRecord(0.0, 40.0, 4, 4).applied)


class TestVolumeController(unittest.TestCase):
    def test_applies_new_volume(self):
        sink = DryRunVolumeSink(max_step=15, start_step=3)
        controller = VolumeController(sink)

        record = controller.adjust_volume(ambient_db=50.0, target_ratio_db=10.0, min_volume=1)

        self.assertEqual(record.old_volume, 3)
        self.assertEqual(record.new_volume, 8)
        self.assertEqual(sink.current_step, 8)
        self.assertEqual(sink.set_calls, 1)

    def test_unchanged_skips_device_call(self):
        sink = DryRunVolumeSink(max_step=15, start_step=8)
        controller = VolumeController(sink)

        record = controller.adjust_volume(ambient_db=50.0, target_ratio_db=10.0)

        self.assertIs(record.direction, VolumeDirection.UNCHANGED)
        self.assertEqual(sink.set_calls, 0)

    def test_permission_error_is_recorded_not_raised(self):
        sink = DryRunVolumeSink(max_step=15, start_step=3)
        sink.fail_with = PermissionError("volume locked")
        controller = VolumeController(sink)

        record = controller.adjust_volume(ambient_db=80.0, target_ratio_db=10.0)

        self.assertEqual(record.new_volume, 15)
        self.assertFalse(record.applied)
        self.assertIn("permission denied", record.apply_error)
        self.assertEqual(sink.current_step, 3)

    def test_os_error_is_recorded(self):
        sink = DryRunVolumeSink(max_step=15, start_step=3)
        sink.fail_with = OSError("device busy")
        record = VolumeController(sink).adjust_volume(ambient_db=80.0, target_ratio_db=10.0)

        self.assertEqual(record.apply_error, "device busy")


class TestCreateVolumeSink(unittest.TestCase):
    def test_dry_run_config(self):
        sink = create_volume_sink(VolumeConfig(dry_run=True, max_volume_step=10, dry_run_start_step=4))
        self.assertIsInstance(sink, DryRunVolumeSink)
        self.assertEqual(sink.max_step, 10)
        self.assertEqual(sink.current_step, 4)

    def test_missing_mixer_falls_back_to_dry_run(self):
        with mock.patch.object(volume_sinks, "EndpointVolumeSink", side_effect=ImportError("pycaw")):
            sink = create_volume_sink(VolumeConfig())
        self.assertIsInstance(sink, DryRunVolumeSink)

    def test_invalid_step_scale(self):
        with self.assertRaises(ValueError):
            DryRunVolumeSink(max_step=0)


if __name__ == "__main__":
    unittest.main()
