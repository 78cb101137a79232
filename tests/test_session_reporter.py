import csv
import json
import tempfile
import unittest
from pathlib import Path

from session_reporter import SessionReporter, summarize_history
from volume_controller import VolumeChangeRecord


class TestSessionReporter(unittest.TestCase):
    def test_summarize_counts_directions_and_failures(self):
        history = (
            VolumeChangeRecord(3.0, 70.0, 8, 8),
            VolumeChangeRecord(2.0, 40.0, 10, 4, apply_error="device busy"),
            VolumeChangeRecord(1.0, 60.0, 5, 10),
        )

        summary = summarize_history(history)

        self.assertEqual(summary["decisions"], 3)
        self.assertEqual(summary["volume_up"], 1)
        self.assertEqual(summary["volume_down"], 1)
        self.assertEqual(summary["volume_unchanged"], 1)
        self.assertEqual(summary["apply_failures"], 1)
        self.assertEqual(summary["history"][1]["direction"], "down")

    def test_save_session_writes_json_and_csv(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            reporter = SessionReporter(Path(tmpdir) / "reports")
            reporter.save_session({"session_started_at": 1.0, "decisions": 2, "final_volume": 9})
            reporter.save_session({"session_started_at": 5.0, "decisions": 1, "final_volume": 4})

            with open(reporter.json_path, "r", encoding="utf-8") as f:
                payload = json.load(f)
            with open(reporter.csv_path, "r", newline="", encoding="utf-8") as f:
                rows = list(csv.DictReader(f))

        self.assertEqual(payload["session_count"], 2)
        self.assertEqual(payload["latest"]["final_volume"], 4)
        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[0]["decisions"], "2")
        self.assertEqual(rows[1]["level_mean"], "")

    def test_keeps_newest_sessions_only(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            reporter = SessionReporter(Path(tmpdir), max_sessions=2)
            for i in range(4):
                reporter.save_session({"session_started_at": float(i)})

            with open(reporter.json_path, "r", encoding="utf-8") as f:
                payload = json.load(f)

        started = [s["session_started_at"] for s in payload["sessions"]]
        self.assertEqual(started, [2.0, 3.0])

    def test_corrupt_report_is_replaced(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            reporter = SessionReporter(Path(tmpdir))
            reporter.json_path.write_text("{not json", encoding="utf-8")
            reporter.save_session({"decisions": 0})

            with open(reporter.json_path, "r", encoding="utf-8") as f:
                payload = json.load(f)

        self.assertEqual(payload["session_count"], 1)


if __name__ == "__main__":
    unittest.main()
