import csv
import json
import time
from pathlib import Path

from volume_controller import VolumeChangeRecord, VolumeDirection

FIELDNAMES = [
    "session_started_at",
    "session_ended_at",
    "seconds",
    "detection_mode",
    "readings",
    "level_min",
    "level_max",
    "level_mean",
    "capture_restarts",
    "decisions",
    "volume_up",
    "volume_down",
    "volume_unchanged",
    "apply_failures",
    "last_ambient_db",
    "final_volume",
]


def summarize_history(history: tuple[VolumeChangeRecord, ...]) -> dict:
    """Count decisions by direction for a session report."""
    return {
        "decisions": len(history),
        "volume_up": sum(1 for r in history if r.direction is VolumeDirection.UP),
        "volume_down": sum(1 for r in history if r.direction is VolumeDirection.DOWN),
        "volume_unchanged": sum(1 for r in history if r.direction is VolumeDirection.UNCHANGED),
        "apply_failures": sum(1 for r in history if not r.applied),
        "history": [
            {
                "timestamp": r.timestamp,
                "ambient_db": r.ambient_db,
                "old_volume": r.old_volume,
                "new_volume": r.new_volume,
                "direction": r.direction.value,
                "apply_error": r.apply_error,
            }
            for r in history
        ],
    }


class SessionReporter:
    """Persists per-session volume summaries to JSON and CSV reports."""

    def __init__(self, report_dir: Path, max_sessions: int = 200):
        self.report_dir = Path(report_dir)
        self.report_dir.mkdir(parents=True, exist_ok=True)
        self.json_path = self.report_dir / "volume_session_report.json"
        self.csv_path = self.report_dir / "volume_session_report.csv"
        self.max_sessions = max(1, int(max_sessions))

    def _load_existing_sessions(self) -> list[dict]:
        if not self.json_path.exists():
            return []
        try:
            with open(self.json_path, "r", encoding="utf-8") as f:
                payload = json.load(f)
            sessions = payload.get("sessions", [])
            return sessions if isinstance(sessions, list) else []
        except (OSError, ValueError, AttributeError):
            return []

    def save_session(self, session_summary: dict) -> None:
        sessions = self._load_existing_sessions()
        sessions.append(session_summary)
        if len(sessions) > self.max_sessions:
            sessions = sessions[-self.max_sessions :]

        payload = {
            "generated_at": time.time(),
            "session_count": len(sessions),
            "latest": sessions[-1],
            "sessions": sessions,
        }

        with open(self.json_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)

        with open(self.csv_path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=FIELDNAMES)
            writer.writeheader()
            for row in sessions:
                writer.writerow({key: row.get(key, "") for key in FIELDNAMES})
