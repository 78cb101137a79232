import threading

from config import HISTORY_CAPACITY
from volume_controller import VolumeChangeRecord


class VolumeHistory:
    """Append-only, newest-first, bounded list of volume decisions."""

    def __init__(self, capacity: int = HISTORY_CAPACITY):
        self.capacity = max(1, int(capacity))
        self._lock = threading.Lock()
        self._entries: tuple[VolumeChangeRecord, ...] = ()

    def add(self, record: VolumeChangeRecord) -> None:
        with self._lock:
            self._entries = ((record,) + self._entries)[:self.capacity]

    def snapshot(self) -> tuple[VolumeChangeRecord, ...]:
        with self._lock:
            return self._entries

    def clear(self) -> None:
        with self._lock:
            self._entries = ()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
