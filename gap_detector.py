"""
Gap detection between songs using a relative drop from a rolling baseline.

A fixed dB threshold fails in loud rooms (music never drops below it) and in
quiet rooms (hiss alone exceeds it). The detector tracks a slow EMA of the
level while music plays and treats a reading as a gap candidate when it falls
``drop_db`` below that baseline, or below ``absolute_floor_db``, whichever is
higher.
"""

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from logging_utils import log_event


class GapState(Enum):
    MUSIC_PLAYING = "music_playing"
    SILENCE_DETECTED = "silence_detected"


@dataclass(frozen=True)
class GapSnapshot:
    state: GapState
    baseline_db: Optional[float]
    effective_threshold_db: float
    silence_start_ms: Optional[float]


def _now_ms() -> float:
    return time.monotonic() * 1000.0


class GapDetector:
    """
    Streaming state machine fed one level reading at a time.

    ``process`` returns True exactly once per contiguous run of low readings:
    on the reading that completes ``silence_duration_ms`` below threshold.
    The baseline only moves while music is judged to be playing, otherwise it
    would converge toward the silence it is meant to detect. Timers advance
    on the timestamps of readings that arrive, never on the absence of data:
    when two readings are more than ``max_reading_gap_ms`` apart the silence
    timer restarts at the later one.
    """

    def __init__(self, absolute_floor_db: float = 35.0, drop_db: float = 15.0,
                 silence_duration_ms: int = 1500, baseline_alpha: float = 0.05,
                 max_reading_gap_ms: int = 500):
        self.absolute_floor_db = float(absolute_floor_db)
        self.drop_db = float(drop_db)
        self.silence_duration_ms = int(silence_duration_ms)
        self.baseline_alpha = float(baseline_alpha)
        self.max_reading_gap_ms = int(max_reading_gap_ms)

        self._lock = threading.Lock()
        self._state = GapState.MUSIC_PLAYING
        self._baseline: Optional[float] = None
        self._silence_start: Optional[float] = None
        self._emitted = False
        self._last_reading_ms: Optional[float] = None

    def effective_threshold(self) -> float:
        with self._lock:
            return self._threshold_locked()

    def _threshold_locked(self) -> float:
        if self._baseline is None:
            return self.absolute_floor_db
        return max(self.absolute_floor_db, self._baseline - self.drop_db)

    def process(self, db: float, now_ms: Optional[float] = None) -> bool:
        """Feed one reading. Returns True on the MUSIC_PLAYING -> SILENCE_DETECTED transition."""
        now = _now_ms() if now_ms is None else float(now_ms)

        with self._lock:
            threshold = self._threshold_locked()
            stalled = (self._last_reading_ms is not None
                       and now - self._last_reading_ms > self.max_reading_gap_ms)
            self._last_reading_ms = now

            if db < threshold:
                if self._silence_start is None:
                    self._silence_start = now
                    self._emitted = False
                elif stalled:
                    # Missing data never counts toward the gap
                    self._silence_start = now
                elapsed = now - self._silence_start
                if elapsed >= self.silence_duration_ms and not self._emitted:
                    self._state = GapState.SILENCE_DETECTED
                    self._emitted = True
                    baseline = self._baseline
                    transitioned = True
                else:
                    transitioned = False
            else:
                if self._baseline is None:
                    self._baseline = float(db)
                else:
                    self._baseline += self.baseline_alpha * (db - self._baseline)
                self._silence_start = None
                self._emitted = False
                self._state = GapState.MUSIC_PLAYING
                transitioned = False

        if transitioned:
            log_event("INFO", "GapDetector", "Silence detected",
                      db=f"{db:.1f}", threshold=f"{threshold:.1f}",
                      baseline=f"{baseline:.1f}" if baseline is not None else "none")
        return transitioned

    @property
    def state(self) -> GapState:
        with self._lock:
            return self._state

    @property
    def baseline_db(self) -> Optional[float]:
        with self._lock:
            return self._baseline

    def snapshot(self) -> GapSnapshot:
        with self._lock:
            return GapSnapshot(
                state=self._state,
                baseline_db=self._baseline,
                effective_threshold_db=self._threshold_locked(),
                silence_start_ms=self._silence_start,
            )

    def reset(self) -> None:
        """Clear baseline and timers and force MUSIC_PLAYING."""
        with self._lock:
            self._baseline = None
            self._silence_start = None
            self._emitted = False
            self._state = GapState.MUSIC_PLAYING
            self._last_reading_ms = None
