"""
Rolling ambient estimate from the live level stream.

While music plays the microphone hears music plus room noise. The quietest
slice of a rolling window (brief dips, pauses, quieter passages) is the best
always-available proxy for the room's noise floor.
"""

import threading
from collections import deque

import numpy as np

from logging_utils import log_event


def window_percentile(values, percentile: float) -> float:
    """Return the element at ``floor((n - 1) * percentile)`` of the sorted values."""
    if len(values) == 0:
        return 0.0
    ordered = np.sort(np.asarray(values, dtype=np.float64))
    index = int(np.floor((len(ordered) - 1) * percentile))
    index = max(0, min(len(ordered) - 1, index))
    return float(ordered[index])


class RollingBaselineTracker:
    """Fixed-size FIFO window of level readings publishing a low percentile.

    ``push`` is the single writer; ``current_estimate`` may be called from any
    thread and always returns the last published value.
    """

    def __init__(self, window_size: int = 200, percentile: float = 0.15):
        if window_size < 1:
            raise ValueError("window_size must be at least 1")
        if not 0.0 <= percentile <= 1.0:
            raise ValueError("percentile must be within 0.0 - 1.0")
        self.window_size = int(window_size)
        self.percentile = float(percentile)
        self._readings: deque[float] = deque(maxlen=self.window_size)
        self._lock = threading.Lock()
        self._estimate = 0.0

    def push(self, reading: float) -> float:
        with self._lock:
            self._readings.append(float(reading))
            self._estimate = window_percentile(self._readings, self.percentile)
            return self._estimate

    def current_estimate(self) -> float:
        with self._lock:
            return self._estimate

    def window(self) -> list[float]:
        """Copy of the current window, oldest first."""
        with self._lock:
            return list(self._readings)

    def reset(self) -> None:
        with self._lock:
            self._readings.clear()
            self._estimate = 0.0

    def configure(self, window_size: int | None = None, percentile: float | None = None) -> None:
        """Apply runtime settings; a smaller window keeps the newest readings."""
        with self._lock:
            if window_size is not None and int(window_size) != self.window_size:
                if window_size < 1:
                    raise ValueError("window_size must be at least 1")
                self.window_size = int(window_size)
                self._readings = deque(self._readings, maxlen=self.window_size)
            if percentile is not None:
                if not 0.0 <= percentile <= 1.0:
                    raise ValueError("percentile must be within 0.0 - 1.0")
                self.percentile = float(percentile)
            self._estimate = window_percentile(self._readings, self.percentile)
        log_event("DEBUG", "Ambient", "Tracker configured",
                  window_size=self.window_size, percentile=f"{self.percentile:.2f}")
