import threading
import time
from typing import Iterable, Optional

import numpy as np

from level_stream import LevelBroadcaster
from logging_utils import log_event

# Longest single wait, so a cancel request is seen promptly
_WAIT_SLICE_S = 0.05


def rms_average_db(readings: Iterable[float]) -> Optional[float]:
    """Average dB readings in the energy domain.

    Each reading is converted to linear amplitude, the squared amplitudes are
    averaged and the root is converted back to dB. The linear value is
    floored at 1.0 so the result is never negative. Returns None for no
    readings.
    """
    values = np.asarray(list(readings), dtype=np.float64)
    if values.size == 0:
        return None
    linear = np.power(10.0, values / 20.0)
    rms_linear = float(np.sqrt(np.mean(linear * linear)))
    return float(20.0 * np.log10(max(rms_linear, 1.0)))


class AmbientSampler:
    """Collects the readings published during a bounded window and reduces them."""

    def __init__(self, sample_duration_ms: int = 800):
        self.sample_duration_ms = int(sample_duration_ms)

    def sample(self, levels: LevelBroadcaster, duration_ms: Optional[int] = None,
               cancel_event: Optional[threading.Event] = None) -> Optional[float]:
        """Return the ambient dB for the window, or None when nothing arrived or cancelled."""
        duration_s = (self.sample_duration_ms if duration_ms is None else duration_ms) / 1000.0
        readings: list[float] = []
        deadline = time.monotonic() + duration_s

        with levels.subscribe(replay=False) as sub:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    log_event("DEBUG", "Sampler", "Sample cancelled", readings=len(readings))
                    return None
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                db = sub.get(timeout=min(remaining, _WAIT_SLICE_S))
                if db is not None:
                    readings.append(db)
                elif sub.closed:
                    break

        result = rms_average_db(readings)
        if result is None:
            log_event("WARN", "Sampler", "No readings during sample window",
                      duration_ms=int(duration_s * 1000))
        else:
            log_event("DEBUG", "Sampler", "Ambient sample",
                      db=f"{result:.1f}", readings=len(readings))
        return result
