"""
Maps an ambient noise estimate onto a discrete output volume step.

The desired music level is ``ambient + target_ratio``. An assumed usable
range of 30 dB (quiet room) to 90 dB (loud venue) is mapped onto the
device's step scale, clamped between the minimum and maximum step.
"""

import math
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from logging_utils import log_event

QUIET_ROOM_DB = 30.0
LOUD_VENUE_DB = 90.0


class VolumeDirection(Enum):
    UP = "up"
    DOWN = "down"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class VolumeChangeRecord:
    """One volume decision. ``apply_error`` is set when the device refused the change."""
    timestamp: float          # Wall clock (time.time())
    ambient_db: float         # Ambient estimate the decision was based on
    old_volume: int           # Step before the decision
    new_volume: int           # Intended step
    apply_error: Optional[str] = None

    @property
    def direction(self) -> VolumeDirection:
        if self.new_volume > self.old_volume:
            return VolumeDirection.UP
        if self.new_volume < self.old_volume:
            return VolumeDirection.DOWN
        return VolumeDirection.UNCHANGED

    @property
    def applied(self) -> bool:
        return self.apply_error is None


def target_volume_step(ambient_db: float, target_ratio_db: float,
                       min_volume_step: int, max_volume_step: int) -> int:
    desired_db = ambient_db + target_ratio_db
    normalized = (desired_db - QUIET_ROOM_DB) / (LOUD_VENUE_DB - QUIET_ROOM_DB)
    normalized = max(0.0, min(1.0, normalized))
    # Round half up
    step = int(math.floor(normalized * max_volume_step + 0.5))
    return max(min_volume_step, min(max_volume_step, step))


def decide(ambient_db: float, target_ratio_db: float, min_volume_step: int,
           current_volume_step: int, max_volume_step: int,
           now: Optional[float] = None) -> VolumeChangeRecord:
    """Pure volume decision; the caller applies it only when the step changes."""
    new_volume = target_volume_step(ambient_db, target_ratio_db, min_volume_step, max_volume_step)
    return VolumeChangeRecord(
        timestamp=time.time() if now is None else now,
        ambient_db=float(ambient_db),
        old_volume=int(current_volume_step),
        new_volume=new_volume,
    )


class VolumeController:
    """Runs ``decide`` against a volume sink and applies the result.

    Sink failures are logged and recorded on the returned record; the
    decision itself is never rolled back or retried here, the next
    sampling trigger recomputes from fresh data.
    """

    def __init__(self, sink):
        self.sink = sink

    @property
    def max_volume(self) -> int:
        return int(self.sink.max_step)

    @property
    def current_volume(self) -> int:
        return int(self.sink.current_step)

    def adjust_volume(self, ambient_db: float, target_ratio_db: float,
                      min_volume: int = 1) -> VolumeChangeRecord:
        record = decide(
            ambient_db=ambient_db,
            target_ratio_db=target_ratio_db,
            min_volume_step=min_volume,
            current_volume_step=self.current_volume,
            max_volume_step=self.max_volume,
        )

        if record.new_volume == record.old_volume:
            return record

        try:
            self.sink.set_step(record.new_volume)
        except PermissionError as e:
            log_event("ERROR", "Volume", "Permission denied setting volume", error=e)
            return replace(record, apply_error=f"permission denied: {e}")
        except OSError as e:
            log_event("ERROR", "Volume", "Failed to set volume", error=e)
            return replace(record, apply_error=str(e))

        log_event("INFO", "Volume", "Volume adjusted",
                  ambient_db=f"{ambient_db:.1f}", old=record.old_volume,
                  new=record.new_volume, max=self.max_volume)
        return record
