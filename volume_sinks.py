"""
Output volume sinks.

A sink exposes ``current_step`` and ``max_step`` and accepts ``set_step``.
Failures surface as ``PermissionError`` / ``OSError`` so the controller can
record them without stopping the monitor.
"""

import threading
from ctypes import POINTER, cast

from logging_utils import log_event


class DryRunVolumeSink:
    """In-memory stepped volume; logs instead of touching the OS mixer."""

    def __init__(self, max_step: int = 15, start_step: int = 7):
        if max_step < 1:
            raise ValueError("max_step must be at least 1")
        self.max_step = int(max_step)
        self._step = max(0, min(self.max_step, int(start_step)))
        self._lock = threading.Lock()
        self.fail_with: Exception | None = None
        self.set_calls = 0

    @property
    def current_step(self) -> int:
        with self._lock:
            return self._step

    def set_step(self, step: int) -> None:
        with self._lock:
            self.set_calls += 1
            if self.fail_with is not None:
                raise self.fail_with
            self._step = max(0, min(self.max_step, int(step)))
        log_event("INFO", "Volume", "Dry run: volume not applied", step=step, max=self.max_step)


class EndpointVolumeSink:
    """Windows master volume through pycaw, presented as ``max_step`` discrete steps."""

    def __init__(self, max_step: int = 15):
        from comtypes import CLSCTX_ALL, COMError  # type: ignore
        from pycaw.pycaw import AudioUtilities, IAudioEndpointVolume  # type: ignore

        if max_step < 1:
            raise ValueError("max_step must be at least 1")
        self.max_step = int(max_step)
        self._com_error = COMError
        try:
            speakers = AudioUtilities.GetSpeakers()
            if speakers is None:
                raise OSError("no playback endpoint")
            if hasattr(speakers, "Activate"):
                # Older pycaw hands back the raw IMMDevice
                interface = speakers.Activate(IAudioEndpointVolume._iid_, CLSCTX_ALL, None)
                self._volume = cast(interface, POINTER(IAudioEndpointVolume))
            else:
                self._volume = speakers.EndpointVolume
        except COMError as e:
            raise OSError(f"could not open playback endpoint: {e}") from e
        log_event("INFO", "Volume", "Using system master volume", steps=self.max_step)

    @property
    def current_step(self) -> int:
        try:
            scalar = float(self._volume.GetMasterVolumeLevelScalar())
        except self._com_error as e:
            raise OSError(f"could not read master volume: {e}") from e
        return int(round(scalar * self.max_step))

    def set_step(self, step: int) -> None:
        scalar = max(0.0, min(1.0, step / self.max_step))
        try:
            self._volume.SetMasterVolumeLevelScalar(scalar, None)
        except self._com_error as e:
            raise OSError(f"could not set master volume: {e}") from e


def create_volume_sink(volume_config):
    """Build the sink for the current config; dry-run when requested or no mixer is reachable."""
    if not volume_config.dry_run:
        try:
            return EndpointVolumeSink(volume_config.max_volume_step)
        except (ImportError, OSError) as e:
            log_event("WARN", "Volume", "System mixer unavailable, falling back to dry run", error=e)
    return DryRunVolumeSink(volume_config.max_volume_step, volume_config.dry_run_start_step)
