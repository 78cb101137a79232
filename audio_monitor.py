"""
Ambient Volume Control - Audio Monitor
Captures the microphone and publishes one level reading per block.
Uses sounddevice blocking reads on a dedicated capture thread.
"""

import threading
import time
from typing import Callable, Optional

from config import AudioConfig
from level_meter import compute_level
from level_stream import LevelBroadcaster
from logging_utils import log_event


def list_input_devices() -> list[dict]:
    """Input-capable devices as reported by sounddevice."""
    import sounddevice as sd

    devices = []
    for i, d in enumerate(sd.query_devices()):
        if d['max_input_channels'] > 0:
            devices.append({
                'index': i,
                'name': d['name'],
                'inputs': d['max_input_channels'],
                'sample_rate': d['default_samplerate'],
            })
    return devices


class AudioMonitor:
    """
    Owns the capture device and the capture thread.

    The thread blocks only on the device read. When the device stalls or is
    reclaimed by another process the stream is closed and reopened after
    ``restart_backoff_ms``; no readings are published in the meantime.
    """

    def __init__(self, audio_config: AudioConfig, levels: LevelBroadcaster,
                 stream_factory: Optional[Callable[[AudioConfig], object]] = None,
                 capture_errors: tuple = (OSError,)):
        self.audio_config = audio_config
        self.levels = levels
        self._stream_factory = stream_factory
        self._capture_errors = capture_errors

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.running = False
        self.restart_count = 0

        self._session_started_at: float = 0.0
        self._session_reading_count: int = 0
        self._session_level_min: float | None = None
        self._session_level_max: float | None = None
        self._session_level_sum: float = 0.0

    def _default_stream_factory(self, audio_config: AudioConfig):
        import sounddevice as sd

        return sd.InputStream(
            samplerate=audio_config.sample_rate,
            blocksize=audio_config.block_size,
            device=audio_config.device_index,
            channels=1,
            dtype='int16',
        )

    def start(self) -> None:
        """Start the capture thread"""
        if self.running:
            return

        if self._stream_factory is None:
            import sounddevice as sd

            self._stream_factory = self._default_stream_factory
            self._capture_errors = (sd.PortAudioError, OSError)

        self._reset_session_stats()
        self._stop_event.clear()
        self.running = True
        self._thread = threading.Thread(target=self._run, name="AudioMonitor", daemon=True)
        self._thread.start()
        log_event("INFO", "AudioMonitor", "Started",
                  sample_rate=self.audio_config.sample_rate,
                  block_size=self.audio_config.block_size,
                  device=self.audio_config.device_index)

    def stop(self) -> None:
        """Stop capture and wait for the capture thread to exit"""
        if not self.running:
            return
        self.running = False
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
        self._log_shutdown_summary()
        log_event("INFO", "AudioMonitor", "Stopped")

    def _backoff(self) -> None:
        self._stop_event.wait(self.audio_config.restart_backoff_ms / 1000.0)

    def _run(self) -> None:
        block_size = self.audio_config.block_size
        log_counter = 0

        while not self._stop_event.is_set():
            try:
                stream = self._stream_factory(self.audio_config)
            except self._capture_errors as e:
                log_event("WARN", "AudioMonitor", "Could not open input device, retrying", error=e)
                self._backoff()
                continue

            try:
                with stream:
                    while not self._stop_event.is_set():
                        block, _overflowed = stream.read(block_size)
                        if len(block) == 0:
                            continue
                        level = compute_level(block)
                        self._update_session_stats(level)
                        if log_counter % 100 == 0:
                            log_event("DEBUG", "AudioMonitor", "Level sample", db=f"{level:.1f}")
                        log_counter += 1
                        self.levels.publish(level)
            except self._capture_errors as e:
                if self._stop_event.is_set():
                    break
                self.restart_count += 1
                log_event("WARN", "AudioMonitor", "Recording stopped unexpectedly, restarting",
                          error=e, restarts=self.restart_count)
                self._backoff()

        log_event("DEBUG", "AudioMonitor", "Capture loop exited")

    def _reset_session_stats(self) -> None:
        self._session_started_at = time.time()
        self._session_reading_count = 0
        self._session_level_min = None
        self._session_level_max = None
        self._session_level_sum = 0.0

    def _update_session_stats(self, level: float) -> None:
        self._session_reading_count += 1
        self._session_level_sum += level
        if self._session_level_min is None or level < self._session_level_min:
            self._session_level_min = level
        if self._session_level_max is None or level > self._session_level_max:
            self._session_level_max = level

    def session_summary(self) -> dict:
        count = self._session_reading_count
        return {
            "session_started_at": self._session_started_at,
            "readings": count,
            "level_min": float(self._session_level_min or 0.0),
            "level_max": float(self._session_level_max or 0.0),
            "level_mean": self._session_level_sum / count if count else 0.0,
            "capture_restarts": self.restart_count,
        }

    def _log_shutdown_summary(self) -> None:
        if self._session_reading_count <= 0:
            return

        summary = self.session_summary()
        elapsed_s = max(0.0, time.time() - self._session_started_at)
        log_event(
            "INFO",
            "AudioMonitor",
            "Shutdown levels summary",
            readings=summary["readings"],
            seconds=f"{elapsed_s:.1f}",
            level_min=f"{summary['level_min']:.1f}",
            level_max=f"{summary['level_max']:.1f}",
            level_mean=f"{summary['level_mean']:.1f}",
            level_span=f"{(summary['level_max'] - summary['level_min']):.1f}",
            restarts=summary["capture_restarts"],
        )
