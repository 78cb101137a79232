"""
Ambient Volume Control - Monitoring
Runs one monitoring session: capture, ambient estimation and volume
decisions, in either gap-detection or song-boundary mode.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ambient_sampler import AmbientSampler
from ambient_tracker import RollingBaselineTracker
from audio_monitor import AudioMonitor
from config import BoundaryStrategy, Config, DetectionMode
from gap_detector import GapDetector, GapState
from level_stream import LevelBroadcaster, LevelSubscription
from logging_utils import log_event
from session_reporter import summarize_history
from song_events import MediaSessionRegistry, SongChangeDebouncer, SongInfo
from volume_controller import VolumeChangeRecord, VolumeController
from volume_history import VolumeHistory


@dataclass(frozen=True)
class MonitoringState:
    """Read-only projection of the session for status displays."""
    is_monitoring: bool = False
    current_db: float = 0.0
    rolling_ambient_db: float = 0.0
    silence_detected: bool = False
    current_volume: int = 0
    max_volume: int = 15
    last_ambient_db: Optional[float] = None
    history: tuple[VolumeChangeRecord, ...] = ()
    current_song_title: Optional[str] = None
    current_artist: Optional[str] = None
    detection_mode: DetectionMode = DetectionMode.SILENCE
    media_session_available: bool = False
    status_text: str = ""


def gap_status_text(ambient_db: float, volume: int, max_volume: int) -> str:
    return f"Ambient: {int(ambient_db)} dB • Volume: {volume}/{max_volume}"


def song_status_text(title: Optional[str], ambient_db: float, volume: int, max_volume: int) -> str:
    return f"Now: {title or 'Unknown'} • Ambient: {int(ambient_db)} dB • Vol: {volume}/{max_volume}"


class ScheduledSample:
    """Handle for an ambient sample that runs after a delay.

    ``cancel`` is effective at any point: before the delay elapses the action
    never runs, afterwards the action sees the cancel event set.
    """

    def __init__(self, delay_ms: int, action: Callable[[threading.Event], None],
                 name: str = "ScheduledSample"):
        self.delay_ms = max(0, int(delay_ms))
        self._action = action
        self._cancel = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> "ScheduledSample":
        self._thread.start()
        return self

    def _run(self) -> None:
        if self._cancel.wait(self.delay_ms / 1000.0):
            return
        self._action(self._cancel)

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def done(self) -> bool:
        return not self._thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread.ident is not None:
            self._thread.join(timeout)


class MonitoringOrchestrator:
    """
    Coordinates one monitoring session at a time.

    The detection mode is chosen at ``start``: song-boundary mode when a
    media session source is available and enabled, gap mode otherwise. At
    most one sample-and-decide sequence runs at a time; a trigger arriving
    while one is in flight is dropped, the next trigger recomputes from
    fresh data.
    """

    def __init__(self, config: Config, volume_sink,
                 song_source: Optional[MediaSessionRegistry] = None,
                 *,
                 capture_factory: Callable[..., object] = AudioMonitor,
                 sampler: Optional[AmbientSampler] = None,
                 reporter=None,
                 status_callback: Optional[Callable[[str], None]] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config
        self.levels = LevelBroadcaster()
        self.volume = VolumeController(volume_sink)
        self.song_source = song_source
        self.sampler = sampler or AmbientSampler(config.sampler.sample_duration_ms)
        self.tracker = RollingBaselineTracker(config.ambient.window_size, config.ambient.percentile)
        self.detector = GapDetector(
            absolute_floor_db=config.gap.absolute_floor_db,
            drop_db=config.gap.drop_db,
            silence_duration_ms=config.gap.silence_duration_ms,
            baseline_alpha=config.gap.baseline_alpha,
            max_reading_gap_ms=config.gap.max_reading_gap_ms,
        )
        self.debouncer = SongChangeDebouncer(config.boundary.debounce_window_ms, clock)
        self.history = VolumeHistory()
        self.reporter = reporter
        self.status_callback = status_callback
        self._capture_factory = capture_factory
        self._clock = clock

        # Guards the session fields below
        self._lock = threading.Lock()
        self._decision_lock = threading.Lock()
        self._running = False
        self._mode = DetectionMode.SILENCE
        self._strategy = config.boundary.strategy
        self._media_available = False
        self._capture = None
        self._stop_event = threading.Event()
        self._loops: list[threading.Thread] = []
        self._workers: list[threading.Thread] = []
        self._scheduled: Optional[ScheduledSample] = None
        self._pending_ambient_db: Optional[float] = None
        self._unsubscribe_songs: Optional[Callable[[], None]] = None
        self._session_started_at = 0.0

        self._silence_detected = False
        self._last_ambient_db: Optional[float] = None
        self._current_volume = 0
        self._max_volume = 0
        self._current_song_title: Optional[str] = None
        self._current_artist: Optional[str] = None
        self._status_text = ""

    # ---------- Public API ----------

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def detection_mode(self) -> DetectionMode:
        with self._lock:
            return self._mode

    def start(self) -> None:
        """Start a monitoring session"""
        with self._lock:
            if self._running:
                return
            self._running = True
            self._stop_event = threading.Event()
            stop_event = self._stop_event
            self._session_started_at = time.time()

            available = self.song_source is not None and self.song_source.is_available()
            self._media_available = available
            if available and self.config.boundary.enabled:
                self._mode = DetectionMode.MEDIA_SESSION
            else:
                self._mode = DetectionMode.SILENCE
            self._strategy = self.config.boundary.strategy
            mode = self._mode

        self.levels.reopen()
        self._refresh_volume()

        # Subscribe before capture starts so no early reading is missed
        loops = [
            threading.Thread(target=self._tracker_loop, args=(self.levels.subscribe(),),
                             name="AmbientTracker", daemon=True),
        ]
        if mode is DetectionMode.SILENCE:
            loops.append(threading.Thread(target=self._gap_loop, args=(self.levels.subscribe(), stop_event),
                                          name="GapDetector", daemon=True))
        for thread in loops:
            thread.start()
        with self._lock:
            self._loops = loops

        try:
            capture = self._capture_factory(self.config.audio, self.levels)
            capture.start()
        except Exception as e:
            log_event("ERROR", "Monitor", "Failed to start capture", error=e)
            self.stop()
            raise

        unsubscribe = None
        if mode is DetectionMode.MEDIA_SESSION:
            unsubscribe = self.song_source.subscribe(self.handle_song_changed)

        with self._lock:
            self._capture = capture
            self._unsubscribe_songs = unsubscribe

        self._set_status("Monitoring ambient noise...")
        log_event("INFO", "Monitor", "Monitoring started", mode=mode.name,
                  strategy=self._strategy.name if mode is DetectionMode.MEDIA_SESSION else "-",
                  media_session_available=self._media_available)

    def stop(self) -> None:
        """Stop the session; detector state is reset before this returns"""
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._stop_event.set()
            scheduled, self._scheduled = self._scheduled, None
            self._pending_ambient_db = None
            capture, self._capture = self._capture, None
            unsubscribe, self._unsubscribe_songs = self._unsubscribe_songs, None
            loops, self._loops = self._loops, []
            workers, self._workers = self._workers, []
            mode = self._mode

        if scheduled is not None:
            scheduled.cancel()
        if unsubscribe is not None:
            unsubscribe()
        if capture is not None:
            capture.stop()
        self.levels.close()

        for thread in loops + workers:
            thread.join(timeout=2.0)
        if scheduled is not None:
            scheduled.join(timeout=2.0)

        self.tracker.reset()
        self.detector.reset()
        self.debouncer.reset()
        with self._lock:
            self._silence_detected = False

        if capture is not None:
            self._write_session_report(capture, mode)
        self._set_status("Stopped")
        log_event("INFO", "Monitor", "Monitoring stopped", mode=mode.name)

    def apply_config(self, config: Config) -> None:
        """Apply runtime-adjustable settings to the live components."""
        self.config = config
        self.tracker.configure(config.ambient.window_size, config.ambient.percentile)
        self.detector.absolute_floor_db = float(config.gap.absolute_floor_db)
        self.detector.drop_db = float(config.gap.drop_db)
        self.detector.silence_duration_ms = int(config.gap.silence_duration_ms)
        self.detector.baseline_alpha = float(config.gap.baseline_alpha)
        self.detector.max_reading_gap_ms = int(config.gap.max_reading_gap_ms)
        self.sampler.sample_duration_ms = int(config.sampler.sample_duration_ms)
        self.debouncer.window_ms = int(config.boundary.debounce_window_ms)
        log_event("INFO", "Monitor", "Settings applied",
                  target_ratio_db=config.volume.target_ratio_db,
                  min_volume=config.volume.min_volume_step,
                  floor_db=config.gap.absolute_floor_db)

    def snapshot(self) -> MonitoringState:
        latest = self.levels.latest()
        with self._lock:
            return MonitoringState(
                is_monitoring=self._running,
                current_db=latest if latest is not None else 0.0,
                rolling_ambient_db=self.tracker.current_estimate(),
                silence_detected=self._silence_detected,
                current_volume=self._current_volume,
                max_volume=self._max_volume,
                last_ambient_db=self._last_ambient_db,
                history=self.history.snapshot(),
                current_song_title=self._current_song_title,
                current_artist=self._current_artist,
                detection_mode=self._mode,
                media_session_available=self._media_available,
                status_text=self._status_text,
            )

    def join_workers(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight sample-and-decide workers to finish."""
        with self._lock:
            workers = list(self._workers)
        for thread in workers:
            thread.join(timeout)

    def handle_song_changed(self, info: SongInfo) -> None:
        """Song-changed listener for media-session mode."""
        with self._lock:
            if not self._running or self._mode is not DetectionMode.MEDIA_SESSION:
                return
            stop_event = self._stop_event
            self._current_song_title = info.title
            self._current_artist = info.artist

        if not self.debouncer.should_handle(info):
            log_event("DEBUG", "Monitor", "Duplicate song event ignored", title=info.title)
            return
        log_event("INFO", "Monitor", "New track", title=info.title, artist=info.artist)

        with self._lock:
            pending, self._pending_ambient_db = self._pending_ambient_db, None
            previous, self._scheduled = self._scheduled, None
            if previous is not None:
                previous.cancel()

        self._spawn_worker(self._boundary_worker, info, pending, stop_event, name="BoundarySample")

        if self._strategy is BoundaryStrategy.END_OF_TRACK:
            self._schedule_end_of_track_sample(info, stop_event)

    # ---------- Internal ----------

    def _tracker_loop(self, sub: LevelSubscription) -> None:
        with sub:
            for db in sub:
                self.tracker.push(db)

    def _gap_loop(self, sub: LevelSubscription, stop_event: threading.Event) -> None:
        with sub:
            for db in sub:
                transitioned = self.detector.process(db, now_ms=self._clock() * 1000.0)
                with self._lock:
                    self._silence_detected = self.detector.state is GapState.SILENCE_DETECTED
                if transitioned:
                    self._spawn_worker(self._gap_worker, stop_event, name="GapSample")

    def _spawn_worker(self, target, *args, name: str) -> None:
        thread = threading.Thread(target=target, args=args, name=name, daemon=True)
        with self._lock:
            if not self._running:
                return
            self._workers = [t for t in self._workers if t.is_alive()]
            self._workers.append(thread)
        thread.start()

    def _gap_worker(self, stop_event: threading.Event) -> None:
        if not self._decision_lock.acquire(blocking=False):
            log_event("DEBUG", "Monitor", "Decision already in flight, gap trigger dropped")
            return
        try:
            ambient_db = self.sampler.sample(self.levels, cancel_event=stop_event)
            if ambient_db is None:
                log_event("INFO", "Monitor", "No ambient estimate this cycle")
                return
            if stop_event.is_set():
                return
            record = self._apply_decision(ambient_db)
            self._set_status(gap_status_text(ambient_db, record.new_volume, self.volume.max_volume))
        except Exception as e:
            log_event("ERROR", "Monitor", "Gap sample failed", error=e)
        finally:
            self._decision_lock.release()

    def _boundary_worker(self, info: SongInfo, pending: Optional[float],
                         stop_event: threading.Event) -> None:
        if not self._decision_lock.acquire(blocking=False):
            log_event("DEBUG", "Monitor", "Decision already in flight, song trigger dropped",
                      title=info.title)
            return
        try:
            if pending is not None:
                log_event("DEBUG", "Monitor", "Applying end-of-track sample", db=f"{pending:.1f}")
                ambient_db = pending
            else:
                log_event("DEBUG", "Monitor", "No pending sample, sampling now", title=info.title)
                ambient_db = self.sampler.sample(self.levels, cancel_event=stop_event)

            if ambient_db is None:
                log_event("INFO", "Monitor", "No ambient estimate this cycle", title=info.title)
                return
            if stop_event.is_set():
                return
            record = self._apply_decision(ambient_db)
            self._set_status(song_status_text(info.title, ambient_db, record.new_volume,
                                              self.volume.max_volume))
        except Exception as e:
            log_event("ERROR", "Monitor", "Song boundary sample failed", error=e)
        finally:
            self._decision_lock.release()

    def _schedule_end_of_track_sample(self, info: SongInfo, stop_event: threading.Event) -> None:
        duration = info.duration_ms
        if not duration or duration <= 0:
            log_event("DEBUG", "Monitor", "No duration, will sample at next song start",
                      title=info.title)
            return

        remaining = duration - (info.position_ms or 0)
        delay_ms = max(0, remaining - self.config.boundary.sample_lead_ms)
        handle = ScheduledSample(delay_ms, self._end_of_track_sample, name="EndOfTrackSample")

        with self._lock:
            if not self._running or stop_event is not self._stop_event:
                return
            self._scheduled = handle
            handle.start()
        log_event("DEBUG", "Monitor", "Scheduled end-of-track sample",
                  delay_ms=delay_ms, remaining_ms=remaining)

    def _end_of_track_sample(self, cancel_event: threading.Event) -> None:
        log_event("DEBUG", "Monitor", "End-of-track: sampling ambient noise")
        try:
            ambient_db = self.sampler.sample(self.levels, cancel_event=cancel_event)
        except Exception as e:
            log_event("ERROR", "Monitor", "End-of-track sample failed", error=e)
            return
        if ambient_db is None:
            return
        with self._lock:
            if not cancel_event.is_set():
                self._pending_ambient_db = ambient_db
        log_event("DEBUG", "Monitor", "End-of-track sample stored", db=f"{ambient_db:.1f}")

    def _apply_decision(self, ambient_db: float) -> VolumeChangeRecord:
        volume_cfg = self.config.volume
        record = self.volume.adjust_volume(
            ambient_db=ambient_db,
            target_ratio_db=volume_cfg.target_ratio_db,
            min_volume=volume_cfg.min_volume_step,
        )
        self.history.add(record)
        with self._lock:
            self._last_ambient_db = ambient_db
        self._refresh_volume()
        return record

    def _refresh_volume(self) -> None:
        try:
            current = self.volume.current_volume
            maximum = self.volume.max_volume
        except OSError as e:
            log_event("WARN", "Volume", "Could not read output volume", error=e)
            return
        with self._lock:
            self._current_volume = current
            self._max_volume = maximum

    def _set_status(self, text: str) -> None:
        with self._lock:
            self._status_text = text
        if self.status_callback is not None:
            self.status_callback(text)

    def _write_session_report(self, capture, mode: DetectionMode) -> None:
        if self.reporter is None or not self.config.report_generation_enabled:
            return

        started_at = self._session_started_at
        records = tuple(r for r in self.history.snapshot() if r.timestamp >= started_at)
        ended_at = time.time()
        summary = {
            "session_started_at": started_at,
            "session_ended_at": ended_at,
            "seconds": round(max(0.0, ended_at - started_at), 1),
            "detection_mode": mode.name,
        }
        session_summary = getattr(capture, "session_summary", None)
        if callable(session_summary):
            summary.update(session_summary())
            summary["session_started_at"] = started_at
        summary.update(summarize_history(records))
        with self._lock:
            summary["last_ambient_db"] = self._last_ambient_db
            summary["final_volume"] = self._current_volume

        try:
            self.reporter.save_session(summary)
        except (OSError, TypeError, ValueError) as e:
            log_event("WARN", "Report", "Could not write session report", error=e)
