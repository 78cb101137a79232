"""
Song-changed events from media players.

Players are registered explicitly with ``MediaSessionRegistry`` and removed
when their session ends; the monitor subscribes for the lifetime of one
monitoring session. Player integrations call ``publish_metadata`` whenever
the player reports new track metadata.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from logging_utils import log_event


@dataclass(frozen=True)
class SongInfo:
    title: Optional[str]
    artist: Optional[str] = None
    package_name: Optional[str] = None
    duration_ms: Optional[int] = None     # Track length, when the player reports it
    position_ms: Optional[int] = None     # Playback position at the time of the event

    @property
    def identity(self) -> Optional[str]:
        return self.title


SongListener = Callable[[SongInfo], None]


@dataclass
class PlayerSession:
    package_name: str
    on_removed: Optional[Callable[[], None]] = None
    last_song: Optional[SongInfo] = None


class MediaSessionRegistry:
    """Registry of active player sessions and song-changed listeners."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._lock = threading.Lock()
        self._sessions: dict[str, PlayerSession] = {}
        self._listeners: list[SongListener] = []

    def is_available(self) -> bool:
        """True when enabled and at least one player session is registered."""
        with self._lock:
            return self.enabled and bool(self._sessions)

    def add_session(self, package_name: str,
                    on_removed: Optional[Callable[[], None]] = None) -> PlayerSession:
        """Register a player; re-adding a package replaces its old session."""
        session = PlayerSession(package_name=package_name, on_removed=on_removed)
        with self._lock:
            previous = self._sessions.get(package_name)
            self._sessions[package_name] = session
        if previous is not None and previous.on_removed is not None:
            previous.on_removed()
        log_event("INFO", "SongEvents", "Player session added", package=package_name)
        return session

    def remove_session(self, package_name: str) -> None:
        with self._lock:
            session = self._sessions.pop(package_name, None)
        if session is None:
            return
        if session.on_removed is not None:
            session.on_removed()
        log_event("INFO", "SongEvents", "Player session removed", package=package_name)

    def sessions(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def clear(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            if session.on_removed is not None:
                session.on_removed()

    def subscribe(self, listener: SongListener) -> Callable[[], None]:
        """Add a song-changed listener; returns a callable that removes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def publish_metadata(self, package_name: str, title: Optional[str],
                         artist: Optional[str] = None,
                         duration_ms: Optional[int] = None,
                         position_ms: Optional[int] = None) -> Optional[SongInfo]:
        """Deliver a metadata change from a registered player to every listener."""
        with self._lock:
            session = self._sessions.get(package_name)
            if session is None:
                return None
            info = SongInfo(
                title=title,
                artist=artist,
                package_name=package_name,
                duration_ms=duration_ms,
                position_ms=position_ms,
            )
            session.last_song = info
            listeners = list(self._listeners)

        for listener in listeners:
            listener(info)
        return info


class SongChangeDebouncer:
    """Drops repeats of the same track arriving within ``window_ms``.

    Players commonly report the same metadata several times per real track
    change. The same title is accepted again once the window has passed, so a
    deliberate replay still counts.
    """

    def __init__(self, window_ms: int = 3000, clock: Callable[[], float] = time.monotonic):
        self.window_ms = int(window_ms)
        self._clock = clock
        self._lock = threading.Lock()
        self._last_identity: Optional[str] = None
        self._last_time_ms: Optional[float] = None

    def should_handle(self, info: SongInfo) -> bool:
        now_ms = self._clock() * 1000.0
        with self._lock:
            if (self._last_time_ms is not None
                    and info.identity == self._last_identity
                    and (now_ms - self._last_time_ms) < self.window_ms):
                return False
            self._last_identity = info.identity
            self._last_time_ms = now_ms
            return True

    def reset(self) -> None:
        with self._lock:
            self._last_identity = None
            self._last_time_ms = None
