"""
Broadcast channel for level readings.

One producer (the capture thread) publishes; any number of subscribers read
independently. Publishing never blocks: each subscription has a bounded
buffer and drops its oldest pending reading when full, so a slow consumer
loses intermediate values but always sees the latest one. The channel keeps
the last published value so a new subscriber starts with a current reading.
"""

import threading
from collections import deque
from typing import Iterator, Optional


class LevelSubscription:
    """One consumer's view of the level stream, in capture order."""

    def __init__(self, broadcaster: "LevelBroadcaster", buffer_size: int):
        self._broadcaster = broadcaster
        self._pending: deque[float] = deque(maxlen=max(1, int(buffer_size)))
        self._cond = threading.Condition()
        self._closed = False
        self.dropped = 0

    def _offer(self, db: float) -> None:
        with self._cond:
            if self._closed:
                return
            if len(self._pending) == self._pending.maxlen:
                self.dropped += 1
            self._pending.append(db)
            self._cond.notify_all()

    def _end(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def get(self, timeout: Optional[float] = None) -> Optional[float]:
        """Next reading, or None on timeout or once the stream has ended."""
        with self._cond:
            if not self._pending and not self._closed:
                self._cond.wait(timeout)
            if self._pending:
                return self._pending.popleft()
            return None

    def close(self) -> None:
        self._broadcaster._remove(self)
        self._end()

    def __enter__(self) -> "LevelSubscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __iter__(self) -> Iterator[float]:
        while True:
            db = self.get(timeout=0.5)
            if db is not None:
                yield db
            elif self.closed:
                return


class LevelBroadcaster:
    def __init__(self):
        self._lock = threading.Lock()
        self._subs: list[LevelSubscription] = []
        self._latest: Optional[float] = None
        self._closed = False

    def publish(self, db: float) -> None:
        with self._lock:
            if self._closed:
                return
            self._latest = float(db)
            subs = list(self._subs)
        for sub in subs:
            sub._offer(float(db))

    def latest(self) -> Optional[float]:
        with self._lock:
            return self._latest

    def subscribe(self, buffer_size: int = 64, replay: bool = True) -> LevelSubscription:
        """Register a consumer; with ``replay`` it is seeded with the latest reading."""
        sub = LevelSubscription(self, buffer_size)
        with self._lock:
            if self._closed:
                sub._end()
                return sub
            if replay and self._latest is not None:
                sub._offer(self._latest)
            self._subs.append(sub)
        return sub

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)

    def _remove(self, sub: LevelSubscription) -> None:
        with self._lock:
            if sub in self._subs:
                self._subs.remove(sub)

    def close(self) -> None:
        """End the stream for every subscriber."""
        with self._lock:
            self._closed = True
            subs = list(self._subs)
            self._subs.clear()
        for sub in subs:
            sub._end()

    def reopen(self) -> None:
        with self._lock:
            self._closed = False
            self._latest = None
