from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .session import ImportSession

"""Session storage with idle expiry.

Sessions are keyed by user identity. The store never holds a session's lock
while doing anything slow: eviction only *tries* the lock and leaves busy
sessions (an emission in flight) for the next sweep.
"""

__all__ = [
    "Clock",
    "SessionStore",
    "InMemorySessionStore",
    "SessionSweeper",
]

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class SessionStore(ABC):
    @abstractmethod
    def get(self, user_id: str) -> ImportSession | None: ...

    @abstractmethod
    def set(self, user_id: str, session: ImportSession) -> None: ...

    @abstractmethod
    def delete(self, user_id: str) -> None: ...

    @abstractmethod
    def sweep_expired(self) -> list[str]:
        """Evict idle sessions; returns the evicted user ids."""


class InMemorySessionStore(SessionStore):
    """Dict-backed store. Thread-safe; one process only."""

    def __init__(self, ttl_seconds: float = 600.0, clock: Clock = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._sessions: dict[str, ImportSession] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> ImportSession | None:
        with self._lock:
            return self._sessions.get(user_id)

    def set(self, user_id: str, session: ImportSession) -> None:
        with self._lock:
            self._sessions[user_id] = session

    def delete(self, user_id: str) -> None:
        with self._lock:
            self._sessions.pop(user_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def sweep_expired(self) -> list[str]:
        now = self.clock()
        with self._lock:
            candidates = [
                (uid, s) for uid, s in self._sessions.items() if now - s.last_activity > self.ttl_seconds
            ]
        evicted: list[str] = []
        for uid, session in candidates:
            if not session.lock.acquire(blocking=False):
                logger.debug(f"session sweep: {uid} busy, skipped")
                continue
            try:
                # Activity may have happened between the scan and the lock
                if self.clock() - session.last_activity <= self.ttl_seconds:
                    continue
                session.expire()
                with self._lock:
                    if self._sessions.get(uid) is session:
                        del self._sessions[uid]
                evicted.append(uid)
            finally:
                session.lock.release()
        if evicted:
            logger.info(f"session sweep: evicted {len(evicted)} idle session(s)")
        return evicted


class SessionSweeper(threading.Thread):
    """Daemon thread calling store.sweep_expired() every `interval` seconds."""

    def __init__(self, store: SessionStore, interval: float = 60.0) -> None:
        super().__init__(name="session-sweeper", daemon=True)
        self.store = store
        self.interval = interval
        self._stop_event = threading.Event()

    def run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.store.sweep_expired()
            except Exception as e:  # keep sweeping; one bad pass must not kill the thread
                logger.error(f"session sweep failed: {e}")

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout)
