"""In-memory anonymous chat sessions with a fixed lifetime.

Sessions expire ``ttl`` after creation; activity updates ``last_activity_at``
but does not extend the expiry. A background sweeper evicts expired entries.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

from lectern.errors import SessionExpired, SessionNotFound
from lectern.log import get_logger

log = get_logger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ChatSession:
    id: str
    bot_id: str
    created_at: datetime
    last_activity_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


class ReadWriteLock:
    """Many concurrent readers or one writer; waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            self._cond.wait_for(lambda: not self._writer and self._writers_waiting == 0)
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class SessionStore:
    """Thread-safe map of session ID → ChatSession.

    Args:
        ttl: Session lifetime.
        sweep_interval: Seconds between background sweeps.
        clock: Returns the current UTC time (injectable for tests).
    """

    def __init__(
        self,
        ttl: timedelta = timedelta(hours=24),
        sweep_interval: float = 3600.0,
        clock: Clock = _utcnow,
    ) -> None:
        self.ttl = ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._sessions: dict[str, ChatSession] = {}
        self._lock = ReadWriteLock()
        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

    def create(self, bot_id: str) -> ChatSession:
        now = self._clock()
        session = ChatSession(
            id=str(uuid.uuid4()),
            bot_id=bot_id,
            created_at=now,
            last_activity_at=now,
            expires_at=now + self.ttl,
        )
        with self._lock.write():
            self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> ChatSession:
        """Return a live session.

        Raises:
            SessionNotFound: Unknown ID.
            SessionExpired: The session is past its expiry time.
        """
        with self._lock.read():
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"session not found: {session_id}")
        if session.is_expired(self._clock()):
            raise SessionExpired(f"session has expired: {session_id}")
        return session

    def touch(self, session_id: str) -> ChatSession:
        """Record activity on a live session; the expiry is unchanged."""
        with self._lock.write():
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFound(f"session not found: {session_id}")
            now = self._clock()
            if session.is_expired(now):
                raise SessionExpired(f"session has expired: {session_id}")
            session = replace(session, last_activity_at=now)
            self._sessions[session_id] = session
        return session

    def delete(self, session_id: str) -> None:
        with self._lock.write():
            self._sessions.pop(session_id, None)

    def count(self) -> int:
        with self._lock.read():
            return len(self._sessions)

    def sweep(self) -> int:
        """Evict expired sessions. Returns how many were removed."""
        now = self._clock()
        with self._lock.write():
            expired = [sid for sid, s in self._sessions.items() if s.is_expired(now)]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            log.info("evicted %d expired sessions", len(expired))
        return len(expired)

    # ------------------------------------------------------------------
    # Background sweeper
    # ------------------------------------------------------------------

    def start_sweeper(self) -> None:
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop, name="lectern-session-sweeper", daemon=True
        )
        self._sweeper.start()

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.sweep_interval):
            self.sweep()

    def stop(self) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join()
            self._sweeper = None
