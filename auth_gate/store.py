"""
In-memory store for pending login codes (client identity -> PendingCode) and sessions
(session id -> expiry). One Store per process; state is lost on restart.

Every public method is atomic with respect to the others. Lookups share a read lock so
concurrent gate checks do not serialize; anything that mutates takes the write lock.
Expired entries read as absent whether or not sweep_expired() has run yet.
"""
import enum
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Callable, Iterator


class RWLock:
    """Readers/writer lock: many readers or one writer. Waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
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
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass
class PendingCode:
    code: str
    expires_at: float
    attempts: int = 0

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


class CheckResult(enum.Enum):
    MISSING = "missing"
    MATCHED = "matched"
    MISMATCHED = "mismatched"
    LOCKED_OUT = "locked_out"


class Store:
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = RWLock()
        self._codes: dict[str, PendingCode] = {}
        self._sessions: dict[str, float] = {}

    # --- pending codes ---

    def issue_code(self, identity: str, code: str, ttl: float) -> None:
        """Install a fresh code for identity (attempts=0), replacing any existing one."""
        with self._lock.write():
            self._codes[identity] = PendingCode(code=code, expires_at=self._clock() + ttl)

    def issue_code_unless_cooling(
        self, identity: str, code: str, ttl: float, cooldown: float
    ) -> float | None:
        """
        Install a fresh code unless the identity's live code was issued less than cooldown
        seconds ago. Returns None when installed, else the seconds left in the cooldown
        (existing code untouched).
        """
        with self._lock.write():
            now = self._clock()
            current = self._codes.get(identity)
            if current is not None and not current.expired(now):
                age = ttl - (current.expires_at - now)
                if age < cooldown:
                    return cooldown - age
            self._codes[identity] = PendingCode(code=code, expires_at=now + ttl)
            return None

    def peek_code(self, identity: str) -> PendingCode | None:
        """Live code for identity, or None if absent or expired. Returns a copy."""
        with self._lock.read():
            data = self._codes.get(identity)
            if data is None or data.expired(self._clock()):
                return None
            return replace(data)

    def record_failed_attempt(self, identity: str) -> int | None:
        """Increment attempts for identity's code; no-op if absent. Returns the new count."""
        with self._lock.write():
            data = self._codes.get(identity)
            if data is None:
                return None
            data.attempts += 1
            return data.attempts

    def delete_code(self, identity: str) -> None:
        with self._lock.write():
            self._codes.pop(identity, None)

    def check_code(self, identity: str, submitted: str, ceiling: int) -> CheckResult:
        """
        Compare submitted against the live code in one critical section.
        Match consumes the code. Mismatch counts an attempt and revokes the code once
        attempts exceed ceiling. Comparison is exact string equality ("006" != "6").
        """
        with self._lock.write():
            data = self._codes.get(identity)
            if data is None or data.expired(self._clock()):
                return CheckResult.MISSING
            if submitted == data.code:
                del self._codes[identity]
                return CheckResult.MATCHED
            data.attempts += 1
            if data.attempts > ceiling:
                del self._codes[identity]
                return CheckResult.LOCKED_OUT
            return CheckResult.MISMATCHED

    # --- sessions ---

    def issue_session(self, session_id: str, ttl: float) -> None:
        with self._lock.write():
            self._sessions[session_id] = self._clock() + ttl

    def is_session_live(self, session_id: str) -> bool:
        with self._lock.read():
            expires_at = self._sessions.get(session_id)
            return expires_at is not None and self._clock() < expires_at

    def invalidate_session(self, session_id: str) -> None:
        with self._lock.write():
            self._sessions.pop(session_id, None)

    # --- housekeeping ---

    def sweep_expired(self) -> None:
        """Drop every expired code and session. Memory reclamation only; reads already ignore them."""
        with self._lock.write():
            now = self._clock()
            for identity in [i for i, d in self._codes.items() if d.expired(now)]:
                del self._codes[identity]
            for session_id in [s for s, exp in self._sessions.items() if now >= exp]:
                del self._sessions[session_id]

    def code_count(self) -> int:
        """Number of code entries held, expired or not."""
        with self._lock.read():
            return len(self._codes)

    def session_count(self) -> int:
        """Number of session entries held, expired or not."""
        with self._lock.read():
            return len(self._sessions)
