import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from flask import request, current_app

logger = logging.getLogger(__name__)


@dataclass
class Session:
    token: str
    user_id: int
    created_at: datetime
    expires_at: datetime
    last_active_at: datetime


class SessionStore:
    """
    In-memory token -> Session map.
    One instance per app, kept in app.extensions["sessions"].
    """

    def __init__(self, lifetime_seconds: int = 24 * 60 * 60,
                 clock: Callable[[], datetime] = datetime.utcnow):
        self.lifetime = timedelta(seconds=lifetime_seconds)
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def create_session(self, user_id: int) -> str:
        """
        Creates a session and returns its raw token (256 bits of randomness).
        """
        token = secrets.token_hex(32)
        now = self._clock()
        sess = Session(
            token=token,
            user_id=user_id,
            created_at=now,
            expires_at=now + self.lifetime,
            last_active_at=now,
        )
        with self._lock:
            self._sessions[token] = sess
        return token

    def validate_session(self, token: Optional[str]) -> Optional[Session]:
        if not token:
            return None

        now = self._clock()
        with self._lock:
            sess = self._sessions.get(token)
            if sess is None:
                return None

            if sess.expires_at < now:
                del self._sessions[token]
                return None

            # Touch
            sess.last_active_at = now
            return sess

    def invalidate(self, token: Optional[str]) -> bool:
        if not token:
            return False
        with self._lock:
            return self._sessions.pop(token, None) is not None

    def invalidate_user(self, user_id: int) -> int:
        with self._lock:
            tokens = [t for t, s in self._sessions.items() if s.user_id == user_id]
            for t in tokens:
                del self._sessions[t]
        return len(tokens)

    def cleanup(self) -> int:
        """
        Deletes every expired session. Returns how many were removed.
        """
        now = self._clock()
        with self._lock:
            expired = [t for t, s in self._sessions.items() if s.expires_at < now]
            for t in expired:
                del self._sessions[t]
        if expired:
            logger.info("Swept %d expired sessions", len(expired))
        return len(expired)


class SessionSweeper(threading.Thread):
    """
    Background timer: sweeps expired sessions and idle rate-limit keys.
    """

    def __init__(self, store: SessionStore, limiter=None, interval_seconds: float = 300):
        super().__init__(name="session-sweeper", daemon=True)
        self.store = store
        self.limiter = limiter
        self.interval = interval_seconds
        self._stopped = threading.Event()

    def run(self):
        while not self._stopped.wait(self.interval):
            self.sweep()

    def sweep(self):
        self.store.cleanup()
        if self.limiter is not None:
            self.limiter.prune()

    def stop(self):
        self._stopped.set()


def get_session_store() -> SessionStore:
    return current_app.extensions["sessions"]


def bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    token = header[len("Bearer "):].strip()
    return token or None


def create_session(user_id: int) -> str:
    return get_session_store().create_session(user_id)


def get_session_from_request() -> Optional[Session]:
    return get_session_store().validate_session(bearer_token())


def revoke_session(raw_token: Optional[str]) -> bool:
    return get_session_store().invalidate(raw_token)


def revoke_all_sessions(user_id: int) -> int:
    return get_session_store().invalidate_user(user_id)
