import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import HTTPException, Request
from itsdangerous import BadSignature, URLSafeTimedSerializer


SESSION_COOKIE = "session_token"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticatedUser:
    id: int
    username: str


@dataclass
class _SessionEntry:
    user: AuthenticatedUser
    expires_at: float


class SessionStore:
    """In-process map of session tokens to logged-in users.

    Tokens are created on login and dropped on logout or once they are older
    than ``max_age_hours``. The value handed to the browser is the token
    signed with the application secret, so forged cookies never reach the
    map lookup.
    """

    def __init__(
        self,
        secret: str,
        max_age_hours: int = 24,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._serializer = URLSafeTimedSerializer(secret, salt="session-token")
        self.max_age_secs = max_age_hours * 3600
        self._clock = clock
        self._sessions: dict[str, _SessionEntry] = {}
        self._lock = threading.Lock()

    def create(self, user: AuthenticatedUser) -> str:
        token = secrets.token_hex(16)
        with self._lock:
            self._purge_expired_locked()
            self._sessions[token] = _SessionEntry(
                user=user, expires_at=self._clock() + self.max_age_secs
            )
        return self._serializer.dumps(token)

    def _unsign(self, cookie_value: str) -> Optional[str]:
        try:
            token = self._serializer.loads(cookie_value, max_age=self.max_age_secs)
        except BadSignature:
            return None
        return token if isinstance(token, str) else None

    def resolve(self, cookie_value: Optional[str]) -> Optional[AuthenticatedUser]:
        if not cookie_value:
            return None
        token = self._unsign(cookie_value)
        if token is None:
            return None
        with self._lock:
            entry = self._sessions.get(token)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                del self._sessions[token]
                return None
            return entry.user

    def revoke(self, cookie_value: Optional[str]) -> bool:
        if not cookie_value:
            return False
        token = self._unsign(cookie_value)
        if token is None:
            return False
        with self._lock:
            return self._sessions.pop(token, None) is not None

    def _purge_expired_locked(self) -> None:
        now = self._clock()
        expired = [t for t, entry in self._sessions.items() if now >= entry.expires_at]
        for token in expired:
            del self._sessions[token]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.sessions


def require_user(request: Request) -> AuthenticatedUser:
    store = get_session_store(request)
    user = store.resolve(request.cookies.get(SESSION_COOKIE))
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user
