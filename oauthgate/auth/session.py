from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from itsdangerous import BadSignature, BadTimeSignature, URLSafeTimedSerializer
from starlette.requests import Request
from starlette.responses import Response

from oauthgate.auth.util import random_token

logger = logging.getLogger(__name__)

SESSION_SALT = "oauthgate-session-v1"

# request.state attributes used to cache the resolved session for one request.
_STATE_SESSION = "oauthgate_session"
_STATE_SESSION_NEW = "oauthgate_session_new"


class Session:
    """Server-side key/value bag for one browser, identified by a signed cookie."""

    def __init__(self, session_id: str, now: float):
        self.id = session_id
        self.created_at = now
        self.last_seen = now
        self.dirty_count = 0
        self._lock = threading.Lock()
        self._data: Dict[str, Any] = {}

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        # None clears the key, so "absent" and "set to None" read the same.
        with self._lock:
            if value is None:
                self._data.pop(key, None)
            else:
                self._data[key] = value

    def pop(self, key: str, default: Any = None) -> Any:
        """Read and clear a key atomically."""
        with self._lock:
            return self._data.pop(key, default)

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._data)

    def __repr__(self) -> str:
        return f"Session(id={self.id[:8]}..., keys={self.keys()})"


DirtyListener = Callable[[Session], None]


class SessionStore:
    """
    In-memory session store.

    The cookie holds only the session id, signed with itsdangerous so ids can't be
    forged or enumerated. Sessions expire after `ttl_seconds` of inactivity and
    do not survive a process restart.
    """

    def __init__(
        self,
        secret: Optional[str] = None,
        *,
        cookie_name: str = "oauthgate_session",
        ttl_seconds: int = 43200,
        cookie_secure: bool = False,
    ):
        if not secret:
            # Fine for a single process: sessions are in-memory anyway.
            logger.warning("SESSION_SECRET not set; using a random per-process signing key")
            secret = random_token(32)
        self.cookie_name = cookie_name
        self.ttl_seconds = ttl_seconds
        self.cookie_secure = cookie_secure
        self._serializer = URLSafeTimedSerializer(secret_key=secret, salt=SESSION_SALT)
        self._lock = threading.Lock()
        self._sessions: Dict[str, Session] = {}
        self._listeners: List[DirtyListener] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _evict_expired(self, now: float) -> None:
        expired = [k for k, s in self._sessions.items() if now - s.last_seen > self.ttl_seconds]
        for k in expired:
            del self._sessions[k]

    def _decode(self, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        try:
            sid = self._serializer.loads(value, max_age=self.ttl_seconds)
        except (BadSignature, BadTimeSignature):
            return None
        return sid if isinstance(sid, str) and sid else None

    def get_session(self, request: Request) -> Optional[Session]:
        """Return the session for this request's cookie, or None."""
        cached = getattr(request.state, _STATE_SESSION, None)
        if cached is not None:
            return cached
        sid = self._decode(request.cookies.get(self.cookie_name))
        if sid is None:
            return None
        now = time.time()
        with self._lock:
            sess = self._sessions.get(sid)
            if sess is None:
                return None
            if now - sess.last_seen > self.ttl_seconds:
                del self._sessions[sid]
                return None
            sess.last_seen = now
        setattr(request.state, _STATE_SESSION, sess)
        return sess

    def new_session(self, request: Request) -> Session:
        """Create a session and bind it to this request; see apply_cookie()."""
        now = time.time()
        sess = Session(random_token(16), now)
        with self._lock:
            self._evict_expired(now)
            self._sessions[sess.id] = sess
        setattr(request.state, _STATE_SESSION, sess)
        setattr(request.state, _STATE_SESSION_NEW, True)
        logger.debug("created session %s...", sess.id[:8])
        return sess

    def apply_cookie(self, request: Request, response: Response) -> Response:
        """Set the session cookie on response if this request created the session."""
        if getattr(request.state, _STATE_SESSION_NEW, False):
            sess = getattr(request.state, _STATE_SESSION, None)
            if sess is not None:
                response.set_cookie(**self.cookie_kwargs(self._serializer.dumps(sess.id)))
        return response

    def add_dirty_listener(self, fn: DirtyListener) -> None:
        with self._lock:
            self._listeners.append(fn)

    def dirty(self, sess: Session) -> None:
        """Mark the session changed and notify listeners (e.g. live UI refresh)."""
        with self._lock:
            sess.dirty_count += 1
            listeners = list(self._listeners)
        for fn in listeners:
            fn(sess)

    def cookie_kwargs(self, value: str) -> dict:
        return {
            "key": self.cookie_name,
            "value": value,
            "max_age": self.ttl_seconds,
            "httponly": True,
            "secure": self.cookie_secure,
            "samesite": "lax",
            "path": "/",
        }
