from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

from oauthgate.auth.session import Session

if TYPE_CHECKING:
    from oauthgate.auth.flow import AuthFlowController


@dataclass(frozen=True)
class PendingAuth:
    """One in-flight login: CSRF state plus where to go afterwards."""

    state: str
    referrer: str


class AuthView:
    """
    Read-only identity of a session, for templates and handlers.

    Safe on a missing session or one without identity: email() is "",
    data() is None and is_admin() is False (True when OAuth2 is not configured).
    """

    def __init__(self, controller: "AuthFlowController", session: Optional[Session]):
        self._controller = controller
        self._session = session

    def data(self) -> Optional[Dict[str, Any]]:
        if self._session is None:
            return None
        value = self._session.get(self._controller.session_key)
        return value if isinstance(value, dict) else None

    def email(self) -> str:
        if self._session is None:
            return ""
        value = self._session.get(self._controller.session_email_key)
        return value if isinstance(value, str) else ""

    def is_admin(self) -> bool:
        if not self._controller.valid:
            return True
        if self.data() is None:
            return False
        return self._controller.is_admin(self.email())
