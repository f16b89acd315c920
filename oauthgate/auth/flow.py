"""
OAuth2 Authorization Code flow controller.

Owns the three flow endpoints and the per-attempt CSRF state:

- login:    store a fresh single-use state + sanitized referrer in the session,
            redirect (302) to the provider.
- callback: consume the state (always, before comparing), exchange the code,
            fetch userinfo, store the identity, redirect (302) back.
- logout:   clear the identity, redirect (302) back.

Endpoints are plain `(request) -> Response` callables, so they can be registered
with Starlette/FastAPI via `app.add_route(path, endpoint)`. They are synchronous,
so Starlette runs them in its threadpool and the blocking
token/userinfo calls stay off the event loop.

Security-relevant defaults: if OAuth2 is not configured, wrapped handlers are
served without authentication, and an empty admin list makes everyone an admin.
"""

from __future__ import annotations

import html
import logging
import posixpath
import threading
from http import HTTPStatus
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple
from urllib.parse import urlsplit

from starlette.requests import Request
from starlette.responses import HTMLResponse, RedirectResponse, Response

from oauthgate.auth import oauth2
from oauthgate.auth.admins import AdminRegistry
from oauthgate.auth.config import OAuth2Config
from oauthgate.auth.errors import AuthFlowError, MissingSession, NotConfigured, WrongState
from oauthgate.auth.identity import extract_email
from oauthgate.auth.models import AuthView, PendingAuth
from oauthgate.auth.session import Session, SessionStore
from oauthgate.auth.util import random_token, sanitize_redirect_target

logger = logging.getLogger(__name__)

# Internal session keys; never exposed outside this module.
OAUTH2_STATE_KEY = "oauth2state"
OAUTH2_REFERRER_KEY = "oauth2referrer"

Endpoint = Callable[[Request], Any]
RegisterFunc = Callable[[str, Endpoint], None]
EventFunc = Callable[[Session, Request], None]
# Return a Response to replace the default error page, or None to keep it.
LoginFailedFunc = Callable[[Request, int, AuthFlowError, Optional[str]], Optional[Response]]

_ERROR_TEMPLATE = "<html><body><h2>%03d %s</h2><p>%s</p></body></html>"


def error_body(status_code: int, err: BaseException) -> str:
    try:
        phrase = HTTPStatus(status_code).phrase
    except ValueError:
        phrase = ""
    return _ERROR_TEMPLATE % (status_code, phrase, html.escape(str(err)))


def default_forbidden_handler(request: Request) -> Response:
    return HTMLResponse("<html><body><h1>403 Forbidden</h1></body></html>", status_code=403)


def _redirect(location: str) -> Response:
    resp = RedirectResponse(url=location, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    return resp


class AuthFlowController:
    def __init__(
        self,
        sessions: Optional[SessionStore],
        *,
        session_key: str = "oauth2userinfo",
        session_email_key: str = "email",
        admins: Iterable[str] = (),
        http_timeout: float = 10.0,
    ):
        self.sessions = sessions
        self.session_key = session_key  # value is the userinfo dict
        self.session_email_key = session_email_key  # value is the canonical email str
        self.http_timeout = http_timeout
        self.login_event: Optional[EventFunc] = None  # called after a successful login
        self.logout_event: Optional[EventFunc] = None  # called before logout
        self.login_failed: Optional[LoginFailedFunc] = None
        self._oauth2: Optional[OAuth2Config] = None
        self._admins = AdminRegistry(admins)
        self._mu = threading.Lock()  # protects following
        self._handled_paths: Set[str] = set()
        self._forbidden: Endpoint = default_forbidden_handler

    # -- configuration -----------------------------------------------------

    def set_config(self, cfg: Optional[OAuth2Config], register: Optional[RegisterFunc], override_url: str = "") -> None:
        """
        Enable OAuth2 and register the flow endpoints.

        Paths are derived from the callback URL: for `/oauth2/callback` the
        endpoints are `/oauth2/callback`, `/oauth2/login` and `/oauth2/logout`.
        Raises ConfigInvalid; a None cfg or register leaves the controller unconfigured.
        """
        if cfg is None or register is None or not (cfg.redirect_url or "").strip():
            return
        built = cfg.build(override_url)
        path = urlsplit(built.redirect_url).path or "/"
        base = posixpath.dirname(path)
        self._oauth2 = built
        self._handle_path(path, register, self.handle_callback)
        self._handle_path(posixpath.join(base, "login"), register, self.handle_login)
        self._handle_path(posixpath.join(base, "logout"), register, self.handle_logout)
        logger.info("OAuth2 enabled: callback=%s client_id=%s", built.redirect_url, built.client_id)

    def _handle_path(self, path: str, register: RegisterFunc, endpoint: Endpoint) -> None:
        with self._mu:
            if path in self._handled_paths:
                return
            self._handled_paths.add(path)
        register(path, endpoint)

    @property
    def valid(self) -> bool:
        """True if OAuth2 is configured."""
        return self._oauth2 is not None

    def handled_paths(self) -> List[str]:
        with self._mu:
            return sorted(self._handled_paths)

    # -- admins ------------------------------------------------------------

    def is_admin(self, email: Optional[str]) -> bool:
        """True if email is an admin, if no admins are set, or if OAuth2 is not configured."""
        if not self.valid:
            return True
        return self._admins.is_admin(email)

    def set_admins(self, emails: Iterable[str]) -> None:
        """Set the admin emails. If empty, everyone is considered an admin."""
        self._admins.set_admins(emails)

    def get_admins(self) -> List[str]:
        """Sorted admin emails. If empty, everyone is considered an admin."""
        return self._admins.get_admins()

    # -- forbidden handler -------------------------------------------------

    def set_forbidden_handler(self, handler: Optional[Endpoint]) -> None:
        with self._mu:
            self._forbidden = handler or default_forbidden_handler

    @property
    def forbidden_handler(self) -> Endpoint:
        with self._mu:
            return self._forbidden

    # -- sessions ----------------------------------------------------------

    def get_session(self, request: Request) -> Optional[Session]:
        if self.sessions is None:
            return None
        return self.sessions.get_session(request)

    def auth_view(self, request: Request) -> AuthView:
        return AuthView(self, self.get_session(request))

    def _finish(self, request: Request, response: Response) -> Response:
        if self.sessions is not None:
            self.sessions.apply_cookie(request, response)
        return response

    def _clear_identity(self, sess: Session) -> None:
        sess.set(self.session_key, None)
        sess.set(self.session_email_key, None)

    # -- flow --------------------------------------------------------------

    def _begin(self, request: Request) -> Tuple[Optional[OAuth2Config], str]:
        """Return the config and the sanitized post-flow location for request."""
        location = (request.headers.get("referer") or "").strip()
        if not location:
            location = request.url.path
            if request.url.query:
                location = f"{location}?{request.url.query}"
        location = sanitize_redirect_target(request.headers.get("host"), location)
        # Don't send the user back into the flow endpoints themselves.
        for p in sorted(self.handled_paths(), key=len, reverse=True):
            if location.endswith(p):
                location = location[: -len(p)]
                break
        return self._oauth2, location or "/"

    def handle_login(self, request: Request) -> Response:
        cfg, location = self._begin(request)
        if cfg is None:
            return _redirect(location)
        state = random_token(32)
        sess: Optional[Session] = None
        if self.sessions is not None:
            sess = self.sessions.get_session(request) or self.sessions.new_session(request)
        if sess is not None:
            sess.set(OAUTH2_STATE_KEY, state)
            sess.set(OAUTH2_REFERRER_KEY, location)
        else:
            logger.warning("OAuth2 login without session backing; the callback will be rejected")
        return self._finish(request, _redirect(oauth2.build_authorize_url(cfg, state=state)))

    def _take_pending(self, sess: Session) -> PendingAuth:
        # State goes first: concurrent callbacks race on this pop and only one wins.
        state = sess.pop(OAUTH2_STATE_KEY)
        referrer = sess.pop(OAUTH2_REFERRER_KEY)
        return PendingAuth(
            state=state if isinstance(state, str) else "",
            referrer=referrer if isinstance(referrer, str) else "",
        )

    def _complete_login(self, request: Request, sess: Optional[Session]) -> Tuple[Dict[str, Any], Optional[str], str]:
        cfg = self._oauth2
        if cfg is None:
            raise NotConfigured()
        if sess is None:
            raise MissingSession()
        pending = self._take_pending(sess)
        got_state = request.query_params.get("state") or ""
        if not pending.state or pending.state != got_state:
            raise WrongState()

        token = oauth2.exchange_code(cfg, code=request.query_params.get("code") or "", timeout=self.http_timeout)
        body = oauth2.fetch_userinfo(cfg, access_token=str(token["access_token"]), timeout=self.http_timeout)
        userinfo = oauth2.decode_userinfo(body)
        email = extract_email(userinfo)
        location = sanitize_redirect_target(request.headers.get("host"), pending.referrer or "/")
        return userinfo, email, location

    def _session_email(self, sess: Optional[Session]) -> Optional[str]:
        if sess is None:
            return None
        value = sess.get(self.session_email_key)
        return value if isinstance(value, str) else None

    def handle_callback(self, request: Request) -> Response:
        sess = self.get_session(request)
        try:
            userinfo, email, location = self._complete_login(request, sess)
        except AuthFlowError as err:
            # Read before clearing so the failure hook sees who was logged in.
            previous_email = self._session_email(sess)
            # A forged or replayed callback must not log out an existing identity.
            if sess is not None and not isinstance(err, WrongState):
                self._clear_identity(sess)
                self.sessions.dirty(sess)
            return self._login_failed(request, err, previous_email)

        sess.set(self.session_key, userinfo)
        sess.set(self.session_email_key, email)
        self.sessions.dirty(sess)
        logger.info("OAuth2 login: email=%s", email or "<none>")
        response = _redirect(location)
        if self.login_event is not None:
            self.login_event(sess, request)
        return response

    def _login_failed(self, request: Request, err: AuthFlowError, email: Optional[str]) -> Response:
        status_code = err.status_code
        logger.warning("OAuth2 login failed: status=%d error=%s", status_code, err)
        if self.login_failed is not None:
            custom = self.login_failed(request, status_code, err, email)
            if custom is not None:
                return custom
        return HTMLResponse(error_body(status_code, err), status_code=status_code)

    def handle_logout(self, request: Request) -> Response:
        _cfg, location = self._begin(request)
        sess = self.get_session(request)
        if sess is not None:
            if self.logout_event is not None:
                self.logout_event(sess, request)
            self._clear_identity(sess)
            self.sessions.dirty(sess)
            logger.info("OAuth2 logout")
        return _redirect(location)

    # -- gating ------------------------------------------------------------

    def wrap(self, handler: Endpoint) -> Endpoint:
        """Require an authenticated session before invoking handler. No-op if not valid."""
        from oauthgate.auth.gate import wrap

        return wrap(self, handler, admin=False)

    def wrap_admin(self, handler: Endpoint) -> Endpoint:
        """Like wrap(), but the session's email must also pass is_admin()."""
        from oauthgate.auth.gate import wrap

        return wrap(self, handler, admin=True)
