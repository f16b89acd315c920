"""
Per-request access gate.

:func:`wrap` turns a Starlette-style endpoint (``(request) -> Response``, sync or
async) into one that requires an authenticated session:

- a session is created if the request has none;
- without an identity, the login flow is started (302 to the provider) and the
  wrapped endpoint is not called;
- with ``admin=True``, a non-admin identity gets the controller's forbidden
  handler (default: static 403 page);
- otherwise the wrapped endpoint runs, with ``request.state.auth`` set to the
  session's :class:`~oauthgate.auth.models.AuthView`.

If the controller is not configured for OAuth2, the endpoint is returned
unchanged and served to everyone.
"""

from __future__ import annotations

import functools
import inspect
from typing import TYPE_CHECKING, Any

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import Response

from oauthgate.auth.models import AuthView

if TYPE_CHECKING:
    from oauthgate.auth.flow import AuthFlowController, Endpoint


async def _call(endpoint: Any, request: Request) -> Response:
    if inspect.iscoroutinefunction(endpoint):
        return await endpoint(request)
    return await run_in_threadpool(endpoint, request)


def wrap(controller: "AuthFlowController", handler: "Endpoint", *, admin: bool = False) -> "Endpoint":
    if not controller.valid:
        return handler

    @functools.wraps(handler)
    async def gated(request: Request) -> Response:
        sessions = controller.sessions
        sess = None
        if sessions is not None:
            sess = sessions.get_session(request) or sessions.new_session(request)
        if sess is None or sess.get(controller.session_key) is None:
            return controller.handle_login(request)

        endpoint = handler
        if admin:
            email = sess.get(controller.session_email_key)
            if not controller.is_admin(email if isinstance(email, str) else ""):
                endpoint = controller.forbidden_handler
        request.state.auth = AuthView(controller, sess)
        return await _call(endpoint, request)

    return gated
