"""
HTTP application.

Serves a small protected site behind the OAuth2 gate: `/` needs any authenticated
identity, `/admin` needs an admin identity, `/api/auth/me` reports the identity
of the calling session and `/healthz` is public.
"""

from __future__ import annotations

import html
import logging
import os
import time
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from oauthgate.auth.config import GateConfig, load_gate_config
from oauthgate.auth.flow import AuthFlowController
from oauthgate.auth.session import Session, SessionStore

logger = logging.getLogger(__name__)


class IdentityResponse(BaseModel):
    ok: bool = True
    authenticated: bool
    email: str
    is_admin: bool
    userinfo: Optional[Dict[str, Any]] = None


def _log_dirty(sess: Session) -> None:
    logger.debug("session %s... changed (keys=%s)", sess.id[:8], sess.keys())


def create_controller(cfg: GateConfig) -> AuthFlowController:
    sessions = SessionStore(
        cfg.session_secret,
        ttl_seconds=cfg.session_ttl_seconds,
        cookie_secure=cfg.cookie_secure,
    )
    sessions.add_dirty_listener(_log_dirty)
    return AuthFlowController(
        sessions,
        session_key=cfg.session_key,
        session_email_key=cfg.session_email_key,
        admins=cfg.admins,
        http_timeout=cfg.http_timeout_seconds,
    )


def _index(request: Request) -> HTMLResponse:
    auth = getattr(request.state, "auth", None)
    who = auth.email() if auth is not None else ""
    return HTMLResponse(f"<html><body><h1>Hello {html.escape(who or 'anonymous')}</h1></body></html>")


def create_app(cfg: Optional[GateConfig] = None) -> FastAPI:
    """
    Build the application. Raises ConfigInvalid if the OAuth2 configuration is bad,
    so a misconfigured deployment fails at startup rather than per request.
    """
    if cfg is None:
        cfg = load_gate_config()

    app = FastAPI(title="oauthgate")
    controller = create_controller(cfg)
    app.state.auth = controller

    def register(path: str, endpoint: Any) -> None:
        app.add_route(path, endpoint, methods=["GET"])

    controller.set_config(cfg.oauth2, register, cfg.override_url)
    if not controller.valid:
        logger.warning("OAuth2 is not configured; protected routes are served without authentication")

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all incoming HTTP requests."""
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, str(e))
            raise
        process_time = time.time() - start_time
        logger.debug("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
        return response

    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        return {"ok": True, "oauth2Enabled": controller.valid}

    @app.get("/api/auth/me", response_model=IdentityResponse)
    def auth_me(request: Request) -> IdentityResponse:
        view = controller.auth_view(request)
        data = view.data()
        return IdentityResponse(
            authenticated=data is not None,
            email=view.email(),
            is_admin=view.is_admin(),
            userinfo=data,
        )

    def admin_page(request: Request) -> HTMLResponse:
        admins: List[str] = controller.get_admins()
        items = "".join(f"<li>{html.escape(a)}</li>" for a in admins) or "<li>(everyone)</li>"
        return HTMLResponse(f"<html><body><h1>Admins</h1><ul>{items}</ul></body></html>")

    app.add_route("/", controller.wrap(_index), methods=["GET"])
    app.add_route("/admin", controller.wrap_admin(admin_page), methods=["GET"])
    return app


def run(host: str = "0.0.0.0", port: int = 8080) -> None:
    import uvicorn

    # Configure logging for the application
    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    app = create_app()
    logger.info("Starting server on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
