"""
Pytest config.

Pins the repo root on sys.path so `import oauthgate` works when a global `pytest`
entrypoint is used without installing the package, and provides a small
FastAPI app wired to an AuthFlowController with a fake provider configuration.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, Optional
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlsplit

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from fastapi import FastAPI  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from starlette.requests import Request  # noqa: E402
from starlette.responses import PlainTextResponse  # noqa: E402

from oauthgate.auth.config import OAuth2Config, load_gate_config  # noqa: E402
from oauthgate.auth.flow import AuthFlowController  # noqa: E402
from oauthgate.auth.session import SessionStore  # noqa: E402

PROVIDER_AUTH_URL = "https://provider.example/auth"
PROVIDER_TOKEN_URL = "https://provider.example/token"
PROVIDER_USERINFO_URL = "https://provider.example/userinfo"


@pytest.fixture(autouse=True)
def _clear_config_cache() -> None:
    load_gate_config.cache_clear()
    yield
    load_gate_config.cache_clear()


@pytest.fixture
def oauth2_config() -> OAuth2Config:
    return OAuth2Config(
        redirect_url="http://example.com/oauth2/callback",
        auth_url=PROVIDER_AUTH_URL,
        token_url=PROVIDER_TOKEN_URL,
        userinfo_url=PROVIDER_USERINFO_URL,
        scopes=("openid", "email"),
        client_id="the-client-id",
        client_secret="the-client-secret",
    )


@pytest.fixture
def sessions() -> SessionStore:
    return SessionStore("test-secret-key-for-testing-purposes-only")


@pytest.fixture
def app() -> FastAPI:
    return FastAPI()


@pytest.fixture
def controller(app: FastAPI, sessions: SessionStore, oauth2_config: OAuth2Config) -> AuthFlowController:
    ctl = AuthFlowController(sessions)

    def register(path: str, endpoint: Any) -> None:
        app.add_route(path, endpoint, methods=["GET"])

    ctl.set_config(oauth2_config, register)

    def secure(request: Request) -> PlainTextResponse:
        return PlainTextResponse(f"secure:{request.state.auth.email()}")

    async def admin_only(request: Request) -> PlainTextResponse:
        return PlainTextResponse("admin area")

    app.add_route("/secure", ctl.wrap(secure), methods=["GET"])
    app.add_route("/admin", ctl.wrap_admin(admin_only), methods=["GET"])
    return ctl


@pytest.fixture
def client(app: FastAPI, controller: AuthFlowController) -> TestClient:
    return TestClient(app, base_url="http://example.com", follow_redirects=False)


def _fake_response(
    status_code: int = 200,
    *,
    json_body: Optional[Dict[str, Any]] = None,
    body: bytes = b"",
    content_type: str = "application/json",
) -> MagicMock:
    """A stand-in for requests.Response good enough for oauthgate.auth.oauth2."""
    resp = MagicMock()
    resp.status_code = status_code
    resp.headers = {"Content-Type": content_type}
    resp.json.return_value = json_body
    resp.text = body.decode("utf-8", "replace")
    resp.iter_content.return_value = [body] if body else []
    return resp


@pytest.fixture
def fake_response():
    return _fake_response


def state_from_location(location: str) -> str:
    return parse_qs(urlsplit(location).query)["state"][0]


@pytest.fixture
def state_of():
    return state_from_location


@pytest.fixture
def session_of(sessions: SessionStore):
    """Resolve the server-side session a TestClient's cookie jar points at."""

    def _lookup(c: TestClient):
        value = c.cookies.get(sessions.cookie_name)
        if not value:
            return None
        cookie = f"{sessions.cookie_name}={value}".encode("latin-1")
        req = Request({"type": "http", "method": "GET", "path": "/", "headers": [(b"cookie", cookie)], "query_string": b""})
        return sessions.get_session(req)

    return _lookup
