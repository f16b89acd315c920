from __future__ import annotations

import json
from dataclasses import replace
from typing import Optional
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

import main
from oauthgate.api.server import create_app
from oauthgate.auth.config import GateConfig, OAuth2Config, load_gate_config
from oauthgate.auth.errors import ConfigInvalid


def _gate_config(oauth2: Optional[OAuth2Config], **kw) -> GateConfig:
    base = GateConfig(
        oauth2=oauth2,
        override_url="",
        session_secret="test-secret-key-for-testing-purposes-only",
        session_ttl_seconds=3600,
        cookie_secure=False,
        session_key="oauth2userinfo",
        session_email_key="email",
        admins=[],
        http_timeout_seconds=5.0,
    )
    return replace(base, **kw)


def _client(cfg: GateConfig) -> TestClient:
    return TestClient(create_app(cfg), base_url="http://example.com", follow_redirects=False)


def test_healthz_is_public(oauth2_config) -> None:
    r = _client(_gate_config(oauth2_config)).get("/healthz")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "oauth2Enabled": True}


def test_unconfigured_app_is_open(caplog) -> None:
    c = _client(_gate_config(None))
    assert c.get("/healthz").json()["oauth2Enabled"] is False
    r = c.get("/")
    assert r.status_code == 200
    assert "Hello anonymous" in r.text
    assert c.get("/admin").status_code == 200
    assert c.get("/oauth2/login").status_code == 404

    me = c.get("/api/auth/me").json()
    assert me["authenticated"] is False
    assert me["is_admin"] is True
    assert any("not configured" in rec.getMessage() for rec in caplog.records)


def test_index_requires_login(oauth2_config) -> None:
    c = _client(_gate_config(oauth2_config))
    r = c.get("/")
    assert r.status_code == 302
    assert r.headers["location"].startswith("https://provider.example/auth?")

    me = c.get("/api/auth/me").json()
    assert me == {"ok": True, "authenticated": False, "email": "", "is_admin": False, "userinfo": None}


def test_full_login_then_me_and_admin(oauth2_config, fake_response, state_of) -> None:
    c = _client(_gate_config(oauth2_config, admins=["carol@example.com"]))
    state = state_of(c.get("/oauth2/login", headers={"Referer": "http://example.com/"}).headers["location"])
    with patch("oauthgate.auth.oauth2.requests.post", return_value=fake_response(json_body={"access_token": "t"})), patch(
        "oauthgate.auth.oauth2.requests.get",
        return_value=fake_response(body=json.dumps({"email": "Dave@Example.com"}).encode()),
    ):
        r = c.get("/oauth2/callback", params={"state": state, "code": "c"})
    assert r.status_code == 302
    assert r.headers["location"] == "/"

    r = c.get("/")
    assert r.status_code == 200
    assert "Hello dave@example.com" in r.text

    me = c.get("/api/auth/me").json()
    assert me["authenticated"] is True
    assert me["email"] == "dave@example.com"
    assert me["is_admin"] is False
    assert me["userinfo"] == {"email": "Dave@Example.com"}

    assert c.get("/admin").status_code == 403


def test_override_url_is_applied(oauth2_config, state_of) -> None:
    c = _client(_gate_config(oauth2_config, override_url="https://gate.example"))
    loc = c.get("/oauth2/login").headers["location"]
    assert "redirect_uri=https%3A%2F%2Fgate.example%2Foauth2%2Fcallback" in loc


def test_invalid_oauth2_config_fails_at_startup(oauth2_config) -> None:
    with pytest.raises(ConfigInvalid):
        create_app(_gate_config(replace(oauth2_config, client_secret="")))


def test_check_config_cli(monkeypatch, capsys) -> None:
    monkeypatch.delenv("OAUTH2_REDIRECT_URL", raising=False)
    assert main.check_config() == 0
    assert "not configured" in capsys.readouterr().out

    monkeypatch.setenv("OAUTH2_REDIRECT_URL", "https://app.example/oauth2/callback")
    monkeypatch.delenv("OAUTH2_AUTH_URL", raising=False)
    load_gate_config.cache_clear()
    assert main.check_config() == 2
    assert "missing auth_url" in capsys.readouterr().err


def test_list_admins_cli(monkeypatch, capsys) -> None:
    monkeypatch.setenv("GATE_ADMINS", "Zed@Example.com, ann@example.com")
    assert main.list_admins() == 0
    assert capsys.readouterr().out.split() == ["ann@example.com", "zed@example.com"]
