from __future__ import annotations

import json
from typing import Any, Dict
from urllib.parse import parse_qsl, urlencode

import requests

from oauthgate.auth.config import OAuth2Config
from oauthgate.auth.errors import UpstreamExchangeFailed, UpstreamUserinfoFailed, UserinfoDecodeFailed

# Userinfo responses larger than this are truncated (and will then fail to decode).
USERINFO_MAX_BYTES = 32 * 1024


def build_authorize_url(cfg: OAuth2Config, *, state: str) -> str:
    """
    Build the provider authorization URL for the Authorization Code flow.
    `access_type=offline` asks providers that support it for a refresh token.
    """
    params = {
        "access_type": "offline",
        "client_id": cfg.client_id,
        "redirect_uri": cfg.redirect_url,
        "response_type": "code",
        "scope": " ".join(cfg.scopes),
        "state": state,
    }
    sep = "&" if "?" in cfg.auth_url else "?"
    return f"{cfg.auth_url}{sep}{urlencode(params)}"


def exchange_code(cfg: OAuth2Config, *, code: str, timeout: float = 10.0) -> Dict[str, Any]:
    """
    Exchange an authorization code for a token response (must contain access_token).
    The code is single-use at the provider, so this is never retried.
    """
    payload = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": cfg.redirect_url,
        "client_id": cfg.client_id,
        "client_secret": cfg.client_secret,
    }
    try:
        r = requests.post(cfg.token_url, data=payload, headers={"Accept": "application/json"}, timeout=timeout)
    except requests.RequestException as e:
        raise UpstreamExchangeFailed(f"oauth2 token exchange failed: {type(e).__name__}") from e
    if r.status_code >= 400:
        # Avoid leaking sensitive info; include minimal context.
        raise UpstreamExchangeFailed(
            f"oauth2 token exchange failed (status={r.status_code})", status_code=r.status_code
        )

    ctype = str(r.headers.get("Content-Type") or "").lower()
    if "application/x-www-form-urlencoded" in ctype or "text/plain" in ctype:
        data: Any = dict(parse_qsl(r.text))
    else:
        try:
            data = r.json()
        except ValueError as e:
            raise UpstreamExchangeFailed("oauth2 token response is not JSON") from e
    if not isinstance(data, dict):
        raise UpstreamExchangeFailed("oauth2 token response is not an object")
    if not str(data.get("access_token") or "").strip():
        raise UpstreamExchangeFailed("oauth2 token response missing access_token")
    return data


def fetch_userinfo(cfg: OAuth2Config, *, access_token: str, timeout: float = 10.0) -> bytes:
    """
    Fetch the userinfo document using the access token as bearer credential.
    At most USERINFO_MAX_BYTES of the body are read.
    """
    try:
        r = requests.get(
            cfg.userinfo_url,
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
            timeout=timeout,
            stream=True,
        )
    except requests.RequestException as e:
        raise UpstreamUserinfoFailed(f"oauth2 userinfo request failed: {type(e).__name__}") from e
    try:
        if r.status_code != 200:
            raise UpstreamUserinfoFailed(
                f"oauth2 userinfo request failed (status={r.status_code})", status_code=r.status_code
            )
        chunks = []
        size = 0
        try:
            for chunk in r.iter_content(chunk_size=8192):
                if not chunk:
                    continue
                chunk = chunk[: USERINFO_MAX_BYTES - size]
                chunks.append(chunk)
                size += len(chunk)
                if size >= USERINFO_MAX_BYTES:
                    break
        except requests.RequestException as e:
            raise UpstreamUserinfoFailed(f"oauth2 userinfo read failed: {type(e).__name__}") from e
        return b"".join(chunks)
    finally:
        r.close()


def decode_userinfo(body: bytes) -> Dict[str, Any]:
    try:
        data = json.loads(body)
    except ValueError as e:
        raise UserinfoDecodeFailed(f"oauth2 userinfo decode failed: {e}") from e
    if not isinstance(data, dict):
        raise UserinfoDecodeFailed("oauth2 userinfo is not an object")
    return data
