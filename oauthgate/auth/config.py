from __future__ import annotations

import os
from dataclasses import dataclass, replace
from functools import lru_cache
from typing import List, Optional, Sequence, Tuple
from urllib.parse import urlsplit, urlunsplit

from oauthgate.auth.errors import ConfigInvalid


def _require_str(key: str, value: str) -> None:
    if not (value or "").strip():
        raise ConfigInvalid(f"missing {key}")


def _validate_url(key: str, value: str) -> None:
    _require_str(key, value)
    try:
        parts = urlsplit(value.strip())
    except ValueError as e:
        raise ConfigInvalid(f"invalid {key}: {e}") from e
    if not parts.scheme or not parts.netloc:
        raise ConfigInvalid(f"invalid {key}: {value!r} is not an absolute URL")


@dataclass(frozen=True)
class OAuth2Config:
    redirect_url: str  # e.g. "https://app.example.com/oauth2/callback"
    auth_url: str  # e.g. "https://login.microsoftonline.com/<tenant>/oauth2/v2.0/authorize"
    token_url: str  # e.g. "https://login.microsoftonline.com/<tenant>/oauth2/v2.0/token"
    userinfo_url: str  # e.g. "https://graph.microsoft.com/v1.0/me?$select=displayName,mail"
    scopes: Tuple[str, ...]  # e.g. ("user.read",)
    client_id: str
    client_secret: str

    def validate(self) -> None:
        """Raise ConfigInvalid naming the first missing or unparseable field."""
        _validate_url("redirect_url", self.redirect_url)
        _validate_url("auth_url", self.auth_url)
        _validate_url("token_url", self.token_url)
        _validate_url("userinfo_url", self.userinfo_url)
        _require_str("client_id", self.client_id)
        _require_str("client_secret", self.client_secret)
        if not [s for s in (self.scopes or ()) if (s or "").strip()]:
            raise ConfigInvalid("missing scopes")

    def build(self, override_url: str = "") -> "OAuth2Config":
        """
        Validate and return the effective configuration.

        If override_url is given, its scheme and host[:port] replace the ones in
        redirect_url. This is useful when testing behind a different origin.
        """
        self.validate()
        redir = urlsplit(self.redirect_url.strip())
        scheme, netloc = redir.scheme, redir.netloc
        if (override_url or "").strip():
            try:
                o = urlsplit(override_url.strip())
            except ValueError:
                o = None
            if o is not None:
                scheme = o.scheme or scheme
                netloc = o.netloc or netloc
        redirect_url = urlunsplit((scheme, netloc, redir.path, redir.query, redir.fragment))
        return replace(self, redirect_url=redirect_url, scopes=tuple(s.strip() for s in self.scopes if s.strip()))


def make_oauth2_config(
    *,
    redirect_url: str,
    auth_url: str,
    token_url: str,
    userinfo_url: str,
    scopes: Sequence[str],
    client_id: str,
    client_secret: str,
) -> OAuth2Config:
    cfg = OAuth2Config(
        redirect_url=redirect_url,
        auth_url=auth_url,
        token_url=token_url,
        userinfo_url=userinfo_url,
        scopes=tuple(scopes or ()),
        client_id=client_id,
        client_secret=client_secret,
    )
    cfg.validate()
    return cfg


@dataclass(frozen=True)
class GateConfig:
    # OAuth2 provider (optional; absent means the gate passes everything through)
    oauth2: Optional[OAuth2Config]
    override_url: str

    # Session configuration
    session_secret: Optional[str]
    session_ttl_seconds: int
    cookie_secure: bool
    session_key: str  # identity document
    session_email_key: str  # canonical email

    admins: List[str]
    http_timeout_seconds: float

    @property
    def oauth2_enabled(self) -> bool:
        return self.oauth2 is not None


def _env(name: str) -> str:
    return (os.getenv(name, "") or "").strip()


def _parse_list(value: str) -> List[str]:
    # Scopes are commonly space separated; admin lists comma separated. Accept both.
    items = [x.strip() for x in (value or "").replace(",", " ").split()]
    return [x for x in items if x]


def _parse_csv(value: str) -> List[str]:
    items = [x.strip() for x in (value or "").split(",")]
    return [x for x in items if x]


@lru_cache(maxsize=1)
def load_gate_config() -> GateConfig:
    """
    Load gate configuration from environment variables.

    OAuth2 is enabled when OAUTH2_REDIRECT_URL is set; in that case all of
    OAUTH2_AUTH_URL, OAUTH2_TOKEN_URL, OAUTH2_USERINFO_URL, OAUTH2_SCOPES,
    OAUTH2_CLIENT_ID and OAUTH2_CLIENT_SECRET must be valid or ConfigInvalid
    is raised.
    """
    oauth2: Optional[OAuth2Config] = None
    if _env("OAUTH2_REDIRECT_URL"):
        oauth2 = make_oauth2_config(
            redirect_url=_env("OAUTH2_REDIRECT_URL"),
            auth_url=_env("OAUTH2_AUTH_URL"),
            token_url=_env("OAUTH2_TOKEN_URL"),
            userinfo_url=_env("OAUTH2_USERINFO_URL"),
            scopes=_parse_list(_env("OAUTH2_SCOPES")),
            client_id=_env("OAUTH2_CLIENT_ID"),
            client_secret=_env("OAUTH2_CLIENT_SECRET"),
        )

    cookie_secure_env = _env("SESSION_COOKIE_SECURE").lower()
    if cookie_secure_env in ("1", "true", "yes", "on"):
        cookie_secure = True
    elif cookie_secure_env in ("0", "false", "no", "off"):
        cookie_secure = False
    else:
        # Default: secure cookies when the callback is https; otherwise allow local dev.
        cookie_secure = bool(oauth2 and oauth2.redirect_url.startswith("https://"))

    ttl = int(float(_env("SESSION_TTL_SECONDS") or "43200"))  # 12h default
    if ttl <= 60:
        ttl = 60

    timeout = float(_env("OAUTH2_HTTP_TIMEOUT_SECONDS") or "10")
    if timeout <= 0:
        timeout = 10.0

    return GateConfig(
        oauth2=oauth2,
        override_url=_env("OAUTH2_OVERRIDE_URL"),
        session_secret=_env("SESSION_SECRET") or None,
        session_ttl_seconds=ttl,
        cookie_secure=cookie_secure,
        session_key=_env("SESSION_KEY") or "oauth2userinfo",
        session_email_key=_env("SESSION_EMAIL_KEY") or "email",
        admins=_parse_csv(_env("GATE_ADMINS")),
        http_timeout_seconds=timeout,
    )
