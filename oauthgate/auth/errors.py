"""Exceptions."""

from __future__ import annotations

from typing import Optional


class ConfigInvalid(ValueError):
    """OAuth2 configuration is missing a value or has an unparseable URL."""


class AuthFlowError(RuntimeError):
    """A login attempt failed; carries the HTTP status to respond with."""

    status_code: int = 500
    default_message: str = "oauth2 error"

    def __init__(self, message: Optional[str] = None, *, status_code: Optional[int] = None) -> None:
        super().__init__(message or self.default_message)
        if status_code is not None:
            self.status_code = status_code


class NotConfigured(AuthFlowError):
    """Flow invoked on an instance without OAuth2 configuration."""

    status_code = 500
    default_message = "oauth2 not configured"


class MissingSession(AuthFlowError):
    """No session backing the callback request."""

    status_code = 400
    default_message = "oauth2 missing session"


class WrongState(AuthFlowError):
    """CSRF state absent, mismatched or already consumed."""

    status_code = 400
    default_message = "oauth2 wrong state"


class UpstreamExchangeFailed(AuthFlowError):
    """Authorization code could not be exchanged for a token."""

    status_code = 500
    default_message = "oauth2 token exchange failed"


class UpstreamUserinfoFailed(AuthFlowError):
    """Userinfo endpoint failed or returned a non-200 status."""

    status_code = 500
    default_message = "oauth2 userinfo request failed"


class UserinfoDecodeFailed(AuthFlowError):
    """Userinfo body is not a JSON object."""

    status_code = 500
    default_message = "oauth2 userinfo decode failed"
