from __future__ import annotations

import os
import re
from email.utils import parseaddr
from urllib.parse import urlsplit


def random_token(nbytes: int = 32) -> str:
    return os.urandom(nbytes).hex()


_QUOTED_RE = re.compile(r'"(?:[^"\\]|\\.)*"')


def _is_single_mailbox(raw: str, addr: str) -> bool:
    """True if raw is exactly `addr` or `phrase <addr>` with a plain display name."""
    if raw == addr:
        return True
    suffix = f"<{addr}>"
    if not raw.endswith(suffix):
        return False
    phrase = _QUOTED_RE.sub("", raw[: -len(suffix)])
    # A display name may not carry an unquoted "@" or angle bracket.
    return not any(c in phrase for c in '@<>"')


def normalize_email(value: str) -> str:
    """
    Canonical form of an email identity: mailbox only, trimmed, lower-cased.

    `"Test User" <TestUser@Example.com>` -> `testuser@example.com`. Strings that
    don't parse as exactly one mailbox are kept as-is (trimmed, lower-cased), so
    `admin@corp.com <other@evil.com>` never canonicalizes to `admin@corp.com`.
    """
    s = (value or "").strip()
    _name, addr = parseaddr(s)
    if addr and "@" in addr and _is_single_mailbox(s, addr):
        s = addr
    return s.strip().lower()


def normalize_host(hostport: str | None) -> str:
    """Lower-cased host with any port and trailing dot removed."""
    h = (hostport or "").strip()
    if not h:
        return ""
    # Userinfo is never part of the origin.
    h = h.rpartition("@")[2]
    if h.startswith("["):
        end = h.find("]")
        if end != -1:
            h = h[1:end]
    elif h.count(":") == 1:
        h = h.split(":", 1)[0]
    return h.rstrip(".").lower()


def _request_uri(path: str, query: str) -> str:
    uri = path or "/"
    if query:
        uri = f"{uri}?{query}"
    return uri


def sanitize_redirect_target(request_host: str | None, location: str | None) -> str:
    """
    Prevent open-redirects: turn any post-login location into a same-origin path.

    Absolute URLs are only honored when their host matches the request host, and
    then only their path and query are kept. Relative locations get exactly one
    leading slash, so `//evil.com/x` becomes `/evil.com/x`. Never raises.
    """
    sanitized = ""
    trimmed = (location or "").strip()
    if trimmed:
        try:
            parts = urlsplit(trimmed)
        except ValueError:
            parts = None
        if parts is not None:
            if parts.scheme:
                host = normalize_host(request_host)
                if host and normalize_host(parts.netloc) == host:
                    sanitized = _request_uri(parts.path, parts.query)
            else:
                sanitized = trimmed

    # Header values must stay single-line.
    sanitized = sanitized.replace("\r", "").replace("\n", "").strip()
    if sanitized:
        # Browsers treat a leading backslash like a slash.
        sanitized = "/" + sanitized.lstrip("/\\")
    return sanitized or "/"
