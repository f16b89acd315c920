from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from oauthgate.auth.util import normalize_email

logger = logging.getLogger(__name__)

# Userinfo fields that may carry the email, in priority order.
# Google/Keycloak use "email"; Microsoft Graph uses "mail".
EMAIL_FIELDS = ("email", "mail")


def extract_email(userinfo: Mapping[str, Any]) -> Optional[str]:
    """
    Derive the canonical email identity from a provider userinfo document.

    Returns None (and logs a warning carrying the whole document) if no
    candidate field holds a usable string. That is not a login failure; the
    raw document is still stored in the session.
    """
    for key in EMAIL_FIELDS:
        value = userinfo.get(key)
        if isinstance(value, str):
            email = normalize_email(value)
            if email:
                return email
    logger.warning("no email found in userinfo", extra={"userinfo": dict(userinfo)})
    return None
