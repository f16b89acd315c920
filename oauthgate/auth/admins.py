from __future__ import annotations

import threading
from typing import FrozenSet, Iterable, List, Optional

from oauthgate.auth.util import normalize_email


class AdminRegistry:
    """
    Thread-safe set of canonical admin emails.

    An empty registry means every authenticated identity is an admin. This is an
    operational convenience and a security-relevant default: forgetting to
    configure admins grants admin access instead of denying it.
    """

    def __init__(self, emails: Iterable[str] = ()):
        self._lock = threading.Lock()
        self._admins: FrozenSet[str] = frozenset()
        self.set_admins(emails)

    def set_admins(self, emails: Iterable[str]) -> None:
        """
        Replace the admin set. Display names are stripped, entries are
        lower-cased, and blank or duplicate entries are dropped.
        """
        admins = set()
        for raw in emails or ():
            if not isinstance(raw, str):
                continue
            email = normalize_email(raw)
            if email:
                admins.add(email)
        with self._lock:
            self._admins = frozenset(admins)

    def is_admin(self, email: Optional[str]) -> bool:
        key = normalize_email(email or "")
        with self._lock:
            return not self._admins or key in self._admins

    def get_admins(self) -> List[str]:
        with self._lock:
            snapshot = list(self._admins)
        return sorted(snapshot)
