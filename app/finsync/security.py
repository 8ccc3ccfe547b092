"""
Request-level protections: CSRF tokens, sign-in throttling and redirect targets.
"""
from __future__ import annotations

import hmac
import secrets
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Request, session

LOGIN_RATE_LIMIT = 5
LOGIN_RATE_WINDOW = timedelta(minutes=5)

# Endpoint prefixes reachable before a session (and so a CSRF token) exists.
CSRF_EXEMPT_PREFIXES = ("auth.",)


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def csrf_exempt(endpoint: str | None) -> bool:
    return (endpoint or "").startswith(CSRF_EXEMPT_PREFIXES)


def validate_csrf(req: Request) -> bool:
    """Validate the CSRF token sent in the form or the X-CSRF-Token header."""
    expected = session.get("csrf_token")
    token = req.headers.get("X-CSRF-Token") or req.form.get("csrf_token")
    if not token or not expected:
        return False
    return hmac.compare_digest(str(token), str(expected))


class LoginThrottle:
    """In-process sliding window of sign-in attempts per client IP."""

    def __init__(self, limit: int = LOGIN_RATE_LIMIT, window: timedelta = LOGIN_RATE_WINDOW) -> None:
        self.limit = limit
        self.window = window
        self._attempts: dict[str, list[datetime]] = defaultdict(list)

    def blocked(self, ip: str) -> bool:
        cutoff = datetime.utcnow() - self.window
        self._attempts[ip] = [t for t in self._attempts[ip] if t > cutoff]
        return len(self._attempts[ip]) >= self.limit

    def record(self, ip: str) -> None:
        self._attempts[ip].append(datetime.utcnow())

    def reset(self, ip: str | None = None) -> None:
        if ip is None:
            self._attempts.clear()
        else:
            self._attempts.pop(ip, None)


def is_safe_next(target: str | None) -> bool:
    """Only local absolute paths; rejects scheme-relative and backslash tricks."""
    target = (target or "").strip()
    return target.startswith("/") and not target.startswith(("//", "/\\"))
