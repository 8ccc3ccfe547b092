"""
Role resolution and role-gated routing.

Each request builds one read-only PrincipalContext (who is signed in, which
roles they hold, whether role lookup finished) and every guarded view asks
decide_access() what to do with it. The gate only hides screens; write paths
re-check roles in their handlers and the database policy layer stays the
authority.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from functools import wraps
from typing import Any

from flask import abort, g, redirect, render_template, request, url_for
from sqlalchemy.orm import Session

from app.finsync.constants import Role
from app.finsync.errors import PermissionDeniedError
from app.finsync.models import User, UserRole

logger = logging.getLogger(__name__)


# ---------- Role Resolver ----------
def get_user_roles(s: Session, user_id: int) -> frozenset[Role]:
    rows = s.query(UserRole.role).filter(UserRole.user_id == user_id).all()
    roles: set[Role] = set()
    for (raw,) in rows:
        try:
            roles.add(Role(raw))
        except ValueError:
            logger.warning("Ignoring unknown role %r for user_id=%s", raw, user_id)
    return frozenset(roles)


def assign_role(s: Session, user_id: int, role: Role) -> UserRole:
    existing = (
        s.query(UserRole)
        .filter(UserRole.user_id == user_id)
        .filter(UserRole.role == role.value)
        .one_or_none()
    )
    if existing:
        return existing
    ur = UserRole(user_id=user_id, role=role.value)
    s.add(ur)
    s.flush()
    return ur


def has_role(roles: Iterable[Role], role: Role) -> bool:
    return role in roles


# ---------- Request-scoped principal ----------
@dataclass(frozen=True)
class PrincipalContext:
    user: User | None = None
    roles: frozenset[Role] = field(default_factory=frozenset)
    loading: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    def has_role(self, role: Role) -> bool:
        return has_role(self.roles, role)

    def has_any_role(self, roles: Iterable[Role]) -> bool:
        return any(r in self.roles for r in roles)


ANONYMOUS = PrincipalContext()


def current_principal() -> PrincipalContext:
    return getattr(g, "principal", None) or ANONYMOUS


def require_any_role(ctx: PrincipalContext, *roles: Role) -> None:
    """Handler-side check for write paths; raises instead of redirecting."""
    if not ctx.is_authenticated:
        raise PermissionDeniedError("Sign in to continue.")
    if not ctx.has_any_role(roles):
        raise PermissionDeniedError("You do not have permission to perform this action.")


# ---------- Router state machine ----------
class AccessDecision(str, Enum):
    WAIT = "wait"
    SIGN_IN = "sign_in"
    REDIRECT = "redirect"
    DENY = "deny"
    ALLOW = "allow"


class GateMode(str, Enum):
    REDIRECT = "redirect"  # role-specific landing pages: send elsewhere
    DENY = "deny"  # strictly gated: render access denied
    EXCLUDE = "exclude"  # shared pages that some roles must not see


# Checked in order; first match wins.
LANDING_ENDPOINTS: tuple[tuple[Role, str], ...] = (
    (Role.EXECUTIVE, "approvals.approvals_list"),
    (Role.CLIENT, "uploads.upload_get"),
    (Role.INTERNAL_TEAM, "internal_docs.internal_docs_list"),
)
DEFAULT_LANDING_ENDPOINT = "dashboard.index"


def landing_endpoint(roles: Iterable[Role]) -> str:
    roles = frozenset(roles)
    for role, endpoint in LANDING_ENDPOINTS:
        if role in roles:
            return endpoint
    return DEFAULT_LANDING_ENDPOINT


def decide_access(ctx: PrincipalContext, roles: Iterable[Role], mode: GateMode = GateMode.DENY) -> AccessDecision:
    """
    loading -> WAIT; anonymous -> SIGN_IN; role mismatch -> REDIRECT or DENY; else ALLOW.

    In EXCLUDE mode `roles` lists roles that must NOT see the screen (they get
    REDIRECT to their own landing page); an empty `roles` means "any signed-in
    principal".
    """
    if ctx.loading:
        return AccessDecision.WAIT
    if not ctx.is_authenticated:
        return AccessDecision.SIGN_IN
    roles = frozenset(roles)
    if mode == GateMode.EXCLUDE:
        return AccessDecision.REDIRECT if ctx.has_any_role(roles) else AccessDecision.ALLOW
    if roles and not ctx.has_any_role(roles):
        return AccessDecision.REDIRECT if mode == GateMode.REDIRECT else AccessDecision.DENY
    return AccessDecision.ALLOW


def _next_path() -> str:
    nxt = request.full_path or request.path
    # Avoid trailing '?' from full_path when there is no query string.
    if nxt.endswith("?"):
        nxt = nxt[:-1]
    return nxt


def require_role(*roles: Role, mode: GateMode = GateMode.DENY) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            ctx = current_principal()
            decision = decide_access(ctx, roles, mode)
            if decision == AccessDecision.WAIT:
                return render_template("errors/waiting.html"), 503, {"Retry-After": "2"}
            if decision == AccessDecision.SIGN_IN:
                return redirect(url_for("auth.login_get", next=_next_path()))
            if decision == AccessDecision.REDIRECT:
                return redirect(url_for(landing_endpoint(ctx.roles)))
            if decision == AccessDecision.DENY:
                g.missing_roles = [r.value for r in roles]
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    return require_role()(fn)
