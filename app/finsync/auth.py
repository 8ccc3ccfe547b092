from __future__ import annotations

import re
import uuid

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from app.finsync.audit import record_event
from app.finsync.db import commit, db_session
from app.finsync.errors import FinSyncError, ValidationError
from app.finsync.models import User
from app.finsync.rbac import PrincipalContext, current_principal, get_user_roles, landing_endpoint
from app.finsync.security import LoginThrottle, is_safe_next

bp = Blueprint("auth", __name__)
login_throttle = LoginThrottle()

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6


def load_current_user() -> None:
    """
    Builds g.principal (user + roles) from the signed session cookie, once per request.
    Also assigns a simple per-request request_id (for audit/log correlation).

    A database failure while resolving roles leaves the principal in the
    loading state; guarded views answer with the waiting page.
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.principal = PrincipalContext()

    user_id = session.get("user_id")
    if not user_id:
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            return
    except SQLAlchemyError as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        return

    try:
        roles = get_user_roles(s, user.id)
    except SQLAlchemyError as e:
        current_app.logger.error("Role lookup failed for user_id=%s request_id=%s: %s", user.id, g.request_id, e)
        g.principal = PrincipalContext(user=user, loading=True)
        return
    g.principal = PrincipalContext(user=user, roles=roles)


def validate_signup_payload(payload: dict) -> list[ValidationError]:
    errs: list[ValidationError] = []
    full_name = (payload.get("full_name") or "").strip()
    email = (payload.get("email") or "").strip()
    password = payload.get("password") or ""
    confirm = payload.get("confirm_password") or ""

    if not full_name:
        errs.append(ValidationError("Full name is required.", field="full_name"))
    if not _EMAIL_RE.match(email):
        errs.append(ValidationError("Invalid email address.", field="email"))
    if len(password) < MIN_PASSWORD_LENGTH:
        errs.append(ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.", field="password"))
    if password != confirm:
        errs.append(ValidationError("Passwords do not match.", field="confirm_password"))
    return errs


@bp.get("/auth")
def login_get():
    ctx = current_principal()
    if ctx.is_authenticated and not ctx.loading:
        return redirect(url_for(landing_endpoint(ctx.roles)))
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/auth")
def login_post():
    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if login_throttle.blocked(ip):
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login_get"))

    if not _EMAIL_RE.match(email) or not password:
        flash("Enter a valid email and password.", "danger")
        return redirect(url_for("auth.login_get"))

    login_throttle.record(ip)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
            metadata={"email": email},
        )
        commit(s, "Login")
        flash("Invalid credentials.", "danger")
        return redirect(url_for("auth.login_get"))

    session.clear()
    session["user_id"] = user.id
    login_throttle.reset(ip)
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    commit(s, "Login")
    current_app.logger.info("User %s signed in (request_id=%s)", user.id, g.request_id)

    if is_safe_next(nxt):
        return redirect(nxt)
    return redirect(url_for(landing_endpoint(get_user_roles(s, user.id))))


@bp.get("/auth/signup")
def signup_get():
    return render_template("auth/signup.html")


@bp.post("/auth/signup")
def signup_post():
    payload = {
        "full_name": request.form.get("full_name"),
        "email": request.form.get("email"),
        "password": request.form.get("password"),
        "confirm_password": request.form.get("confirm_password"),
    }
    errors = validate_signup_payload(payload)
    if errors:
        for e in errors:
            flash(e.message, "danger")
        return redirect(url_for("auth.signup_get"))

    s = db_session()
    email = (payload["email"] or "").strip().lower()
    if s.query(User).filter(User.email == email).one_or_none():
        flash("An account with that email already exists.", "danger")
        return redirect(url_for("auth.signup_get"))

    user = User(
        email=email,
        full_name=(payload["full_name"] or "").strip(),
        password_hash=generate_password_hash(payload["password"] or ""),
        is_active=True,
    )
    s.add(user)
    s.flush()
    record_event(s, actor=user, action="auth.signup", entity_type="User", entity_id=str(user.id))
    try:
        commit(s, "Sign up")
    except FinSyncError as e:
        flash(str(e), "danger")
        return redirect(url_for("auth.signup_get"))

    flash("Account created. An administrator will assign your role; you can sign in now.", "success")
    return redirect(url_for("auth.login_get"))


@bp.get("/auth/logout")
def logout():
    s = db_session()
    user = current_principal().user
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        commit(s, "Logout")
    session.pop("user_id", None)
    flash("Signed out.", "success")
    return redirect(url_for("auth.login_get"))
