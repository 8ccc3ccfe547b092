from __future__ import annotations

import uuid

from flask import current_app, flash, g
from sqlalchemy.orm import Session

from app.finsync.errors import ErrorKind, FinSyncError
from app.finsync.models import User
from app.finsync.rbac import current_principal


def current_user() -> User:
    u = current_principal().user
    if not u:
        # The role gate should prevent this.
        raise RuntimeError("No current user")
    return u


def new_request_token() -> str:
    """Idempotency token rendered into forms so a resubmitted POST is applied once."""
    return uuid.uuid4().hex


def form_int(raw: str | None) -> int | None:
    raw = (raw or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def report_error(s: Session | None, e: FinSyncError, what: str) -> None:
    """Abandon the operation: roll back, log, and show the message to the user."""
    if s is not None:
        s.rollback()
    log = current_app.logger.warning if e.kind == ErrorKind.VALIDATION else current_app.logger.error
    log("%s failed (%s): %s request_id=%s", what, e.kind.value, e, getattr(g, "request_id", None))
    flash(str(e), "danger")
