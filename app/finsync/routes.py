from flask import Blueprint, current_app, redirect, url_for
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return redirect(url_for("auth.login_get"))


@bp.get("/health")
def health():
    """Readiness: JSON with a database round trip. 503 when the database is unreachable."""
    engine = current_app.extensions["sqlalchemy_engine"]
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        current_app.logger.error("Health check: database unreachable: %s", e)
        return {"ok": False, "database": "unreachable"}, 503
    return {"ok": True, "database": "ok"}


@bp.get("/healthz")
def healthz():
    """Liveness: no DB access, minimal overhead."""
    return "ok", 200
