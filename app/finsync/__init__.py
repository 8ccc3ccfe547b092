import logging
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, flash, g, redirect, render_template, request, session, url_for

from app.finsync.auth import bp as auth_bp, load_current_user
from app.finsync.config import load_config
from app.finsync.constants import DOCUMENT_TYPE_LABELS, ROLE_LABELS, STATUS_LABELS
from app.finsync.db import init_db, teardown_db_session
from app.finsync.modules.approvals.admin import bp as approvals_bp
from app.finsync.modules.dashboard.admin import bp as dashboard_bp
from app.finsync.modules.documents.admin import bp as documents_bp
from app.finsync.modules.internal_docs.admin import bp as internal_docs_bp
from app.finsync.modules.notifications.admin import bp as notifications_bp
from app.finsync.modules.uploads.admin import bp as uploads_bp
from app.finsync.routes import bp as routes_bp

_UNGUARDED_PREFIXES = ("/static/", "/health", "/healthz")


def _configure_logging(level: str) -> None:
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    root.setLevel(getattr(logging, level, logging.INFO))


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    _configure_logging(app.config["LOG_LEVEL"])

    from app.finsync.security import csrf_exempt, ensure_csrf_token, validate_csrf

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_principal() -> dict:
        from app.finsync.modules.notifications.service import unread_count
        from app.finsync.db import db_session
        from app.finsync.rbac import current_principal

        ctx = current_principal()
        unread = 0
        if ctx.is_authenticated and not ctx.loading:
            unread = unread_count(db_session(), ctx.user.id)
        return {
            "principal": ctx,
            "principal_roles": {r.value for r in ctx.roles},
            "unread_notifications": unread,
            "role_labels": ROLE_LABELS,
            "status_labels": STATUS_LABELS,
            "type_labels": DOCUMENT_TYPE_LABELS,
        }

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d") -> str:
        if value is None:
            return "-"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNGUARDED_PREFIXES):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if csrf_exempt(request.endpoint):
                return None
            if not validate_csrf(request):
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if app.config.get("STORAGE_BACKEND") == "s3":
            missing_s3 = [
                key
                for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
                if not app.config.get(key)
            ]
            if missing_s3:
                raise RuntimeError(f"Missing required S3 settings: {', '.join(missing_s3)}")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        import os

        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(uploads_bp)
    app.register_blueprint(approvals_bp)
    app.register_blueprint(internal_docs_bp)
    app.register_blueprint(documents_bp)
    app.register_blueprint(notifications_bp)

    def _load_user_wrapper():
        if request.path.startswith(_UNGUARDED_PREFIXES):
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return render_template("errors/500.html"), 500

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return render_template("errors/404.html"), 404

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_roles", None)
        if missing:
            app.logger.warning("Forbidden: missing_roles=%s request_id=%s", missing, getattr(g, "request_id", None))
        return render_template("errors/403.html", missing_roles=missing), 403

    @app.errorhandler(400)
    def _err_400(e):  # type: ignore[no-redef]
        return render_template("errors/400.html", message=getattr(e, "description", None)), 400

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        limit_mb = app.config["MAX_UPLOAD_BYTES"] // (1024 * 1024)
        flash(f"File too large. Maximum size is {limit_mb}MB.", "danger")
        referrer = request.referrer
        if referrer and referrer.startswith(request.host_url):
            return redirect(referrer), 302
        return redirect(url_for("routes.index")), 302

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")
    return app
