from flask import Blueprint, flash, redirect, render_template, request, url_for

from app.finsync.db import commit, db_session
from app.finsync.errors import FinSyncError
from app.finsync.modules.notifications.service import list_notifications, mark_read
from app.finsync.rbac import require_login
from app.finsync.utils import current_user, report_error

bp = Blueprint("notifications", __name__)


@bp.get("/notifications")
@require_login
def notifications_list():
    s = db_session()
    u = current_user()
    unread_only = (request.args.get("unread") or "").strip() == "1"
    return render_template(
        "notifications/list.html",
        notifications=list_notifications(s, u.id, unread_only=unread_only),
        unread_only=unread_only,
    )


@bp.post("/notifications/<int:notification_id>/read")
@require_login
def notification_read(notification_id: int):
    s = db_session()
    u = current_user()
    try:
        mark_read(s, notification_id, u)
        commit(s, "Mark notification read")
    except FinSyncError as e:
        report_error(s, e, "Mark notification read")
        return redirect(url_for("notifications.notifications_list"))
    flash("Notification marked as read.", "success")
    return redirect(url_for("notifications.notifications_list"))
