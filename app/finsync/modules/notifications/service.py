from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.finsync.audit import record_event
from app.finsync.constants import NotificationType, Role
from app.finsync.db import translate_db_errors
from app.finsync.errors import NotFoundError, PermissionDeniedError
from app.finsync.models import User, UserRole
from app.finsync.modules.notifications.models import Notification

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def notify(
    s: "Session",
    user_id: int,
    type: NotificationType,
    title: str,
    message: str,
    document_id: int | None = None,
) -> Notification:
    """Append one unread notification. Never updates existing rows."""
    n = Notification(
        user_id=user_id,
        type=NotificationType(type).value,
        title=title,
        message=message,
        document_id=document_id,
        read=False,
        created_at=datetime.utcnow(),
    )
    s.add(n)
    with translate_db_errors("Create notification"):
        s.flush()
    return n


def notify_role(
    s: "Session",
    role: Role,
    type: NotificationType,
    title: str,
    message: str,
    document_id: int | None = None,
    *,
    exclude_user_id: int | None = None,
) -> list[Notification]:
    recipients = (
        s.query(User.id)
        .join(UserRole, UserRole.user_id == User.id)
        .filter(UserRole.role == role.value)
        .filter(User.is_active.is_(True))
        .order_by(User.id.asc())
        .all()
    )
    return [
        notify(s, uid, type, title, message, document_id=document_id)
        for (uid,) in recipients
        if uid != exclude_user_id
    ]


def list_notifications(s: "Session", user_id: int, *, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    q = s.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        q = q.filter(Notification.read.is_(False))
    return q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def unread_count(s: "Session", user_id: int) -> int:
    return (
        s.query(Notification)
        .filter(Notification.user_id == user_id)
        .filter(Notification.read.is_(False))
        .count()
    )


def mark_read(s: "Session", notification_id: int, user: User) -> Notification:
    n = s.get(Notification, notification_id)
    if not n:
        raise NotFoundError(f"Notification {notification_id} not found.")
    if n.user_id != user.id:
        raise PermissionDeniedError("You can only mark your own notifications as read.")
    if not n.read:
        n.read = True
        record_event(s, actor=user, action="notification.read", entity_type="Notification", entity_id=str(n.id))
        with translate_db_errors("Mark notification read"):
            s.flush()
    return n
