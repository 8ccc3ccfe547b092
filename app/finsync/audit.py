import json
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.finsync.models import AuditEvent, User


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Append-only audit event helper. Works outside requests too (scripts, tests),
    in which case request id and client IP stay empty.
    """
    in_request = has_request_context()
    ev = AuditEvent(
        request_id=request_id or (getattr(g, "request_id", None) if in_request else None),
        client_ip=request.remote_addr if in_request else None,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        # datetimes and Decimals in metadata are stored as their str() form
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
    )
    s.add(ev)
    return ev


def recent_events(
    s: Session,
    *,
    action_prefix: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    limit: int = 20,
) -> list[AuditEvent]:
    """Newest first. `action_prefix="doc."` narrows to document activity."""
    q = s.query(AuditEvent)
    if action_prefix:
        q = q.filter(AuditEvent.action.startswith(action_prefix))
    if entity_type:
        q = q.filter(AuditEvent.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(AuditEvent.entity_id == str(entity_id))
    return q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(limit).all()
