"""
Approval Ledger.

Decisions are append-only Approval rows. Document.status is never set
directly by a reviewer; it is recomputed from the ledger (project_status) in
the same transaction as the decision, so the column and the latest decision
always agree.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from app.finsync.audit import record_event
from app.finsync.constants import DocumentStatus, NotificationType
from app.finsync.db import translate_db_errors
from app.finsync.errors import ConflictError, ValidationError
from app.finsync.modules.documents.models import Approval, Document
from app.finsync.modules.documents.service import check_row_version, update_status
from app.finsync.modules.notifications.service import notify

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.finsync.models import User

logger = logging.getLogger(__name__)


def latest_decision(d: Document) -> Approval | None:
    """Most recent approval row for the document's current version."""
    for a in reversed(d.approvals):
        if a.version_number == d.current_version:
            return a
    return None


def project_status(d: Document) -> DocumentStatus:
    a = latest_decision(d)
    if a is not None:
        return DocumentStatus(a.status)
    if d.current_version > 0:
        return DocumentStatus.PENDING_REVIEW
    return DocumentStatus.DRAFT


def refresh_status(s: "Session", d: Document) -> Document:
    return update_status(s, d, project_status(d))


def approval_history(s: "Session", document_id: int) -> list[Approval]:
    return (
        s.query(Approval)
        .filter(Approval.document_id == document_id)
        .order_by(Approval.requested_at.asc(), Approval.id.asc())
        .all()
    )


def _find_replay(s: "Session", d: Document, status: DocumentStatus, idempotency_key: str | None) -> Approval | None:
    """A token reused for another document or decision is not a replay; the unique key rejects it later."""
    if not idempotency_key:
        return None
    return (
        s.query(Approval)
        .filter(Approval.idempotency_key == idempotency_key)
        .filter(Approval.document_id == d.id)
        .filter(Approval.status == status.value)
        .one_or_none()
    )


def _check_reviewable(d: Document, version_number: int, expected_row_version: int | None) -> None:
    check_row_version(d, expected_row_version)
    if version_number != d.current_version:
        raise ConflictError(
            f"Version {version_number} of {d.title!r} is no longer current (now v{d.current_version}). "
            "Reload and review the latest version."
        )
    if d.status != DocumentStatus.PENDING_REVIEW.value:
        raise ValidationError(f"Document {d.title!r} is not pending review (status: {d.status}).", field="status")


def _record_decision(
    s: "Session",
    d: Document,
    reviewer: "User",
    status: DocumentStatus,
    comments: str | None,
    idempotency_key: str | None,
) -> Approval:
    now = datetime.utcnow()
    a = Approval(
        document_id=d.id,
        version_number=d.current_version,
        requested_by=reviewer.id,
        reviewed_by=reviewer.id,
        status=status.value,
        comments=comments,
        idempotency_key=idempotency_key,
        requested_at=now,
        reviewed_at=now,
    )
    d.approvals.append(a)
    with translate_db_errors("Record review decision"):
        s.flush()
    refresh_status(s, d)
    return a


def request_changes(
    s: "Session",
    d: Document,
    version_number: int,
    requester: "User",
    comments: str,
    *,
    expected_row_version: int | None = None,
    idempotency_key: str | None = None,
) -> Approval:
    comments = (comments or "").strip()
    if not comments:
        raise ValidationError("Please enter a comment describing the changes needed.", field="comments")
    replay = _find_replay(s, d, DocumentStatus.CHANGES_REQUESTED, idempotency_key)
    if replay:
        return replay
    _check_reviewable(d, version_number, expected_row_version)

    a = _record_decision(s, d, requester, DocumentStatus.CHANGES_REQUESTED, comments, idempotency_key)
    notify(
        s,
        d.uploaded_by,
        NotificationType.CHANGE_REQUESTED,
        "Cambios Solicitados",
        f'Se solicitaron cambios en tu documento "{d.title}": {comments}',
        document_id=d.id,
    )
    record_event(
        s,
        actor=requester,
        action="doc.request_changes",
        entity_type="Document",
        entity_id=str(d.id),
        reason=comments,
        metadata={"approval_id": a.id, "version_number": a.version_number},
    )
    logger.info("Changes requested on doc_id=%s v%s by user_id=%s", d.id, a.version_number, requester.id)
    return a


def approve(
    s: "Session",
    d: Document,
    reviewer: "User",
    *,
    comments: str | None = None,
    version_number: int | None = None,
    expected_row_version: int | None = None,
    idempotency_key: str | None = None,
) -> Approval:
    """
    Status approved + approval row + one notification to the uploader, all in
    the caller's transaction. A retry with the same idempotency key returns
    the original row and writes nothing.
    """
    replay = _find_replay(s, d, DocumentStatus.APPROVED, idempotency_key)
    if replay:
        return replay
    _check_reviewable(d, d.current_version if version_number is None else version_number, expected_row_version)

    a = _record_decision(
        s, d, reviewer, DocumentStatus.APPROVED, (comments or "").strip() or "Documento aprobado", idempotency_key
    )
    notify(
        s,
        d.uploaded_by,
        NotificationType.DOCUMENT_APPROVED,
        "Documento Aprobado",
        f'Tu documento "{d.title}" ha sido aprobado',
        document_id=d.id,
    )
    record_event(
        s,
        actor=reviewer,
        action="doc.approve",
        entity_type="Document",
        entity_id=str(d.id),
        metadata={"approval_id": a.id, "version_number": a.version_number},
    )
    logger.info("Approved doc_id=%s v%s by user_id=%s", d.id, a.version_number, reviewer.id)
    return a


def reject(
    s: "Session",
    d: Document,
    reviewer: "User",
    comments: str,
    *,
    version_number: int | None = None,
    expected_row_version: int | None = None,
    idempotency_key: str | None = None,
) -> Approval:
    comments = (comments or "").strip()
    if not comments:
        raise ValidationError("A rejection requires a comment.", field="comments")
    replay = _find_replay(s, d, DocumentStatus.REJECTED, idempotency_key)
    if replay:
        return replay
    _check_reviewable(d, d.current_version if version_number is None else version_number, expected_row_version)

    a = _record_decision(s, d, reviewer, DocumentStatus.REJECTED, comments, idempotency_key)
    notify(
        s,
        d.uploaded_by,
        NotificationType.DOCUMENT_REJECTED,
        "Documento Rechazado",
        f'Tu documento "{d.title}" fue rechazado: {comments}',
        document_id=d.id,
    )
    record_event(
        s,
        actor=reviewer,
        action="doc.reject",
        entity_type="Document",
        entity_id=str(d.id),
        reason=comments,
        metadata={"approval_id": a.id, "version_number": a.version_number},
    )
    logger.info("Rejected doc_id=%s v%s by user_id=%s", d.id, a.version_number, reviewer.id)
    return a
