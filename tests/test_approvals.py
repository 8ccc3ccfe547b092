import io

import pytest

from app.finsync.constants import DocumentStatus, NotificationType
from app.finsync.db import session_scope
from app.finsync.errors import ConflictError, ValidationError
from app.finsync.models import AuditEvent
from app.finsync.modules.approvals.service import (
    approval_history,
    approve,
    latest_decision,
    project_status,
    reject,
    request_changes,
)
from app.finsync.modules.documents.models import Approval, Document
from app.finsync.modules.documents.service import upload_document
from app.finsync.modules.notifications.models import Notification
from helpers import csrf_headers, csv_bytes, login, user, xlsx_bytes


def _uploaded(db, storage, data=None, name="datos.xlsx", document_type="datos_generales"):
    result = upload_document(
        db,
        storage,
        user(db, "client@example.com"),
        title="Datos Generales",
        description=None,
        document_type=document_type,
        file_name=name,
        data=data or xlsx_bytes(("Name", "Amount"), ("Acme", 100)),
    )
    db.commit()
    return result.document


def _notifications(db, email, type_):
    return (
        db.query(Notification)
        .filter(Notification.user_id == user(db, email).id)
        .filter(Notification.type == type_.value)
        .all()
    )


def test_status_is_a_projection_of_the_ledger(db, storage):
    d = _uploaded(db, storage)
    assert latest_decision(d) is None
    assert project_status(d) == DocumentStatus.PENDING_REVIEW
    assert d.status == DocumentStatus.PENDING_REVIEW.value

    request_changes(db, d, 1, user(db, "exec@example.com"), "Falta la columna de fecha")
    db.commit()
    assert project_status(d) == DocumentStatus.CHANGES_REQUESTED
    assert d.status == DocumentStatus.CHANGES_REQUESTED.value

    # a new version has no decision yet, so the document is back in review
    d = _uploaded(db, storage, data=xlsx_bytes(("Name", "Amount", "Fecha"), ("Acme", 100, "2026-01-01")))
    assert d.current_version == 2
    assert d.status == DocumentStatus.PENDING_REVIEW.value


def test_approve_is_one_unit_of_work(db, storage):
    d = _uploaded(db, storage)
    exec_user = user(db, "exec@example.com")
    a = approve(db, d, exec_user, version_number=1, expected_row_version=d.row_version)
    db.commit()

    assert d.status == DocumentStatus.APPROVED.value
    assert a.status == DocumentStatus.APPROVED.value
    assert a.comments == "Documento aprobado"
    assert a.version_number == 1
    assert a.reviewed_by == exec_user.id
    assert a.reviewed_at is not None
    assert len(_notifications(db, "client@example.com", NotificationType.DOCUMENT_APPROVED)) == 1
    assert db.query(AuditEvent).filter(AuditEvent.action == "doc.approve").count() == 1


def test_empty_comment_is_rejected_before_any_write(db, storage):
    d = _uploaded(db, storage)
    before = db.query(Notification).count()
    with pytest.raises(ValidationError) as e:
        request_changes(db, d, 1, user(db, "exec@example.com"), "   ")
    assert e.value.field == "comments"
    db.rollback()

    assert db.query(Approval).count() == 0
    assert db.query(Notification).count() == before
    assert db.get(Document, d.id).status == DocumentStatus.PENDING_REVIEW.value


def test_request_changes_notifies_uploader_with_comment(db, storage):
    d = _uploaded(db, storage)
    request_changes(db, d, 1, user(db, "exec@example.com"), "Revisar montos")
    db.commit()
    [n] = _notifications(db, "client@example.com", NotificationType.CHANGE_REQUESTED)
    assert "Revisar montos" in n.message
    assert n.document_id == d.id


def test_reject_requires_comment_and_notifies(db, storage):
    d = _uploaded(db, storage)
    with pytest.raises(ValidationError):
        reject(db, d, user(db, "exec@example.com"), "")
    reject(db, d, user(db, "exec@example.com"), "Documento ilegible")
    db.commit()
    assert d.status == DocumentStatus.REJECTED.value
    assert len(_notifications(db, "client@example.com", NotificationType.DOCUMENT_REJECTED)) == 1


def test_decision_on_superseded_version_conflicts(db, storage):
    d = _uploaded(db, storage)
    d = _uploaded(db, storage, data=xlsx_bytes(("Name",), ("Acme",)))
    with pytest.raises(ConflictError):
        approve(db, d, user(db, "exec@example.com"), version_number=1)


def test_stale_row_version_conflicts(db, storage):
    d = _uploaded(db, storage)
    stale = d.row_version - 1
    with pytest.raises(ConflictError):
        approve(db, d, user(db, "exec@example.com"), version_number=1, expected_row_version=stale)


def test_decided_document_cannot_be_decided_again(db, storage):
    d = _uploaded(db, storage)
    approve(db, d, user(db, "exec@example.com"))
    db.commit()
    with pytest.raises(ValidationError):
        reject(db, d, user(db, "exec@example.com"), "Cambio de opinión")


def test_retry_with_same_key_is_applied_once(db, storage):
    d = _uploaded(db, storage)
    exec_user = user(db, "exec@example.com")
    first = approve(db, d, exec_user, idempotency_key="k-1")
    db.commit()
    again = approve(db, d, exec_user, idempotency_key="k-1")
    assert again.id == first.id
    assert db.query(Approval).count() == 1
    assert len(_notifications(db, "client@example.com", NotificationType.DOCUMENT_APPROVED)) == 1


def test_history_lists_every_decision(db, storage):
    d = _uploaded(db, storage)
    request_changes(db, d, 1, user(db, "exec@example.com"), "Falta firma")
    db.commit()
    d = _uploaded(db, storage, data=xlsx_bytes(("Name",), ("Acme",)))
    approve(db, d, user(db, "exec@example.com"))
    db.commit()
    assert [(a.version_number, a.status) for a in approval_history(db, d.id)] == [
        (1, DocumentStatus.CHANGES_REQUESTED.value),
        (2, DocumentStatus.APPROVED.value),
    ]


def test_executive_reviews_and_approves_through_the_ui(client, app):
    login(client, "client@example.com")
    client.get("/upload")
    client.post(
        "/upload",
        data={
            "title": "Datos Generales",
            "document_type": "datos_generales",
            "file": (io.BytesIO(xlsx_bytes(("Name", "Amount"), ("Acme", 100))), "datos.xlsx"),
        },
        content_type="multipart/form-data",
        headers=csrf_headers(client),
    )
    client.get("/auth/logout")

    login(client, "exec@example.com")
    with session_scope(app) as s:
        d = s.query(Document).one()
        doc_id, row_version = d.id, d.row_version

    r = client.get(f"/approvals/{doc_id}")
    assert r.status_code == 200
    assert b"<td>Acme</td>" in r.data
    assert b"<td>100</td>" in r.data

    r = client.post(
        f"/approvals/{doc_id}/approve",
        data={"version_number": "1", "row_version": str(row_version), "request_token": "ui-1"},
        headers=csrf_headers(client),
    )
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/approvals")

    with session_scope(app) as s:
        assert s.get(Document, doc_id).status == DocumentStatus.APPROVED.value
        n = _notifications(s, "client@example.com", NotificationType.DOCUMENT_APPROVED)
        assert len(n) == 1


def test_request_changes_without_comment_through_the_ui(client, app, db, storage):
    d = _uploaded(db, storage, data=csv_bytes(("Name",), ("Acme",)), name="d.csv")
    login(client, "exec@example.com")
    client.get("/approvals")
    r = client.post(
        f"/approvals/{d.id}/request-changes",
        data={"version_number": "1", "row_version": str(d.row_version), "comments": ""},
        headers=csrf_headers(client),
        follow_redirects=True,
    )
    assert b"describing the changes" in r.data
    with session_scope(app) as s:
        assert s.query(Approval).count() == 0


def test_key_reused_on_another_document_is_not_a_replay(db, storage):
    first_doc = _uploaded(db, storage)
    other_doc = _uploaded(db, storage, name="solicitud.xlsx", document_type="solicitud_prestamo")
    exec_user = user(db, "exec@example.com")
    first = approve(db, first_doc, exec_user, idempotency_key="k-shared")
    db.commit()

    with pytest.raises(ConflictError):
        approve(db, other_doc, exec_user, idempotency_key="k-shared")
    db.rollback()

    assert [a.id for a in db.query(Approval)] == [first.id]
    assert db.get(Document, other_doc.id).status == DocumentStatus.PENDING_REVIEW.value


def test_key_reused_for_another_decision_is_not_a_replay(db, storage):
    d = _uploaded(db, storage)
    exec_user = user(db, "exec@example.com")
    request_changes(db, d, 1, exec_user, "Falta firma", idempotency_key="k-2")
    db.commit()
    d = _uploaded(db, storage, data=xlsx_bytes(("Name",), ("Acme",)))

    with pytest.raises(ConflictError):
        approve(db, d, exec_user, idempotency_key="k-2")
    db.rollback()
    assert db.get(Document, d.id).status == DocumentStatus.PENDING_REVIEW.value


def test_request_changes_without_version_number_is_a_validation_error(client, app, db, storage):
    d = _uploaded(db, storage, data=csv_bytes(("Name",), ("Acme",)), name="d.csv")
    login(client, "exec@example.com")
    client.get("/approvals")
    r = client.post(
        f"/approvals/{d.id}/request-changes",
        data={"comments": "Revisar"},
        headers=csrf_headers(client),
    )
    assert r.status_code == 302
    assert r.headers["Location"].endswith(f"/approvals/{d.id}")
    r = client.get(f"/approvals/{d.id}")
    assert b"Missing document version" in r.data
    with session_scope(app) as s:
        assert s.query(Approval).count() == 0


def test_detail_page_posts_decisions_to_the_decision_routes(client, db, storage):
    d = _uploaded(db, storage, data=csv_bytes(("Name",), ("Acme",)), name="d.csv")
    login(client, "exec@example.com")
    r = client.get(f"/approvals/{d.id}")
    assert r.status_code == 200
    for action in ("approve", "request-changes", "reject"):
        assert f'action="/approvals/{d.id}/{action}"'.encode() in r.data
