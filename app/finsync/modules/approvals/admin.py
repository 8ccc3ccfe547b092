"""
Executive approvals screen.

Executives see every document, preview the latest version, and record a
decision (approve / request changes / reject). Decision forms carry the
version number and row version the executive was looking at; if the document
moved on in the meantime the decision is refused instead of applied to a
version nobody reviewed.
"""

from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, redirect, render_template, request, url_for

from app.finsync.audit import recent_events
from app.finsync.constants import DocumentStatus, Role
from app.finsync.db import commit, db_session
from app.finsync.errors import FinSyncError, ValidationError
from app.finsync.modules.approvals.service import approval_history, approve, reject, request_changes
from app.finsync.modules.documents.models import Document
from app.finsync.modules.documents.service import document_stats, list_documents, list_versions, preview_latest_version
from app.finsync.rbac import GateMode, current_principal, require_any_role, require_role
from app.finsync.storage import storage_from_config
from app.finsync.utils import current_user, form_int, new_request_token, report_error

bp = Blueprint("approvals", __name__)


def _get_doc_or_404(s, doc_id: int) -> Document:
    d = s.get(Document, doc_id)
    if not d:
        abort(404)
    return d


@bp.get("/approvals")
@require_role(Role.EXECUTIVE, mode=GateMode.REDIRECT)
def approvals_list():
    s = db_session()
    docs = list_documents(s)
    return render_template(
        "approvals/list.html",
        documents=docs,
        stats=document_stats(docs),
    )


@bp.get("/approvals/<int:doc_id>")
@require_role(Role.EXECUTIVE, mode=GateMode.REDIRECT)
def approval_detail(doc_id: int):
    s = db_session()
    d = _get_doc_or_404(s, doc_id)

    preview = None
    version = None
    if d.current_version > 0:
        storage = storage_from_config(current_app.config)
        try:
            version, preview = preview_latest_version(
                s, storage, d, max_rows=current_app.config.get("PREVIEW_MAX_ROWS")
            )
        except FinSyncError as e:
            report_error(None, e, "Preview")
            preview = None

    return render_template(
        "approvals/detail.html",
        document=d,
        version=version,
        preview=preview,
        versions=list_versions(s, d.id),
        history=approval_history(s, d.id),
        activity=recent_events(s, entity_type="Document", entity_id=d.id, limit=10),
        can_decide=d.status == DocumentStatus.PENDING_REVIEW.value,
        request_token=new_request_token(),
    )


def _decision_fields() -> dict:
    return {
        "version_number": form_int(request.form.get("version_number")),
        "expected_row_version": form_int(request.form.get("row_version")),
        "idempotency_key": (request.form.get("request_token") or "").strip() or None,
    }


@bp.post("/approvals/<int:doc_id>/approve")
@require_role(Role.EXECUTIVE, mode=GateMode.DENY)
def approve_document(doc_id: int):
    s = db_session()
    u = current_user()
    d = _get_doc_or_404(s, doc_id)
    try:
        require_any_role(current_principal(), Role.EXECUTIVE)
        approve(s, d, u, comments=request.form.get("comments"), **_decision_fields())
        commit(s, "Approve document")
    except FinSyncError as e:
        report_error(s, e, "Approve document")
        return redirect(url_for("approvals.approval_detail", doc_id=doc_id))
    flash("Document approved.", "success")
    return redirect(url_for("approvals.approvals_list"))


@bp.post("/approvals/<int:doc_id>/request-changes")
@require_role(Role.EXECUTIVE, mode=GateMode.DENY)
def request_changes_document(doc_id: int):
    s = db_session()
    u = current_user()
    d = _get_doc_or_404(s, doc_id)
    fields = _decision_fields()
    version_number = fields.pop("version_number")
    try:
        require_any_role(current_principal(), Role.EXECUTIVE)
        if version_number is None:
            raise ValidationError("Missing document version; reload the page and try again.", field="version_number")
        request_changes(s, d, version_number, u, request.form.get("comments") or "", **fields)
        commit(s, "Request changes")
    except FinSyncError as e:
        report_error(s, e, "Request changes")
        return redirect(url_for("approvals.approval_detail", doc_id=doc_id))
    flash("Changes requested.", "success")
    return redirect(url_for("approvals.approvals_list"))


@bp.post("/approvals/<int:doc_id>/reject")
@require_role(Role.EXECUTIVE, mode=GateMode.DENY)
def reject_document(doc_id: int):
    s = db_session()
    u = current_user()
    d = _get_doc_or_404(s, doc_id)
    try:
        require_any_role(current_principal(), Role.EXECUTIVE)
        reject(s, d, u, request.form.get("comments") or "", **_decision_fields())
        commit(s, "Reject document")
    except FinSyncError as e:
        report_error(s, e, "Reject document")
        return redirect(url_for("approvals.approval_detail", doc_id=doc_id))
    flash("Document rejected.", "success")
    return redirect(url_for("approvals.approvals_list"))
