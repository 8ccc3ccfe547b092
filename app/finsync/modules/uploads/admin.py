"""
Client upload screen.

Uploading under a document type that already has a live document appends the
next version to it; otherwise a new document is created at version 1.
"""

from __future__ import annotations

from flask import Blueprint, current_app, flash, redirect, render_template, request, url_for

from app.finsync.constants import DocumentType, Role
from app.finsync.db import commit, db_session
from app.finsync.errors import FinSyncError
from app.finsync.modules.documents.service import discard_blob, upload_document, validate_upload
from app.finsync.rbac import GateMode, current_principal, require_any_role, require_role
from app.finsync.storage import storage_from_config
from app.finsync.utils import current_user, new_request_token, report_error

bp = Blueprint("uploads", __name__)


@bp.get("/upload")
@require_role(Role.CLIENT, mode=GateMode.REDIRECT)
def upload_get():
    return render_template(
        "uploads/upload.html",
        document_types=list(DocumentType),
        request_token=new_request_token(),
    )


@bp.post("/upload")
@require_role(Role.CLIENT, mode=GateMode.REDIRECT)
def upload_post():
    u = current_user()

    title = (request.form.get("title") or "").strip()
    description = (request.form.get("description") or "").strip()
    document_type = (request.form.get("document_type") or DocumentType.DATOS_GENERALES.value).strip()
    notes = (request.form.get("notes") or "").strip() or None
    token = (request.form.get("request_token") or "").strip() or None

    f = request.files.get("file")
    file_name = (f.filename or "") if f else ""
    max_bytes = current_app.config.get("MAX_UPLOAD_BYTES")

    # Reject bad input before any database or storage round trip.
    try:
        require_any_role(current_principal(), Role.CLIENT)
        validate_upload(title=title, document_type=document_type, file_name=file_name)
    except FinSyncError as e:
        report_error(None, e, "Upload")
        return redirect(url_for("uploads.upload_get"))

    data = f.read() if f else b""
    content_type = (f.mimetype or "application/octet-stream").strip() if f else None

    s = db_session()
    storage = storage_from_config(current_app.config)
    try:
        result = upload_document(
            s,
            storage,
            u,
            title=title,
            description=description,
            document_type=document_type,
            file_name=file_name,
            data=data,
            content_type=content_type,
            notes=notes,
            idempotency_key=token,
            max_bytes=max_bytes,
        )
    except FinSyncError as e:
        report_error(s, e, "Upload")
        return redirect(url_for("uploads.upload_get"))

    try:
        commit(s, "Upload")
    except FinSyncError as e:
        if not result.replayed:
            discard_blob(storage, result.version.file_path)
        report_error(None, e, "Upload")
        return redirect(url_for("uploads.upload_get"))

    if result.replayed:
        flash("This upload was already received.", "info")
    elif result.created_document:
        flash("File uploaded successfully. Your document has been submitted for review.", "success")
    else:
        flash(f"New version created: version {result.version.version_number} of the document.", "success")
    return redirect(url_for("uploads.upload_get"))
