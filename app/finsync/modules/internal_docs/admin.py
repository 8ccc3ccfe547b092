"""
Internal team view: the approved documents only.
"""

from __future__ import annotations

from flask import Blueprint, abort, current_app, render_template

from app.finsync.constants import DocumentStatus, Role
from app.finsync.db import db_session
from app.finsync.errors import FinSyncError
from app.finsync.modules.documents.models import Document
from app.finsync.modules.documents.service import list_documents, preview_latest_version
from app.finsync.rbac import GateMode, require_role
from app.finsync.storage import storage_from_config
from app.finsync.utils import report_error

bp = Blueprint("internal_docs", __name__)


@bp.get("/internal-docs")
@require_role(Role.INTERNAL_TEAM, mode=GateMode.REDIRECT)
def internal_docs_list():
    s = db_session()
    docs = list_documents(s, status=DocumentStatus.APPROVED)
    return render_template(
        "internal_docs/list.html",
        documents=docs,
    )


@bp.get("/internal-docs/<int:doc_id>")
@require_role(Role.INTERNAL_TEAM, mode=GateMode.REDIRECT)
def internal_doc_detail(doc_id: int):
    s = db_session()
    d = s.get(Document, doc_id)
    if not d or d.status != DocumentStatus.APPROVED.value:
        abort(404)

    version = None
    preview = None
    try:
        version, preview = preview_latest_version(
            s, storage_from_config(current_app.config), d, max_rows=current_app.config.get("PREVIEW_MAX_ROWS")
        )
    except FinSyncError as e:
        report_error(None, e, "Preview")

    return render_template(
        "internal_docs/detail.html",
        document=d,
        version=version,
        preview=preview,
    )
