from flask import Blueprint, abort, current_app, redirect, request, send_file, url_for

from app.finsync.audit import record_event
from app.finsync.constants import DocumentStatus, Role
from app.finsync.db import commit, db_session
from app.finsync.errors import FinSyncError, NotFoundError
from app.finsync.modules.documents.models import DocumentVersion
from app.finsync.rbac import GateMode, current_principal, landing_endpoint, require_role
from app.finsync.storage import storage_from_config
from app.finsync.utils import current_user, report_error

bp = Blueprint("documents", __name__)


@bp.get("/documents/versions/<int:version_id>/download")
@require_role(Role.EXECUTIVE, Role.INTERNAL_TEAM, Role.ADMIN, mode=GateMode.DENY)
def download_version(version_id: int):
    s = db_session()
    u = current_user()
    v = s.get(DocumentVersion, version_id)
    if not v:
        abort(404)
    d = v.document

    # The internal team only sees approved documents.
    ctx = current_principal()
    if not ctx.has_any_role((Role.EXECUTIVE, Role.ADMIN)) and d.status != DocumentStatus.APPROVED.value:
        abort(404)

    storage = storage_from_config(current_app.config)
    try:
        fobj = storage.open(v.file_path)
    except NotFoundError:
        current_app.logger.error("Blob missing for version_id=%s key=%s", v.id, v.file_path)
        abort(404)

    record_event(
        s,
        actor=u,
        action="doc.download",
        entity_type="DocumentVersion",
        entity_id=str(v.id),
        metadata={"doc_id": d.id, "version_number": v.version_number, "file_name": v.file_name},
    )
    try:
        commit(s, "Download")
    except FinSyncError as e:
        fobj.close()
        report_error(None, e, "Download")
        return redirect(request.referrer or url_for(landing_endpoint(ctx.roles)))

    return send_file(
        fobj,
        mimetype=v.content_type or "application/octet-stream",
        as_attachment=True,
        download_name=v.file_name,
        max_age=0,
    )
