from flask import Blueprint, render_template

from app.finsync.audit import recent_events
from app.finsync.constants import Role
from app.finsync.db import db_session
from app.finsync.modules.documents.service import document_stats, list_documents
from app.finsync.rbac import GateMode, current_principal, require_role

bp = Blueprint("dashboard", __name__)


@bp.get("/dashboard")
@require_role(Role.CLIENT, mode=GateMode.EXCLUDE)
def index():
    # Clients have their own upload screen and never see the shared dashboard.
    s = db_session()
    ctx = current_principal()
    docs = list_documents(s)
    activity = recent_events(s, action_prefix="doc.", limit=15) if ctx.has_role(Role.ADMIN) else []
    return render_template(
        "dashboard/index.html",
        roles=sorted(ctx.roles, key=lambda r: r.value),
        documents=docs[:10],
        stats=document_stats(docs),
        activity=activity,
    )
