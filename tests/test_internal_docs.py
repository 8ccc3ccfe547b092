import io

from app.finsync.errors import RemoteFailureError
from app.finsync.models import AuditEvent
from app.finsync.modules.documents import admin as documents_admin
from app.finsync.modules.approvals.service import approve
from app.finsync.modules.documents.service import upload_document
from helpers import csv_bytes, login, user

DATA = csv_bytes(("Name", "Amount"), ("Acme", 100))


def _upload(db, storage, doc_type="datos_generales", title="Datos"):
    result = upload_document(
        db,
        storage,
        user(db, "client@example.com"),
        title=title,
        description=None,
        document_type=doc_type,
        file_name="datos.csv",
        data=DATA,
        content_type="text/csv",
    )
    db.commit()
    return result


def test_internal_team_sees_only_approved_documents(client, db, storage):
    approved = _upload(db, storage, title="Aprobado").document
    _upload(db, storage, doc_type="solicitud_prestamo", title="Pendiente")
    approve(db, approved, user(db, "exec@example.com"))
    db.commit()

    login(client, "team@example.com")
    r = client.get("/internal-docs")
    assert r.status_code == 200
    assert b"Aprobado" in r.data
    assert b"Pendiente</td>" not in r.data

    r = client.get(f"/internal-docs/{approved.id}")
    assert r.status_code == 200
    assert b"<td>Acme</td>" in r.data


def test_internal_team_cannot_open_pending_document(client, db, storage):
    pending = _upload(db, storage).document
    login(client, "team@example.com")
    assert client.get(f"/internal-docs/{pending.id}").status_code == 404


def test_executive_downloads_any_version_and_it_is_audited(client, db, storage):
    v = _upload(db, storage).version
    login(client, "exec@example.com")
    r = client.get(f"/documents/versions/{v.id}/download")
    assert r.status_code == 200
    assert r.data == DATA
    assert "attachment" in r.headers["Content-Disposition"]
    r.close()
    db.expire_all()
    assert db.query(AuditEvent).filter(AuditEvent.action == "doc.download").count() == 1


def test_download_rules_for_other_roles(client, db, storage):
    result = _upload(db, storage)
    vid = result.version.id

    login(client, "team@example.com")
    assert client.get(f"/documents/versions/{vid}/download").status_code == 404
    client.get("/auth/logout")

    login(client, "client@example.com")
    assert client.get(f"/documents/versions/{vid}/download").status_code == 403
    client.get("/auth/logout")

    approve(db, result.document, user(db, "exec@example.com"))
    db.commit()
    login(client, "team@example.com")
    r = client.get(f"/documents/versions/{vid}/download")
    assert r.status_code == 200
    r.close()


def test_download_closes_the_blob_when_the_audit_commit_fails(client, db, storage, monkeypatch):
    v = _upload(db, storage).version
    opened = []

    class _Storage:
        def open(self, key):
            fobj = io.BytesIO(DATA)
            opened.append(fobj)
            return fobj

    def _failing_commit(s, what="Save"):
        s.rollback()
        raise RemoteFailureError(f"{what}: database error.")

    monkeypatch.setattr(documents_admin, "storage_from_config", lambda config: _Storage())
    monkeypatch.setattr(documents_admin, "commit", _failing_commit)

    login(client, "exec@example.com")
    r = client.get(f"/documents/versions/{v.id}/download")
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/approvals")
    assert len(opened) == 1 and opened[0].closed
    db.expire_all()
    assert db.query(AuditEvent).filter(AuditEvent.action == "doc.download").count() == 0
