from app.finsync.db import session_scope
from app.finsync.modules.documents.service import create_document
from helpers import login, user


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert r.json["database"] == "ok"


def test_healthz_ok(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_root_sends_to_sign_in(client):
    r = client.get("/", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/auth")


def test_anonymous_is_sent_to_sign_in_with_next(client):
    r = client.get("/approvals", follow_redirects=False)
    assert r.status_code == 302
    assert "/auth?next=" in r.headers["Location"]
    assert "approvals" in r.headers["Location"]


def test_login_lands_each_role_on_its_screen(client):
    landing = {
        "exec@example.com": "/approvals",
        "client@example.com": "/upload",
        "team@example.com": "/internal-docs",
        "admin@example.com": "/dashboard",
        "bank@example.com": "/dashboard",
        "norole@example.com": "/dashboard",
    }
    for email, path in landing.items():
        r = login(client, email)
        assert r.status_code == 302, email
        assert r.headers["Location"].endswith(path), email
        client.get("/auth/logout")


def test_landing_pages_render(client):
    for email, path in (
        ("exec@example.com", "/approvals"),
        ("client@example.com", "/upload"),
        ("team@example.com", "/internal-docs"),
        ("admin@example.com", "/dashboard"),
    ):
        login(client, email)
        r = client.get(path)
        assert r.status_code == 200, path
        client.get("/auth/logout")


def test_unknown_page_is_404(client):
    r = client.get("/no-such-page")
    assert r.status_code == 404


def test_admin_dashboard_shows_document_activity(client, app):
    with session_scope(app) as s:
        create_document(s, "Solicitud", None, "solicitud_prestamo", user(s, "client@example.com"))

    login(client, "admin@example.com")
    r = client.get("/dashboard")
    assert r.status_code == 200
    assert b"doc.create" in r.data
    assert b"Solicitud" in r.data
