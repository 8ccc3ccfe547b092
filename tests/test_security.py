from datetime import timedelta

from app.finsync.security import LoginThrottle, csrf_exempt, is_safe_next
from helpers import login


def test_is_safe_next():
    assert is_safe_next("/approvals?x=1")
    assert not is_safe_next("//evil.example.com")
    assert not is_safe_next("/\\evil.example.com")
    assert not is_safe_next("https://evil.example.com")
    assert not is_safe_next(None)


def test_csrf_exempt_covers_auth_only():
    assert csrf_exempt("auth.login_post")
    assert not csrf_exempt("approvals.approve_document")
    assert not csrf_exempt(None)


def test_login_throttle_window():
    t = LoginThrottle(limit=2, window=timedelta(minutes=5))
    assert not t.blocked("1.2.3.4")
    t.record("1.2.3.4")
    t.record("1.2.3.4")
    assert t.blocked("1.2.3.4")
    assert not t.blocked("5.6.7.8")
    t.reset("1.2.3.4")
    assert not t.blocked("1.2.3.4")


def test_repeated_bad_logins_are_throttled(client):
    for _ in range(5):
        login(client, "exec@example.com", "wrong")
    r = login(client, "exec@example.com")
    assert r.headers["Location"].endswith("/auth")
    r = client.get("/auth")
    assert b"Too many login attempts" in r.data
