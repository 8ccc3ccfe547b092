import pytest
from werkzeug.security import generate_password_hash

from app.finsync import auth as auth_module, create_app
from app.finsync.constants import Role
from app.finsync.db import session_scope
from app.finsync.models import Base, User, UserRole
from app.finsync.storage import LocalStorage
from helpers import PASSWORD

# email -> roles
USERS = {
    "admin@example.com": (Role.ADMIN,),
    "exec@example.com": (Role.EXECUTIVE,),
    "client@example.com": (Role.CLIENT,),
    "team@example.com": (Role.INTERNAL_TEAM,),
    "bank@example.com": (Role.BANK,),
    "norole@example.com": (),
}


@pytest.fixture()
def app(tmp_path, monkeypatch):
    auth_module.login_throttle.reset()
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "MAX_UPLOAD_MB"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        for email, roles in USERS.items():
            u = User(
                email=email,
                full_name=email.split("@")[0].title(),
                password_hash=generate_password_hash(PASSWORD),
                is_active=True,
            )
            u.role_rows.extend(UserRole(role=r.value) for r in roles)
            s.add(u)

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def db(app):
    """A plain session for service-level tests; the caller commits."""
    s = app.extensions["sqlalchemy_sessionmaker"]()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture()
def storage(tmp_path):
    return LocalStorage(root=tmp_path / "storage" / "documents")
