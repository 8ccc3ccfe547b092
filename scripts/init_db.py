import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.finsync.constants import Role
from app.finsync.models import Base, User
from app.finsync.rbac import assign_role
from scripts._db_utils import create_script_engine, database_url_from_env, script_session

# One demo principal per role, created only when SEED_DEMO_USERS=1.
DEMO_USERS: tuple[tuple[Role, str, str], ...] = (
    (Role.EXECUTIVE, "ejecutivo@finsync.local", "Ejecutivo Demo"),
    (Role.CLIENT, "cliente@finsync.local", "Cliente Demo"),
    (Role.INTERNAL_TEAM, "interno@finsync.local", "Equipo Interno Demo"),
    (Role.BANK, "banco@finsync.local", "Banco Demo"),
)


def _ensure_user(s, email: str, full_name: str, password: str) -> User:
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user:
        user = User(email=email, full_name=full_name, password_hash=generate_password_hash(password), is_active=True)
        s.add(user)
        s.flush()
    return user


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the admin user (and optionally demo users) in an idempotent way.
    Does NOT overwrite an existing user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@finsync.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    seed_demo = (os.environ.get("SEED_DEMO_USERS") or "").strip() == "1"

    db_url = (database_url or database_url_from_env()).strip()

    # Direct engine/session so this can run in release without importing app.wsgi.
    with script_session(db_url) as s:
        admin = _ensure_user(s, admin_email, "Administrador", admin_password)
        assign_role(s, admin.id, Role.ADMIN)

        if seed_demo:
            demo_password = os.environ.get("DEMO_PASSWORD") or "demo1234"
            for role, email, full_name in DEMO_USERS:
                u = _ensure_user(s, email, full_name, demo_password)
                assign_role(s, u.id, role)

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")
    if seed_demo:
        print("Demo users: " + ", ".join(email for _, email, _ in DEMO_USERS))


def create_tables(database_url: str | None = None) -> None:
    """Local development shortcut; production uses `alembic upgrade head`."""
    engine = create_script_engine((database_url or database_url_from_env()).strip())
    try:
        Base.metadata.create_all(bind=engine)
    finally:
        engine.dispose()


def main() -> None:
    create_tables()
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
