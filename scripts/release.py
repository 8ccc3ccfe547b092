"""
FinSync release phase: preflight, schema upgrade, blob store check, seed.

  python scripts/release.py              # full release
  python scripts/release.py --check      # report problems and pending revisions, change nothing
  python scripts/release.py --skip-seed  # migrate only

Exits non-zero on the first failed stage so the deploy stops before gunicorn
starts against a half-migrated database.
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.finsync.config import Settings, load_config, load_settings
from app.finsync.errors import FinSyncError
from app.finsync.storage import storage_from_config

STORAGE_CHECK_KEY = ".release-check"


def preflight_problems(settings: Settings, *, database_url_set: bool) -> list[str]:
    problems: list[str] = []
    if not database_url_set:
        problems.append("DATABASE_URL is not set.")
    if settings.env in ("prod", "production"):
        if settings.database_url.startswith("sqlite"):
            problems.append("DATABASE_URL points at sqlite; production needs Postgres.")
        if settings.secret_key in ("", "change-me"):
            problems.append("SECRET_KEY is unset or still the default.")
        if settings.storage_backend == "s3":
            for name, value in (
                ("S3_ENDPOINT", settings.s3_endpoint),
                ("S3_BUCKET", settings.s3_bucket),
                ("S3_ACCESS_KEY_ID", settings.s3_access_key_id),
                ("S3_SECRET_ACCESS_KEY", settings.s3_secret_access_key),
            ):
                if not value:
                    problems.append(f"{name} is required for the s3 storage backend.")
    return problems


def _alembic_config(db_url: str):
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    return cfg


def pending_revisions(db_url: str) -> list[str]:
    """Revisions between the database's current head and the newest script, oldest first."""
    from alembic.runtime.migration import MigrationContext
    from alembic.script import ScriptDirectory

    from scripts._db_utils import create_script_engine

    script = ScriptDirectory.from_config(_alembic_config(db_url))
    engine = create_script_engine(db_url)
    try:
        with engine.connect() as conn:
            current = MigrationContext.configure(conn).get_current_heads()
    finally:
        engine.dispose()

    pending = [rev.revision for rev in script.iterate_revisions(script.get_heads(), current or "base")]
    pending.reverse()
    return pending


def check_blob_store(config: dict) -> str:
    """Round-trip a marker object so a misconfigured bucket fails the release, not the first upload."""
    storage = storage_from_config(config)
    storage.put_bytes(STORAGE_CHECK_KEY, b"ok", content_type="text/plain")
    try:
        if storage.get_bytes(STORAGE_CHECK_KEY) != b"ok":
            raise RuntimeError("Blob store returned different bytes than were written.")
    finally:
        storage.delete(STORAGE_CHECK_KEY)
    return type(storage).__name__


def run_release(*, seed: bool = True) -> None:
    settings = load_settings()
    problems = preflight_problems(settings, database_url_set=bool((os.environ.get("DATABASE_URL") or "").strip()))
    if problems:
        raise RuntimeError("Release preflight failed:\n  - " + "\n  - ".join(problems))

    db_url = settings.database_url
    print(f"[release] env={settings.env} storage={settings.storage_backend}", flush=True)

    pending = pending_revisions(db_url)
    if pending:
        from alembic import command

        print(f"[release] applying {len(pending)} revision(s): {', '.join(pending)}", flush=True)
        command.upgrade(_alembic_config(db_url), "head")
    else:
        print("[release] schema already at head", flush=True)

    try:
        backend = check_blob_store(load_config())
    except FinSyncError as e:
        raise RuntimeError(f"Blob store check failed: {e}") from e
    print(f"[release] blob store ok ({backend})", flush=True)

    if seed:
        from scripts import init_db

        init_db.seed_only(database_url=db_url)
    print("[release] done", flush=True)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the FinSync release phase.")
    parser.add_argument("--check", action="store_true", help="Report problems and pending revisions only.")
    parser.add_argument("--skip-seed", action="store_true", help="Do not seed the admin and demo users.")
    args = parser.parse_args()

    if args.check:
        settings = load_settings()
        problems = preflight_problems(settings, database_url_set=bool((os.environ.get("DATABASE_URL") or "").strip()))
        for p in problems:
            print(f"problem: {p}")
        pending = pending_revisions(settings.database_url)
        for rev in pending:
            print(f"pending: {rev}")
        sys.exit(1 if problems or pending else 0)

    run_release(seed=not args.skip_seed)


if __name__ == "__main__":
    main()
