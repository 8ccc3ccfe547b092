#!/usr/bin/env python3
"""
Container entry point: release phase, then gunicorn in place of this process.

Environment:
  PORT              listen port (default 8080)
  WEB_CONCURRENCY   gunicorn workers (default 2)
  GUNICORN_TIMEOUT  worker timeout in seconds (default 120; uploads and previews are read in-request)
  RELEASE_SEED      "0" skips seeding the admin and demo users
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _env_int(name: str, default: int, *, low: int, high: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise SystemExit(f"{name} must be an integer between {low} and {high} (got {raw!r}).") from None
    if not low <= value <= high:
        raise SystemExit(f"{name} must be an integer between {low} and {high} (got {raw!r}).")
    return value


def gunicorn_argv(*, port: int, workers: int, timeout: int) -> list[str]:
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", str(workers),
        "--timeout", str(timeout),
        "--graceful-timeout", "30",
        "--preload",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    port = _env_int("PORT", 8080, low=1, high=65535)
    workers = _env_int("WEB_CONCURRENCY", 2, low=1, high=64)
    timeout = _env_int("GUNICORN_TIMEOUT", 120, low=10, high=3600)
    seed = (os.environ.get("RELEASE_SEED") or "1").strip() != "0"

    from scripts.release import run_release

    try:
        run_release(seed=seed)
    except Exception as e:
        print(f"[start] release failed, not starting gunicorn: {e}", flush=True)
        sys.exit(1)

    argv = gunicorn_argv(port=port, workers=workers, timeout=timeout)
    print(f"[start] {' '.join(argv)}", flush=True)
    # gunicorn replaces this process and receives signals directly
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
