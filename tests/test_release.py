import pytest

from app.finsync.config import load_config, load_settings
from app.finsync.storage import LocalStorage
from scripts import release


def _settings(monkeypatch, **env):
    for k in ("ENV", "SECRET_KEY", "DATABASE_URL", "STORAGE_BACKEND", "S3_ENDPOINT", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)
    for k, v in env.items():
        monkeypatch.setenv(k, v)
    return load_settings()


def test_preflight_passes_for_a_local_development_setup(monkeypatch):
    settings = _settings(monkeypatch, DATABASE_URL="sqlite:///dev.db")
    assert release.preflight_problems(settings, database_url_set=True) == []


def test_preflight_lists_every_production_problem(monkeypatch):
    settings = _settings(monkeypatch, ENV="production", DATABASE_URL="sqlite:///prod.db", STORAGE_BACKEND="s3")
    problems = release.preflight_problems(settings, database_url_set=True)
    assert any("sqlite" in p for p in problems)
    assert any("SECRET_KEY" in p for p in problems)
    assert any("S3_ACCESS_KEY_ID" in p for p in problems)
    assert any("S3_SECRET_ACCESS_KEY" in p for p in problems)


def test_preflight_requires_database_url(monkeypatch):
    settings = _settings(monkeypatch)
    assert release.preflight_problems(settings, database_url_set=False) == ["DATABASE_URL is not set."]


def test_blob_store_check_leaves_nothing_behind(tmp_path, monkeypatch):
    _settings(monkeypatch, STORAGE_ROOT=str(tmp_path))
    assert release.check_blob_store(load_config()) == "LocalStorage"
    assert not LocalStorage(root=tmp_path / "documents").exists(release.STORAGE_CHECK_KEY)


def test_fresh_database_has_the_initial_revision_pending(tmp_path):
    assert release.pending_revisions(f"sqlite:///{tmp_path / 'fresh.db'}") == ["a0f1c2d3e4b5"]


def test_run_release_refuses_to_start_without_database_url(monkeypatch):
    _settings(monkeypatch)
    with pytest.raises(RuntimeError, match="DATABASE_URL is not set"):
        release.run_release()


def test_start_builds_gunicorn_command_from_environment(monkeypatch):
    from scripts import start

    monkeypatch.setenv("PORT", "9000")
    monkeypatch.setenv("WEB_CONCURRENCY", "4")
    assert start._env_int("PORT", 8080, low=1, high=65535) == 9000
    argv = start.gunicorn_argv(port=9000, workers=4, timeout=120)
    assert argv[:2] == ["gunicorn", "app.wsgi:app"]
    assert argv[argv.index("--bind") + 1] == "0.0.0.0:9000"
    assert argv[argv.index("--workers") + 1] == "4"


def test_start_rejects_out_of_range_port(monkeypatch):
    from scripts import start

    monkeypatch.setenv("PORT", "70000")
    with pytest.raises(SystemExit):
        start._env_int("PORT", 8080, low=1, high=65535)
