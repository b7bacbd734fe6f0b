from __future__ import annotations

import pytest

import db as db_module
from app import create_app


@pytest.fixture()
def app_client(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'portal-test.db'}")
    monkeypatch.setenv("MAIL_MODE", "log")
    monkeypatch.setenv("CELERY_TASK_ALWAYS_EAGER", "1")
    monkeypatch.setenv("RATE_LIMIT_GLOBAL", "100000")
    monkeypatch.setenv("RATE_LIMIT_DEFAULT", "100000")
    monkeypatch.setenv("RATE_LIMIT_LOGIN", "100000")
    monkeypatch.setenv("SESSION_LAST_SEEN_UPDATE_SECONDS", "0")
    monkeypatch.delenv("REDIS_URL", raising=False)

    app = create_app()
    app.config["TESTING"] = True

    with app.test_client() as client:
        yield app, client

    if db_module.engine is not None:
        db_module.engine.dispose()
