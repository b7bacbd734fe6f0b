"""
Celery configuration and task registration.

Usage:
    celery -A app.tasks.celery_app worker --loglevel=INFO
"""
from __future__ import annotations

import os

from celery import Celery


def _env_bool(name: str, default: bool = False) -> bool:
    raw = str(os.getenv(name, "") or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def make_celery() -> Celery:
    """
    Create and configure Celery app with Redis broker.

    Environment variables:
        REDIS_URL: Redis connection URL (default: redis://localhost:6379/0)
        CELERY_RESULT_BACKEND: Optional separate result backend
        CELERY_TASK_ALWAYS_EAGER: Run tasks inline (tests, single-process dev)
    """
    redis_url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    result_backend = os.getenv("CELERY_RESULT_BACKEND", redis_url)

    app = Celery(
        "employee_portal",
        broker=redis_url,
        backend=result_backend,
        include=["app.tasks.notifications"],
    )

    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        enable_utc=True,
        result_expires=86400,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        worker_concurrency=int(os.getenv("CELERY_CONCURRENCY", "4")),
        task_default_rate_limit="100/m",
        # Notifications are fire-and-forget.
        task_max_retries=0,
        task_always_eager=_env_bool("CELERY_TASK_ALWAYS_EAGER", False),
        task_eager_propagates=False,
    )

    return app


celery_app = make_celery()


def refresh_celery_config() -> None:
    """Re-reads eager mode from the environment (app factory and tests)."""
    celery_app.conf.task_always_eager = _env_bool("CELERY_TASK_ALWAYS_EAGER", False)
