from __future__ import annotations

import logging
from typing import Any, Callable

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import declarative_base, sessionmaker


Base = declarative_base()

engine = None

# Bound in init_engine(); importing modules keep a stable reference.
SessionLocal = sessionmaker(autoflush=False, expire_on_commit=False)

_AFTER_COMMIT_KEY = "after_commit_callbacks"

log = logging.getLogger("db")


def init_engine(database_url: str):
    global engine

    url = str(database_url or "").strip()
    connect_args: dict[str, Any] = {}
    kwargs: dict[str, Any] = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    else:
        kwargs.update(pool_size=10, max_overflow=20, pool_recycle=1800)

    engine = create_engine(url, connect_args=connect_args, **kwargs)
    SessionLocal.configure(bind=engine)
    return engine


def ping_db() -> bool:
    if engine is None:
        return False
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


def get_pool_stats() -> dict[str, Any]:
    if engine is None:
        return {}
    pool = engine.pool
    stats: dict[str, Any] = {"class": type(pool).__name__}
    for name in ("size", "checkedin", "checkedout", "overflow"):
        fn = getattr(pool, name, None)
        if callable(fn):
            try:
                stats[name] = fn()
            except Exception:
                pass
    return stats


def on_commit(db, fn: Callable[[], Any]) -> None:
    """Run `fn` once the current transaction of `db` commits; dropped on rollback."""
    db.info.setdefault(_AFTER_COMMIT_KEY, []).append(fn)


@event.listens_for(SessionLocal, "after_commit")
def _run_after_commit(session) -> None:
    callbacks = session.info.pop(_AFTER_COMMIT_KEY, [])
    for fn in callbacks:
        try:
            fn()
        except Exception:
            log.exception("after-commit callback failed")


@event.listens_for(SessionLocal, "after_rollback")
def _drop_after_commit(session) -> None:
    session.info.pop(_AFTER_COMMIT_KEY, None)
