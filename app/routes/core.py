from __future__ import annotations

import logging

import redis
from flask import Blueprint, current_app, jsonify

from cache_layer import cache_stats
from db import get_pool_stats, ping_db
from utils import iso_utc_now


core_bp = Blueprint("core", __name__)

log = logging.getLogger("core")


def _ping_redis(url: str) -> bool:
    if not url:
        return True
    try:
        client = redis.from_url(url, socket_connect_timeout=2)
        return bool(client.ping())
    except redis.RedisError:
        log.warning("redis ping failed")
        return False


@core_bp.get("/health")
def health():
    cfg = current_app.config["CFG"]
    return jsonify(
        {
            "status": "ok",
            "time": iso_utc_now(),
            "version": cfg.APP_VERSION,
            "mailMode": cfg.MAIL_MODE,
            "db_pool": get_pool_stats(),
            "cache": cache_stats(),
        }
    )


@core_bp.get("/ready")
def ready():
    """
    Readiness for the load balancer: the database must answer, and the
    Celery broker too when one is configured. Degraded answers 503.
    """
    cfg = current_app.config["CFG"]
    checks = {
        "db": ping_db(),
        "redis": _ping_redis(cfg.REDIS_URL),
    }
    healthy = all(checks.values())

    body = {
        "status": "ok" if healthy else "degraded",
        "time": iso_utc_now(),
        "version": cfg.APP_VERSION,
        "checks": {name: "ok" if passed else "error" for name, passed in checks.items()},
    }
    return jsonify(body), (200 if healthy else 503)


@core_bp.get("/version")
def version():
    cfg = current_app.config["CFG"]
    return jsonify({"version": cfg.APP_VERSION, "env": cfg.ENV, "time": iso_utc_now()})
