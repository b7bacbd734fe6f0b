from __future__ import annotations

import json
import os
from typing import Any, Optional

from flask import g, has_request_context
from sqlalchemy import select

from models import AuditLog, Request
from utils import AuthContext, iso_utc_now, new_uuid, short_unique_id


def new_request_id() -> str:
    return "REQ-" + new_uuid().replace("-", "")


def correlation_id() -> str:
    if not has_request_context():
        return ""
    return str(getattr(g, "request_id", "") or "")


def append_audit(
    db,
    *,
    entityType: str,
    entityId: str,
    action: str,
    stageTag: str = "",
    actor: Optional[AuthContext] = None,
    fromState: str = "",
    toState: str = "",
    remark: str = "",
    at: str = "",
    meta: Optional[dict[str, Any]] = None,
) -> None:
    db.add(
        AuditLog(
            logId=f"LOG-{os.urandom(16).hex()}",
            entityType=str(entityType or ""),
            entityId=str(entityId or ""),
            action=str(action or ""),
            fromState=str(fromState or ""),
            toState=str(toState or ""),
            stageTag=str(stageTag or ""),
            remark=str(remark or ""),
            actorUserId=str(actor.userId) if actor else "PUBLIC",
            actorRole=str(actor.role) if actor else "PUBLIC",
            actorEmail=str(actor.email or "") if actor else "",
            at=at or iso_utc_now(),
            correlationId=correlation_id(),
            metaJson=json.dumps(meta or {}),
        )
    )


def new_unique_id(db) -> str:
    """Six-character id, retried until no request already uses it."""
    for _ in range(10):
        candidate = short_unique_id(6)
        taken = db.execute(select(Request.requestId).where(Request.uniqueId == candidate)).first()
        if not taken:
            return candidate
    return short_unique_id(6)
