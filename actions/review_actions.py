from __future__ import annotations

from typing import Any

from sqlalchemy import select

from actions.helpers import append_audit
from actions.request_actions import load_request, parse_request_type, serialize_request
from cache_layer import cache_get_or_set, user_display_key
from models import DECISION_PENDING, DECISION_STATUSES, Request, RequestDecision, User
from services.approvals import decide, load_decisions, resolve_slot
from utils import ApiError, AuthContext, iso_utc_now


QUEUE_SORTS = {"oldest", "newest", "atoz", "ztoa"}


def _user_display_name(db, user_id: str) -> str:
    uid = str(user_id or "").strip()
    if not uid:
        return ""

    def _load() -> str:
        row = db.execute(select(User.fullName, User.email).where(User.userId == uid)).first()
        if not row:
            return ""
        return str(row.fullName or "").strip() or str(row.email or "")

    return cache_get_or_set(user_display_key(uid), _load) or ""


def _display_name(db, req: Request) -> str:
    if req.type == "job_application":
        return str(req.fullName or "").strip()
    return _user_display_name(db, req.userId) or str(req.email or "")


def review_queue(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    request_type = parse_request_type(data.get("type"))
    slot = resolve_slot(request_type, auth, str(data.get("department") or ""))

    status = str(data.get("status") or DECISION_PENDING).strip().lower()
    if status != "all" and status not in DECISION_STATUSES:
        raise ApiError("INVALID_ARGUMENT", f"Invalid status: {status}")

    sort = str(data.get("sort") or "oldest").strip().lower()
    if sort not in QUEUE_SORTS:
        raise ApiError("INVALID_ARGUMENT", f"Invalid sort: {sort}")

    q = (
        select(Request)
        .join(RequestDecision, RequestDecision.requestId == Request.requestId)
        .where(Request.type == request_type)
        .where(RequestDecision.slot == slot)
        .where(RequestDecision.required.is_(True))
        .where(Request.withdrawnAt.is_(None))
    )
    if status != "all":
        q = q.where(RequestDecision.status == status)
    rows = db.execute(q.order_by(Request.createdAt.asc())).scalars().all()

    decisions = load_decisions(db, [r.requestId for r in rows])
    items: list[dict[str, Any]] = []
    for r in rows:
        item = serialize_request(r, decisions.get(r.requestId, {}))
        item["displayName"] = _display_name(db, r)
        items.append(item)

    if sort == "newest":
        items.reverse()
    elif sort in {"atoz", "ztoa"}:
        items.sort(key=lambda x: str(x["displayName"] or "").casefold(), reverse=(sort == "ztoa"))

    return {"department": slot, "status": status, "sort": sort, "items": items, "total": len(items)}


def request_decide(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    req = load_request(db, data.get("requestId"))
    slot = resolve_slot(req.type, auth, str(data.get("department") or ""))

    now = iso_utc_now()
    row = decide(db, request_id=req.requestId, slot=slot, decision=str(data.get("decision") or ""), actor_id=auth.userId, now_iso=now)
    req.updatedAt = now

    append_audit(
        db,
        entityType="REQUEST",
        entityId=req.requestId,
        action="REQUEST_DECIDE",
        stageTag=f"DECISION_{slot}",
        actor=auth,
        fromState=DECISION_PENDING,
        toState=row.status,
        at=now,
        meta={"type": req.type, "slot": slot},
    )

    decisions = load_decisions(db, [req.requestId]).get(req.requestId, {})
    return {"request": serialize_request(req, decisions)}
