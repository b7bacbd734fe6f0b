from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import select, update

from models import (
    DECISION_ACCEPTED,
    DECISION_PENDING,
    DECISION_REJECTED,
    SLOT_APPLICATION,
    SLOT_HR,
    SLOT_IT,
    Request,
    RequestDecision,
)
from utils import ApiError, AuthContext, normalize_role


FINAL_DECISIONS = {DECISION_ACCEPTED, DECISION_REJECTED}

_ROLE_DEPARTMENT = {"hr": SLOT_HR, "it": SLOT_IT}


def slots_for_type(request_type: str) -> tuple[str, ...]:
    if request_type == "job_application":
        return (SLOT_APPLICATION,)
    if request_type == "exception_request":
        return (SLOT_HR, SLOT_IT)
    if request_type == "resignation":
        return (SLOT_HR,)
    raise ApiError("INVALID_ARGUMENT", f"Unknown request type: {request_type}")


def create_decision_slots(db, *, request_id: str, request_type: str, required: dict[str, bool] | None = None) -> list[RequestDecision]:
    required = required or {}
    rows = [
        RequestDecision(
            requestId=request_id,
            slot=slot,
            required=bool(required.get(slot, True)),
            status=DECISION_PENDING,
            decisionBy=None,
            lastUpdated=None,
        )
        for slot in slots_for_type(request_type)
    ]
    db.add_all(rows)
    return rows


def load_decisions(db, request_ids: Iterable[str]) -> dict[str, dict[str, RequestDecision]]:
    ids = [str(x) for x in request_ids if x]
    out: dict[str, dict[str, RequestDecision]] = {rid: {} for rid in ids}
    if not ids:
        return out
    rows = (
        db.execute(
            select(RequestDecision)
            .where(RequestDecision.requestId.in_(ids))
            .execution_options(populate_existing=True)
        )
        .scalars()
        .all()
    )
    for row in rows:
        out.setdefault(row.requestId, {})[row.slot] = row
    return out


def serialize_decision(row: RequestDecision) -> dict[str, Any]:
    return {
        "required": bool(row.required),
        "status": str(row.status or DECISION_PENDING),
        "decisionBy": row.decisionBy or None,
        "lastUpdated": row.lastUpdated or None,
    }


def resolve_slot(request_type: str, auth: AuthContext, department: str = "") -> str:
    """
    Picks the decision slot a reviewer acts on.

    Job applications have a single slot. For department slots, HR and IT
    reviewers act for their own department; admins must name one.
    """

    if request_type == "job_application":
        return SLOT_APPLICATION

    allowed = set(slots_for_type(request_type))
    role = normalize_role(auth.role)
    dep = str(department or "").strip().upper()

    if role in _ROLE_DEPARTMENT:
        own = _ROLE_DEPARTMENT[role]
        if dep and dep != own:
            raise ApiError("FORBIDDEN", f"{role.upper()} reviewers cannot decide for {dep}", http_status=403)
        dep = own
    elif role == "admin":
        if not dep:
            raise ApiError("INVALID_ARGUMENT", "department is required")
    else:
        raise ApiError("FORBIDDEN", "Not a reviewer", http_status=403)

    if dep not in allowed:
        raise ApiError("INVALID_ARGUMENT", f"{request_type} has no {dep} approval")
    return dep


def claim_request(db, request_id: str, now_iso: str, **values: Any) -> None:
    """
    Stamps the request row before anything reads its decision slots.

    Decisions and withdrawals both go through here, so on the same request
    they serialize on the row lock. Withdrawn requests cannot be claimed.
    """

    res = db.execute(
        update(Request)
        .where(Request.requestId == request_id)
        .where(Request.withdrawnAt.is_(None))
        .values(updatedAt=now_iso, **values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 1:
        return

    exists = db.execute(select(Request.requestId).where(Request.requestId == request_id)).scalar_one_or_none()
    if not exists:
        raise ApiError("NOT_FOUND", "Request not found")
    raise ApiError("FAILED_PRECONDITION", "Request has been withdrawn")


def decide(db, *, request_id: str, slot: str, decision: str, actor_id: str, now_iso: str) -> RequestDecision:
    """
    Moves one slot from pending to a final decision.

    The write is a conditional UPDATE on `status='pending' AND required`, so two
    reviewers racing on the same slot cannot both win; the loser sees the lock.
    """

    decision_l = str(decision or "").strip().lower()
    if decision_l not in FINAL_DECISIONS:
        raise ApiError("INVALID_ARGUMENT", "decision must be 'accepted' or 'rejected'")

    claim_request(db, request_id, now_iso)

    res = db.execute(
        update(RequestDecision)
        .where(RequestDecision.requestId == request_id)
        .where(RequestDecision.slot == slot)
        .where(RequestDecision.required.is_(True))
        .where(RequestDecision.status == DECISION_PENDING)
        .values(status=decision_l, decisionBy=actor_id, lastUpdated=now_iso)
        .execution_options(synchronize_session=False)
    )

    # populate_existing: an instance loaded earlier in this session may predate the UPDATE.
    row = (
        db.execute(
            select(RequestDecision)
            .where(RequestDecision.requestId == request_id)
            .where(RequestDecision.slot == slot)
            .execution_options(populate_existing=True)
        )
        .scalars()
        .first()
    )
    if res.rowcount == 1 and row is not None:
        return row

    if row is None:
        raise ApiError("NOT_FOUND", f"No {slot} approval on this request")
    if not row.required:
        raise ApiError("FAILED_PRECONDITION", f"{slot} approval is not required for this request")
    raise ApiError("FAILED_PRECONDITION", f"{slot} decision already recorded as {row.status}")


def all_required_pending(decisions: dict[str, RequestDecision]) -> bool:
    return all(
        d.status == DECISION_PENDING and not d.decisionBy and not d.lastUpdated for d in decisions.values() if d.required
    )
