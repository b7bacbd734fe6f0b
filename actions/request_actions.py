from __future__ import annotations

import json
import re
from typing import Any, Optional
from urllib.parse import urlparse

from sqlalchemy import func, select

from actions.helpers import append_audit, new_request_id, new_unique_id
from models import REQUEST_TYPES, SLOT_APPLICATION, SLOT_HR, SLOT_IT, Request, RequestDecision
from services.approvals import all_required_pending, claim_request, create_decision_slots, load_decisions, serialize_decision
from services.eligibility import assert_eligible, check_eligibility
from services.notifications import queue_job_application_ack
from utils import ApiError, AuthContext, is_valid_email, iso_utc_now, normalize_email, normalize_role, parse_date_maybe, utc_now


MAX_FULLNAME = 200
MAX_PHONE = 15
MAX_DETAILS = 1000
MAX_REASON = 2000
MAX_ADDITIONAL_FILES = 3
MAX_SYSTEMS = 20

PHONE_RE = re.compile(r"^\+?\d+$")

RESIGNATION_TYPES = ("Voluntary", "Forced/Termination", "Retirement", "Probation Dropout")

WITHDRAWABLE_TYPES = {"exception_request", "resignation"}

STAFF_ROLES = {"hr", "it", "admin"}


def parse_request_type(value: Any, *, required: bool = True) -> str:
    t = str(value or "").strip().lower()
    if not t:
        if required:
            raise ApiError("INVALID_ARGUMENT", "type is required")
        return ""
    if t not in REQUEST_TYPES:
        raise ApiError("INVALID_ARGUMENT", f"Invalid type: {t}")
    return t


def _is_http_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def _parse_additional_files(value: Any) -> list[dict[str, str]]:
    if value in (None, ""):
        return []
    if not isinstance(value, list):
        raise ApiError("INVALID_ARGUMENT", "additionalFiles must be a list")
    if len(value) > MAX_ADDITIONAL_FILES:
        raise ApiError("INVALID_ARGUMENT", f"At most {MAX_ADDITIONAL_FILES} additional files are allowed")

    out: list[dict[str, str]] = []
    for item in value:
        if not isinstance(item, dict):
            raise ApiError("INVALID_ARGUMENT", "Each additional file must be an object with name and url")
        name = str(item.get("name") or "").strip()
        url = str(item.get("url") or "").strip()
        if not name or not _is_http_url(url):
            raise ApiError("INVALID_ARGUMENT", "Each additional file needs a name and an http(s) url")
        out.append({"name": name, "url": url})
    return out


def _load_json_list(raw: str) -> list:
    try:
        val = json.loads(raw or "[]")
    except ValueError:
        return []
    return val if isinstance(val, list) else []


def serialize_request(req: Request, decisions: dict[str, RequestDecision]) -> dict[str, Any]:
    out: dict[str, Any] = {
        "requestId": req.requestId,
        "uniqueId": req.uniqueId,
        "type": req.type,
        "userId": req.userId,
        "email": req.email,
        "createdAt": req.createdAt,
        "updatedAt": req.updatedAt or req.createdAt,
        "approvalStatus": {slot: serialize_decision(row) for slot, row in sorted(decisions.items())},
    }

    if req.type == "job_application":
        app_slot = decisions.get(SLOT_APPLICATION)
        out.update(
            fullName=req.fullName,
            phone=req.phone,
            details=req.details,
            resumeUrl=req.resumeUrl,
            resumeOriginalName=req.resumeOriginalName,
            additionalFiles=_load_json_list(req.additionalFilesJson),
            status=app_slot.status if app_slot else "pending",
            lastUpdatedBy=app_slot.decisionBy if app_slot else None,
            lastUpdate=app_slot.lastUpdated if app_slot else None,
        )
    elif req.type == "exception_request":
        out.update(
            systemsNeeded=_load_json_list(req.systemsNeededJson),
            reason=req.reason,
            startDate=req.startDate,
            endDate=req.endDate or None,
            additionalFiles=_load_json_list(req.additionalFilesJson),
        )
    elif req.type == "resignation":
        out.update(
            reason=req.reason,
            lastWorkingDay=req.lastWorkingDay,
            resignationType=req.resignationType,
            noticeAcknowledged=bool(req.noticeAcknowledged),
            comments=req.comments,
        )
    return out


def serialize_requests(db, rows: list[Request]) -> list[dict[str, Any]]:
    decisions = load_decisions(db, [r.requestId for r in rows])
    return [serialize_request(r, decisions.get(r.requestId, {})) for r in rows]


def load_request(db, request_id: Any) -> Request:
    rid = str(request_id or "").strip()
    if not rid:
        raise ApiError("INVALID_ARGUMENT", "requestId is required")
    req = db.get(Request, rid)
    if not req or req.withdrawnAt:
        raise ApiError("NOT_FOUND", "Request not found")
    return req


def _new_request(db, *, request_type: str, user_id: Optional[str], email: str, now: str, **fields) -> Request:
    req = Request(
        requestId=new_request_id(),
        uniqueId=new_unique_id(db),
        type=request_type,
        userId=user_id,
        email=email,
        createdAt=now,
        updatedAt=now,
        **fields,
    )
    db.add(req)
    return req


def job_application_submit(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    full_name = str(data.get("fullName") or "").strip()
    phone = str(data.get("phone") or "").strip()
    details = str(data.get("details") or "").strip()
    resume_url = str(data.get("resumeUrl") or "").strip()
    resume_name = str(data.get("resumeOriginalName") or "").strip()

    signed_in = bool(auth and auth.valid)
    email = normalize_email(data.get("email") or (auth.email if signed_in else ""))

    if not full_name:
        raise ApiError("INVALID_ARGUMENT", "Full Name is required")
    if len(full_name) > MAX_FULLNAME:
        raise ApiError("INVALID_ARGUMENT", f"Full Name cannot exceed {MAX_FULLNAME} characters")
    if not email:
        raise ApiError("INVALID_ARGUMENT", "Email is required")
    if not is_valid_email(email):
        raise ApiError("INVALID_ARGUMENT", "Invalid email")
    if not PHONE_RE.match(phone) or len(phone) > MAX_PHONE:
        raise ApiError("INVALID_ARGUMENT", "Enter a valid phone number with country code")
    if len(details) > MAX_DETAILS:
        raise ApiError("INVALID_ARGUMENT", f"Additional Details cannot exceed {MAX_DETAILS} characters")
    if not _is_http_url(resume_url):
        raise ApiError("INVALID_ARGUMENT", "resumeUrl must be an http(s) url")
    files = _parse_additional_files(data.get("additionalFiles"))

    user_id = auth.userId if signed_in else None
    if user_id:
        assert_eligible(db, user_id=user_id, request_type="job_application", now=utc_now(), cfg=cfg)

    now = iso_utc_now()
    req = _new_request(
        db,
        request_type="job_application",
        user_id=user_id,
        email=email,
        now=now,
        fullName=full_name,
        phone=phone,
        details=details,
        resumeUrl=resume_url,
        resumeOriginalName=resume_name,
        additionalFilesJson=json.dumps(files),
    )
    decisions = create_decision_slots(db, request_id=req.requestId, request_type="job_application")

    append_audit(
        db,
        entityType="REQUEST",
        entityId=req.requestId,
        action="JOB_APPLICATION_SUBMIT",
        stageTag="REQUEST_SUBMIT",
        actor=auth if signed_in else None,
        toState="pending",
        at=now,
        meta={"type": req.type, "uniqueId": req.uniqueId},
    )
    queue_job_application_ack(db, req)

    return {"request": serialize_request(req, {d.slot: d for d in decisions})}


def exception_request_submit(data, auth: AuthContext | None, db, cfg):
    data = data or {}

    raw_systems = data.get("systemsNeeded")
    if not isinstance(raw_systems, list):
        raise ApiError("INVALID_ARGUMENT", "systemsNeeded must be a list")
    systems: list[str] = []
    for s in raw_systems:
        name = str(s or "").strip()
        if name and name not in systems:
            systems.append(name)
    if not systems:
        raise ApiError("INVALID_ARGUMENT", "Select at least one system")
    if len(systems) > MAX_SYSTEMS:
        raise ApiError("INVALID_ARGUMENT", "Too many systems")

    reason = str(data.get("reason") or "").strip()
    if not reason:
        raise ApiError("INVALID_ARGUMENT", "Please provide a reason")
    if len(reason) > MAX_REASON:
        raise ApiError("INVALID_ARGUMENT", f"Reason cannot exceed {MAX_REASON} characters")

    today = utc_now().date()
    start = parse_date_maybe(data.get("startDate"))
    if not start:
        raise ApiError("INVALID_ARGUMENT", "startDate is required (YYYY-MM-DD)")
    if start < today:
        raise ApiError("INVALID_ARGUMENT", "Start date cannot be in the past")

    end = None
    if str(data.get("endDate") or "").strip():
        end = parse_date_maybe(data.get("endDate"))
        if not end:
            raise ApiError("INVALID_ARGUMENT", "Invalid endDate (YYYY-MM-DD)")
        if end < start:
            raise ApiError("INVALID_ARGUMENT", "End date cannot be before start date")

    require_hr = bool(data.get("requireHR"))
    require_it = bool(data.get("requireIT"))
    if not require_hr and not require_it:
        raise ApiError("INVALID_ARGUMENT", "Select at least one approving department")

    files = _parse_additional_files(data.get("additionalFiles"))

    assert_eligible(db, user_id=auth.userId, request_type="exception_request", now=utc_now(), cfg=cfg)

    now = iso_utc_now()
    req = _new_request(
        db,
        request_type="exception_request",
        user_id=auth.userId,
        email=auth.email,
        now=now,
        systemsNeededJson=json.dumps(systems),
        reason=reason,
        startDate=start.isoformat(),
        endDate=end.isoformat() if end else None,
        additionalFilesJson=json.dumps(files),
    )
    decisions = create_decision_slots(
        db,
        request_id=req.requestId,
        request_type="exception_request",
        required={SLOT_HR: require_hr, SLOT_IT: require_it},
    )

    append_audit(
        db,
        entityType="REQUEST",
        entityId=req.requestId,
        action="EXCEPTION_REQUEST_SUBMIT",
        stageTag="REQUEST_SUBMIT",
        actor=auth,
        toState="pending",
        at=now,
        meta={"type": req.type, "requireHR": require_hr, "requireIT": require_it},
    )

    return {"request": serialize_request(req, {d.slot: d for d in decisions})}


def resignation_submit(data, auth: AuthContext | None, db, cfg):
    data = data or {}

    last_day = parse_date_maybe(data.get("lastWorkingDay"))
    if not last_day:
        raise ApiError("INVALID_ARGUMENT", "lastWorkingDay is required (YYYY-MM-DD)")
    if last_day < utc_now().date():
        raise ApiError("INVALID_ARGUMENT", "Last working day cannot be in the past")

    if data.get("noticeAcknowledged") is not True:
        raise ApiError("INVALID_ARGUMENT", "The notice period must be acknowledged")

    resignation_type = str(data.get("resignationType") or "").strip()
    if resignation_type not in RESIGNATION_TYPES:
        raise ApiError("INVALID_ARGUMENT", f"resignationType must be one of: {', '.join(RESIGNATION_TYPES)}")

    reason = str(data.get("reason") or "").strip() or "Personal"
    comments = str(data.get("comments") or "").strip()
    if len(reason) > MAX_REASON or len(comments) > MAX_REASON:
        raise ApiError("INVALID_ARGUMENT", f"Text fields cannot exceed {MAX_REASON} characters")

    assert_eligible(db, user_id=auth.userId, request_type="resignation", now=utc_now(), cfg=cfg)

    now = iso_utc_now()
    req = _new_request(
        db,
        request_type="resignation",
        user_id=auth.userId,
        email=auth.email,
        now=now,
        reason=reason,
        lastWorkingDay=last_day.isoformat(),
        resignationType=resignation_type,
        noticeAcknowledged=True,
        comments=comments,
    )
    decisions = create_decision_slots(db, request_id=req.requestId, request_type="resignation")

    append_audit(
        db,
        entityType="REQUEST",
        entityId=req.requestId,
        action="RESIGNATION_SUBMIT",
        stageTag="REQUEST_SUBMIT",
        actor=auth,
        toState="pending",
        at=now,
        meta={"type": req.type, "resignationType": resignation_type},
    )

    return {"request": serialize_request(req, {d.slot: d for d in decisions})}


def my_requests_list(data, auth: AuthContext | None, db, cfg):
    request_type = parse_request_type((data or {}).get("type"), required=False)

    q = select(Request).where(Request.userId == auth.userId).where(Request.withdrawnAt.is_(None))
    if request_type:
        q = q.where(Request.type == request_type)
    rows = db.execute(q.order_by(Request.createdAt.desc())).scalars().all()

    return {"items": serialize_requests(db, rows), "total": len(rows)}


def request_get(data, auth: AuthContext | None, db, cfg):
    req = load_request(db, (data or {}).get("requestId"))

    if normalize_role(auth.role) not in STAFF_ROLES and req.userId != auth.userId:
        raise ApiError("FORBIDDEN", "Not allowed to view this request", http_status=403)

    decisions = load_decisions(db, [req.requestId]).get(req.requestId, {})
    return {"request": serialize_request(req, decisions)}


def request_withdraw(data, auth: AuthContext | None, db, cfg):
    req = load_request(db, (data or {}).get("requestId"))

    if req.userId != auth.userId:
        raise ApiError("FORBIDDEN", "Only the owner can withdraw a request", http_status=403)
    if req.type not in WITHDRAWABLE_TYPES:
        raise ApiError("FAILED_PRECONDITION", f"{req.type} requests cannot be withdrawn")

    request_id = req.requestId
    now = iso_utc_now()
    # Stamp first, then read the slots: a decision that won the row lock is visible here.
    claim_request(db, request_id, now, withdrawnAt=now)

    decisions = load_decisions(db, [request_id]).get(request_id, {})
    if not all_required_pending(decisions):
        raise ApiError("FAILED_PRECONDITION", "A decision has already been recorded; the request can no longer be withdrawn")

    append_audit(
        db,
        entityType="REQUEST",
        entityId=request_id,
        action="REQUEST_WITHDRAW",
        stageTag="REQUEST_WITHDRAW",
        actor=auth,
        fromState="pending",
        toState="withdrawn",
        at=now,
        meta={"type": req.type},
    )
    return {"requestId": request_id, "withdrawn": True, "withdrawnAt": now}


def eligibility_get(data, auth: AuthContext | None, db, cfg):
    request_type = parse_request_type((data or {}).get("type"))
    result = check_eligibility(db, user_id=auth.userId, request_type=request_type, now=utc_now(), cfg=cfg)
    return result.to_dict()


def application_status_check(data, auth: AuthContext | None, db, cfg):
    email = normalize_email((data or {}).get("email"))
    if not email:
        raise ApiError("INVALID_ARGUMENT", "Email is required")

    req = (
        db.execute(
            select(Request)
            .where(Request.type == "job_application")
            .where(Request.withdrawnAt.is_(None))
            .where(func.lower(Request.email) == email)
            .order_by(Request.createdAt.desc())
            .limit(1)
        )
        .scalars()
        .first()
    )
    if not req:
        raise ApiError("NOT_FOUND", "No application found for this email")

    slot = load_decisions(db, [req.requestId]).get(req.requestId, {}).get(SLOT_APPLICATION)
    return {
        "requestId": req.requestId,
        "uniqueId": req.uniqueId,
        "fullName": req.fullName,
        "createdAt": req.createdAt,
        "status": slot.status if slot else "pending",
        "lastUpdate": slot.lastUpdated if slot else None,
    }


def requests_list_all(data, auth: AuthContext | None, db, cfg):
    request_type = parse_request_type((data or {}).get("type"), required=False)

    q = select(Request).where(Request.withdrawnAt.is_(None))
    if request_type:
        q = q.where(Request.type == request_type)
    rows = db.execute(q.order_by(Request.createdAt.desc())).scalars().all()

    return {"items": serialize_requests(db, rows), "total": len(rows)}
