from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import delete, func, or_, select

from actions.helpers import append_audit
from cache_layer import invalidate_user_display
from models import AuthAccount, Request, RequestDecision, Session as DbSession, User, VerificationCode
from services.user_import import load_user_import
from utils import (
    ApiError,
    AuthContext,
    decode_base64_to_bytes,
    iso_utc_now,
    is_valid_email,
    normalize_email,
    normalize_role,
)


def _serialize_user(u: User) -> dict[str, Any]:
    return {
        "userId": u.userId,
        "email": u.email,
        "fullName": u.fullName or "",
        "role": normalize_role(u.role),
        "status": u.status or "",
        "firstLoginDone": bool(u.firstLoginDone),
        "createdAt": u.createdAt or "",
        "lastLoginAt": u.lastLoginAt or "",
    }


def _find_user(db, *, user_id: str = "", email: str = "") -> Optional[User]:
    if user_id:
        found = db.get(User, user_id)
        if found:
            return found
    email_lc = normalize_email(email)
    if email_lc:
        return db.execute(select(User).where(func.lower(User.email) == email_lc)).scalars().first()
    return None


def _upsert_user(db, *, email: str, full_name: str, role: str, actor: AuthContext, now: str) -> tuple[User, bool]:
    """Merges by email; new users are keyed by the email address and start as neverLoggedIn."""

    user = _find_user(db, email=email)
    created = user is None
    if created:
        user = User(
            userId=email,
            email=email,
            fullName=full_name,
            role=role,
            status="neverLoggedIn",
            firstLoginDone=False,
            lastLoginAt="",
            createdAt=now,
            createdBy=actor.userId,
            updatedAt=now,
            updatedBy=actor.userId,
        )
        db.add(user)
    else:
        user.fullName = full_name
        user.role = role
        user.updatedAt = now
        user.updatedBy = actor.userId

    invalidate_user_display(user.userId)
    return user, created


def users_list(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    role = normalize_role(data.get("role"))
    search = str(data.get("search") or "").strip().lower()

    q = select(User)
    if role:
        q = q.where(User.role == role)
    if search:
        like = f"%{search}%"
        q = q.where(or_(func.lower(User.email).like(like), func.lower(User.fullName).like(like)))
    rows = db.execute(q.order_by(User.email.asc())).scalars().all()

    return {"items": [_serialize_user(u) for u in rows], "total": len(rows)}


def user_add(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    email = normalize_email(data.get("email"))
    full_name = str(data.get("fullName") or "").strip()
    role = normalize_role(data.get("role"))
    confirm_replace = data.get("confirmReplace") is True

    if not is_valid_email(email):
        raise ApiError("INVALID_ARGUMENT", "Invalid email")
    if not full_name:
        raise ApiError("INVALID_ARGUMENT", "Full name is required")
    if not role:
        raise ApiError("INVALID_ARGUMENT", "role must be one of: employee, hr, it, admin")

    existing = _find_user(db, email=email)
    if existing and normalize_role(existing.role) != role:
        policy = cfg.SINGLE_ROLE_CONFLICT_POLICY
        if policy == "skip":
            return {"user": _serialize_user(existing), "created": False, "skipped": True}
        if policy == "confirm" and not confirm_replace:
            raise ApiError(
                "ROLE_CONFLICT",
                f"{email} already exists with role {normalize_role(existing.role)}. Resend with confirmReplace=true to change it to {role}.",
            )

    now = iso_utc_now()
    from_role = normalize_role(existing.role) if existing else ""
    user, created = _upsert_user(db, email=email, full_name=full_name, role=role, actor=auth, now=now)

    append_audit(
        db,
        entityType="USER",
        entityId=user.userId,
        action="USER_ADD",
        stageTag="USER_ADMIN",
        actor=auth,
        fromState=from_role,
        toState=role,
        at=now,
        meta={"email": email, "created": created},
    )
    return {"user": _serialize_user(user), "created": created, "skipped": False}


def user_update(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    user = _find_user(db, user_id=str(data.get("userId") or "").strip(), email=str(data.get("email") or ""))
    if not user:
        raise ApiError("NOT_FOUND", "User not found")

    from_role = normalize_role(user.role)
    changed: dict[str, Any] = {}

    if "fullName" in data:
        full_name = str(data.get("fullName") or "").strip()
        if not full_name:
            raise ApiError("INVALID_ARGUMENT", "Full name cannot be blank")
        user.fullName = full_name
        changed["fullName"] = full_name

    if "role" in data:
        role = normalize_role(data.get("role"))
        if not role:
            raise ApiError("INVALID_ARGUMENT", "role must be one of: employee, hr, it, admin")
        user.role = role
        changed["role"] = role

    if not changed:
        raise ApiError("INVALID_ARGUMENT", "Nothing to update")

    now = iso_utc_now()
    user.updatedAt = now
    user.updatedBy = auth.userId
    invalidate_user_display(user.userId)

    append_audit(
        db,
        entityType="USER",
        entityId=user.userId,
        action="USER_UPDATE",
        stageTag="USER_ADMIN",
        actor=auth,
        fromState=from_role,
        toState=normalize_role(user.role),
        at=now,
        meta=changed,
    )
    return {"user": _serialize_user(user)}


def user_delete(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    user = _find_user(db, user_id=str(data.get("userId") or "").strip(), email=str(data.get("email") or ""))
    if not user:
        raise ApiError("NOT_FOUND", "User not found")
    if user.userId == auth.userId:
        raise ApiError("FAILED_PRECONDITION", "You cannot delete your own account")

    user_id = user.userId
    email = normalize_email(user.email)

    request_ids = db.execute(select(Request.requestId).where(Request.userId == user_id)).scalars().all()
    if request_ids:
        db.execute(delete(RequestDecision).where(RequestDecision.requestId.in_(request_ids)))
        db.execute(delete(Request).where(Request.requestId.in_(request_ids)))

    accounts = db.execute(delete(AuthAccount).where(func.lower(AuthAccount.email) == email)).rowcount
    sessions = db.execute(delete(DbSession).where(DbSession.userId == user_id)).rowcount
    db.execute(delete(VerificationCode).where(VerificationCode.key.in_([user_id, email])))
    db.delete(user)
    invalidate_user_display(user_id)

    append_audit(
        db,
        entityType="USER",
        entityId=user_id,
        action="USER_DELETE",
        stageTag="USER_ADMIN",
        actor=auth,
        fromState=normalize_role(user.role),
        toState="deleted",
        meta={"email": email, "requests": len(request_ids), "authAccounts": accounts, "sessions": sessions},
    )
    return {"userId": user_id, "deleted": True, "requestsDeleted": len(request_ids)}


def users_bulk_upload(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    file_name = str(data.get("fileName") or "").strip()
    if not file_name:
        raise ApiError("INVALID_ARGUMENT", "fileName is required")

    content = data.get("fileBytes")
    if not isinstance(content, (bytes, bytearray)):
        content = decode_base64_to_bytes(data.get("fileBase64"))
    if len(content) > int(cfg.BULK_UPLOAD_MAX_BYTES):
        raise ApiError("INVALID_ARGUMENT", "File too large")

    parsed = load_user_import(file_name, bytes(content))

    now = iso_utc_now()
    added = 0
    conflicts_skipped = 0
    for row in parsed.rows:
        existing = _find_user(db, email=row.email)
        if existing and normalize_role(existing.role) != row.role and cfg.BULK_ROLE_CONFLICT_POLICY == "skip":
            conflicts_skipped += 1
            continue
        _upsert_user(db, email=row.email, full_name=row.fullName, role=row.role, actor=auth, now=now)
        db.flush()
        added += 1

    skipped = parsed.invalid + conflicts_skipped
    append_audit(
        db,
        entityType="USER",
        entityId="BULK",
        action="USERS_BULK_UPLOAD",
        stageTag="USER_ADMIN",
        actor=auth,
        at=now,
        meta={"fileName": file_name, "added": added, "skipped": skipped, "conflictsSkipped": conflicts_skipped},
    )
    return {"added": added, "skipped": skipped}
