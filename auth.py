from __future__ import annotations

import os
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import select

from models import Session as DbSession, User
from utils import ApiError, AuthContext, iso_utc_now, new_uuid, normalize_role, parse_datetime_maybe, sha256_hex, to_iso_utc, utc_now


PUBLIC_ACTIONS = {
    "SEND_VERIFICATION_CODE",
    "VERIFY_CODE",
    "CREATE_AUTH_USER",
    "LOGIN_LOOKUP",
    "LOGIN",
    "JOB_APPLICATION_SUBMIT",
    "APPLICATION_STATUS_CHECK",
}

ALL_ROLES = ["employee", "hr", "it", "admin"]
STAFF_ROLES = ["hr", "it", "admin"]


STATIC_RBAC_PERMISSIONS: dict[str, list[str]] = {
    "SEND_VERIFICATION_CODE": ["PUBLIC"],
    "VERIFY_CODE": ["PUBLIC"],
    "CREATE_AUTH_USER": ["PUBLIC"],
    "LOGIN_LOOKUP": ["PUBLIC"],
    "LOGIN": ["PUBLIC"],
    "JOB_APPLICATION_SUBMIT": ["PUBLIC"],
    "APPLICATION_STATUS_CHECK": ["PUBLIC"],
    "GET_ME": ALL_ROLES,
    "LOGOUT": ALL_ROLES,
    "ELIGIBILITY_GET": ALL_ROLES,
    "MY_REQUESTS_LIST": ALL_ROLES,
    "REQUEST_GET": ALL_ROLES,
    "EXCEPTION_REQUEST_SUBMIT": ["employee"],
    "RESIGNATION_SUBMIT": ["employee"],
    "REQUEST_WITHDRAW": ["employee"],
    "REVIEW_QUEUE": STAFF_ROLES,
    "REQUEST_DECIDE": STAFF_ROLES,
    "REQUESTS_LIST_ALL": ["admin"],
    "USERS_LIST": ["admin"],
    "USER_ADD": ["admin"],
    "USER_UPDATE": ["admin"],
    "USER_DELETE": ["admin"],
    "USERS_BULK_UPLOAD": ["admin"],
}


_INVALID = AuthContext(valid=False, userId="", email="", role="", expiresAt="")


def is_public_action(action: str) -> bool:
    return str(action or "").upper() in PUBLIC_ACTIONS


def issue_session_token(db, *, user_id: str, email: str, role: str, session_ttl_minutes: int) -> dict[str, str]:
    token = "ST-" + new_uuid().replace("-", "") + new_uuid().replace("-", "")
    now = utc_now()
    issued_at = to_iso_utc(now)
    expires_at = to_iso_utc(now + timedelta(minutes=int(session_ttl_minutes)))

    db.add(
        DbSession(
            sessionId="SES-" + new_uuid(),
            tokenHash=sha256_hex(token),
            tokenPrefix=token[:12],
            userId=str(user_id or ""),
            email=str(email or ""),
            role=normalize_role(role),
            issuedAt=issued_at,
            expiresAt=expires_at,
            lastSeenAt=issued_at,
            revokedAt="",
            revokedBy="",
        )
    )
    return {"sessionToken": token, "expiresAt": expires_at}


def revoke_user_sessions(db, *, user_id: str, revoked_by: str) -> int:
    """Revoke every active session of a user (logout, deletion, role change)."""

    uid = str(user_id or "").strip()
    if not uid:
        return 0

    now = iso_utc_now()
    rows = db.execute(select(DbSession).where(DbSession.userId == uid).where(DbSession.revokedAt == "")).scalars().all()
    for s in rows:
        s.revokedAt = now
        s.revokedBy = str(revoked_by or "")
    return len(rows)


def validate_session_token(db, token: Any) -> AuthContext:
    if not token or not isinstance(token, str):
        return _INVALID

    ses = db.execute(select(DbSession).where(DbSession.tokenHash == sha256_hex(token))).scalar_one_or_none()
    if not ses or ses.revokedAt:
        return _INVALID

    exp_dt = parse_datetime_maybe(ses.expiresAt)
    if exp_dt and exp_dt < utc_now():
        return _INVALID

    usr = db.execute(select(User).where(User.userId == ses.userId)).scalar_one_or_none()
    if not usr:
        return _INVALID

    # Role comes from the live user record so an admin role change applies immediately.
    role = normalize_role(usr.role)
    if not role:
        raise ApiError("FORBIDDEN", "User has no valid role", http_status=403)

    # Avoid writing on every request: update lastSeenAt at most once per interval.
    try:
        interval_s = int(str(os.getenv("SESSION_LAST_SEEN_UPDATE_SECONDS", "300") or "300"))
    except ValueError:
        interval_s = 300
    last_dt = parse_datetime_maybe(ses.lastSeenAt)
    if interval_s <= 0 or not last_dt or (utc_now() - last_dt).total_seconds() >= interval_s:
        ses.lastSeenAt = iso_utc_now()

    return AuthContext(valid=True, userId=str(usr.userId), email=str(usr.email or ""), role=role, expiresAt=ses.expiresAt)


def assert_permission(role: str, action: str) -> None:
    action_u = str(action or "").upper().strip()

    allowed = STATIC_RBAC_PERMISSIONS.get(action_u)
    if allowed is None:
        raise ApiError("INVALID_ARGUMENT", f"Unknown action: {action_u}")

    if is_public_action(action_u) or "PUBLIC" in allowed:
        return

    role_l = normalize_role(role)
    if not role_l:
        raise ApiError("AUTH_INVALID", "Login required", http_status=401)
    if role_l not in allowed:
        raise ApiError("FORBIDDEN", f"Not allowed for role: {role_l}", http_status=403)


def role_or_public(auth: Optional[AuthContext]) -> str:
    if not auth or not auth.valid:
        return "PUBLIC"
    return normalize_role(auth.role) or "PUBLIC"
