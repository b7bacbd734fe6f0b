from __future__ import annotations

import logging

from sqlalchemy import func, select

from actions.helpers import append_audit
from auth import issue_session_token, revoke_user_sessions
from models import AuthAccount, User
from passwords import hash_password, verify_password
from services.mailer import MailError, send_verification_code_email
from services.verification import check_send_rate_limit, issue_code, verify_code
from utils import ApiError, AuthContext, iso_utc_now, is_valid_email, new_uuid, normalize_email, normalize_role


log = logging.getLogger("auth")


def _find_user_by_email(db, email: str):
    email_lc = normalize_email(email)
    if not email_lc:
        return None
    return db.execute(select(User).where(func.lower(User.email) == email_lc)).scalars().first()


def _find_account_by_email(db, email: str):
    email_lc = normalize_email(email)
    if not email_lc:
        return None
    return db.execute(select(AuthAccount).where(func.lower(AuthAccount.email) == email_lc)).scalars().first()


def serialize_me(user: User) -> dict:
    return {
        "userId": user.userId,
        "email": user.email,
        "fullName": user.fullName or "",
        "role": normalize_role(user.role),
        "status": user.status or "",
        "firstLoginDone": bool(user.firstLoginDone),
    }


def send_verification_code(data, auth: AuthContext | None, db, cfg):
    email = normalize_email((data or {}).get("email"))
    if not email:
        raise ApiError("INVALID_ARGUMENT", "Email is required")
    if not is_valid_email(email):
        raise ApiError("INVALID_ARGUMENT", "Invalid email")

    check_send_rate_limit(
        db,
        email,
        max_count=cfg.VERIFICATION_SEND_MAX,
        window_hours=cfg.VERIFICATION_SEND_WINDOW_HOURS,
    )
    row = issue_code(db, email, ttl_minutes=cfg.VERIFICATION_CODE_TTL_MINUTES)

    # The code is only committed once the mail went out.
    try:
        send_verification_code_email(cfg, to=email, code=row.code, ttl_minutes=cfg.VERIFICATION_CODE_TTL_MINUTES)
    except MailError:
        log.exception("verification mail failed")
        raise ApiError("INTERNAL", "Failed to send email")

    return {"success": True}


def verify_email_code(data, auth: AuthContext | None, db, cfg):
    email = normalize_email((data or {}).get("email"))
    code = str((data or {}).get("code") or "").strip()
    if not email or not code:
        raise ApiError("INVALID_ARGUMENT", "Email and code are required")

    try:
        verify_code(db, email, code)
    except ApiError as e:
        if e.code == "DEADLINE_EXCEEDED":
            # Expired codes are removed even though the call fails.
            db.commit()
        raise

    account = _find_account_by_email(db, email)
    if account:
        account.email_verified = True

    return {"success": True}


def create_auth_user(data, auth: AuthContext | None, db, cfg):
    email = normalize_email((data or {}).get("email"))
    password = str((data or {}).get("password") or "")
    if not email or not password:
        raise ApiError("INVALID_ARGUMENT", "Email and password are required")
    if not is_valid_email(email):
        raise ApiError("INVALID_ARGUMENT", "Invalid email")

    password_hash = hash_password(password, min_length=cfg.PASSWORD_MIN_LENGTH)

    if _find_account_by_email(db, email):
        raise ApiError("ALREADY_EXISTS", "An account with this email already exists")

    now = iso_utc_now()
    uid = "UID-" + new_uuid().replace("-", "")
    db.add(
        AuthAccount(
            uid=uid,
            email=email,
            password_hash=password_hash,
            email_verified=False,
            created_at=now,
            last_login_at="",
        )
    )

    append_audit(
        db,
        entityType="AUTH",
        entityId=uid,
        action="CREATE_AUTH_USER",
        stageTag="AUTH_REGISTER",
        actor=auth,
        at=now,
        meta={"email": email},
    )
    return {"success": True, "uid": uid}


def login_lookup(data, auth: AuthContext | None, db, cfg):
    email = normalize_email((data or {}).get("email"))
    if not email:
        raise ApiError("INVALID_ARGUMENT", "Email is required")

    user = _find_user_by_email(db, email)
    return {"userExists": bool(user), "firstLoginDone": bool(user.firstLoginDone) if user else False}


def login(data, auth: AuthContext | None, db, cfg):
    email = normalize_email((data or {}).get("email"))
    password = str((data or {}).get("password") or "")
    full_name = str((data or {}).get("fullName") or "").strip()
    if not email or not password:
        raise ApiError("INVALID_ARGUMENT", "Email and password are required")

    account = _find_account_by_email(db, email)
    if not account or not verify_password(password, account.password_hash):
        raise ApiError("AUTH_INVALID", "Invalid email or password", http_status=401)

    now = iso_utc_now()
    account.last_login_at = now

    user = _find_user_by_email(db, email)
    if user is None:
        # First login of a self-registered account: becomes an employee.
        user = User(
            userId=account.uid,
            email=email,
            fullName=full_name,
            role="employee",
            status="active",
            firstLoginDone=True,
            lastLoginAt=now,
            createdAt=now,
            createdBy=account.uid,
            updatedAt=now,
            updatedBy=account.uid,
        )
        db.add(user)
    else:
        user.firstLoginDone = True
        user.status = "active"
        if full_name:
            user.fullName = full_name
        user.lastLoginAt = now
        user.updatedAt = now
        user.updatedBy = user.userId

    role = normalize_role(user.role)
    if not role:
        raise ApiError("FORBIDDEN", "User has no valid role", http_status=403)

    db.flush()
    ses = issue_session_token(
        db,
        user_id=user.userId,
        email=user.email,
        role=role,
        session_ttl_minutes=cfg.SESSION_TTL_MINUTES,
    )

    actor = AuthContext(valid=True, userId=user.userId, email=user.email, role=role, expiresAt=ses["expiresAt"])
    append_audit(db, entityType="AUTH", entityId=user.userId, action="LOGIN", stageTag="AUTH_LOGIN", actor=actor, at=now)

    return {"sessionToken": ses["sessionToken"], "expiresAt": ses["expiresAt"], "me": serialize_me(user)}


def get_me(data, auth: AuthContext | None, db, cfg):
    user = db.get(User, auth.userId)
    if not user:
        raise ApiError("NOT_FOUND", "User not found")
    return {"me": serialize_me(user), "expiresAt": auth.expiresAt}


def logout(data, auth: AuthContext | None, db, cfg):
    revoked = revoke_user_sessions(db, user_id=auth.userId, revoked_by=auth.userId)
    append_audit(db, entityType="AUTH", entityId=auth.userId, action="LOGOUT", stageTag="AUTH_LOGOUT", actor=auth)
    return {"revoked": revoked}
