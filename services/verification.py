"""
Email verification codes.

Codes are keyed by the existing user's id when the email belongs to a known
user, otherwise by the lowercased email. Issuing a new code overwrites the old
one so at most one live code exists per key.
"""
from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, select

from models import RateLimitCounter, User, VerificationCode
from utils import ApiError, iso_utc_now, normalize_email, parse_datetime_maybe, sha256_hex, to_iso_utc, utc_now


RATE_KEY_VERIFY_SEND = "VERIFY_SEND"


def generate_code() -> str:
    return str(secrets.randbelow(900000) + 100000)


def code_key_for_email(db, email: str) -> str:
    email_lc = normalize_email(email)
    uid = db.execute(select(User.userId).where(func.lower(User.email) == email_lc)).scalars().first()
    return str(uid) if uid else email_lc


def issue_code(db, email: str, *, ttl_minutes: int = 10, now: datetime | None = None) -> VerificationCode:
    """Stages a fresh code in the session. The caller commits only once the mail went out."""

    email_lc = normalize_email(email)
    if not email_lc:
        raise ApiError("INVALID_ARGUMENT", "Email is required")

    now = now or utc_now()
    key = code_key_for_email(db, email_lc)
    row = db.get(VerificationCode, key)
    if row is None:
        row = VerificationCode(key=key)
        db.add(row)
    row.email = email_lc
    row.code = generate_code()
    row.createdAt = to_iso_utc(now)
    row.expiresAt = to_iso_utc(now + timedelta(minutes=int(ttl_minutes)))
    return row


def verify_code(db, email: str, code: Any, *, now: datetime | None = None) -> None:
    email_lc = normalize_email(email)
    code_s = str(code or "").strip()
    if not email_lc or not code_s:
        raise ApiError("INVALID_ARGUMENT", "Email and code are required")

    key = code_key_for_email(db, email_lc)
    row = db.get(VerificationCode, key)
    if row is None:
        raise ApiError("NOT_FOUND", "No verification code found. Please request a new one.")

    expires = parse_datetime_maybe(row.expiresAt)
    if expires is None or (now or utc_now()) > expires:
        db.delete(row)
        raise ApiError("DEADLINE_EXCEEDED", "Verification code has expired. Please request a new one.")

    if not secrets.compare_digest(str(row.code or ""), code_s):
        raise ApiError("INVALID_ARGUMENT", "Invalid verification code")

    db.delete(row)


def _window_id(window_hours: int, now: datetime) -> str:
    hours = int(now.timestamp() // 3600)
    return f"{window_hours}h-{hours // max(1, int(window_hours))}"


def check_send_rate_limit(db, email: str, *, max_count: int, window_hours: int, now: datetime | None = None) -> None:
    """Counts a send against the email's current window; RATE_LIMITED once the window is full."""

    if int(max_count) <= 0:
        return

    now = now or utc_now()
    key_hash = sha256_hex(normalize_email(email))
    window_id = _window_id(int(window_hours), now)

    # Older windows for this key can never count again.
    db.execute(
        delete(RateLimitCounter)
        .where(RateLimitCounter.key_type == RATE_KEY_VERIFY_SEND)
        .where(RateLimitCounter.key_hash == key_hash)
        .where(RateLimitCounter.window_id != window_id)
        .execution_options(synchronize_session=False)
    )

    record = db.execute(
        select(RateLimitCounter).where(
            RateLimitCounter.key_type == RATE_KEY_VERIFY_SEND,
            RateLimitCounter.key_hash == key_hash,
            RateLimitCounter.window_id == window_id,
        )
    ).scalar_one_or_none()

    stamp = iso_utc_now()
    if record:
        if record.count >= int(max_count):
            raise ApiError("RATE_LIMITED", "Too many verification codes requested. Try again later.", http_status=429)
        record.count += 1
        record.last_at = stamp
    else:
        db.add(
            RateLimitCounter(
                key_type=RATE_KEY_VERIFY_SEND,
                key_hash=key_hash,
                window_id=window_id,
                count=1,
                first_at=stamp,
                last_at=stamp,
            )
        )
