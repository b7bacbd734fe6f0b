from __future__ import annotations

from werkzeug.security import check_password_hash, generate_password_hash

from utils import ApiError


def validate_password_policy(password: str, *, min_length: int = 6) -> str:
    pwd = str(password or "")
    if not pwd:
        raise ApiError("INVALID_ARGUMENT", "Password is required")
    if len(pwd) < int(min_length):
        raise ApiError("INVALID_ARGUMENT", f"Password must be at least {int(min_length)} characters")
    if len(pwd) > 256:
        raise ApiError("INVALID_ARGUMENT", "Password is too long")
    return pwd


def hash_password(password: str, *, min_length: int = 6) -> str:
    pwd = validate_password_policy(password, min_length=min_length)
    # Werkzeug 3 defaults to scrypt; pin explicitly for stability.
    return generate_password_hash(pwd, method="scrypt", salt_length=16)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return check_password_hash(str(password_hash or ""), str(password or ""))
    except Exception:
        return False
