from __future__ import annotations

import os


def _env_str(name: str, default: str = "") -> str:
    return str(os.getenv(name, default) or default).strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, "") or "").strip() or default)
    except Exception:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = str(os.getenv(name, "") or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def _env_list(name: str, default: list[str] | None = None) -> list[str]:
    raw = str(os.getenv(name, "") or "").strip()
    if not raw:
        return list(default or [])
    return [x.strip() for x in raw.split(",") if x.strip()]


ROLE_CONFLICT_POLICIES = {"confirm", "overwrite", "skip"}
MAIL_MODES = {"log", "brevo"}


class Config:
    def __init__(self):
        self.ENV = _env_str("APP_ENV", "development").lower()
        self.IS_PRODUCTION = self.ENV in {"prod", "production"}
        self.APP_VERSION = _env_str("APP_VERSION", "0.1.0")
        self.LOG_LEVEL = _env_str("LOG_LEVEL", "INFO").upper()

        self.HOST = _env_str("HOST", "0.0.0.0")
        self.PORT = _env_int("PORT", 5002)

        self.DATABASE_URL = _env_str("DATABASE_URL", "sqlite:///./portal.db")
        # Celery broker; readiness only checks it when set.
        self.REDIS_URL = _env_str("REDIS_URL", "")
        self.ALLOWED_ORIGINS = _env_list("ALLOWED_ORIGINS", ["http://localhost:3000"])

        self.SESSION_TTL_MINUTES = max(5, _env_int("SESSION_TTL_MINUTES", 480))
        self.PASSWORD_MIN_LENGTH = max(1, _env_int("PASSWORD_MIN_LENGTH", 6))

        # Requests per minute per IP.
        self.RATE_LIMIT_GLOBAL = max(1, _env_int("RATE_LIMIT_GLOBAL", 600))
        self.RATE_LIMIT_DEFAULT = max(1, _env_int("RATE_LIMIT_DEFAULT", 120))
        self.RATE_LIMIT_LOGIN = max(1, _env_int("RATE_LIMIT_LOGIN", 20))

        self.VERIFICATION_CODE_TTL_MINUTES = max(1, _env_int("VERIFICATION_CODE_TTL_MINUTES", 10))
        self.VERIFICATION_SEND_MAX = max(0, _env_int("VERIFICATION_SEND_MAX", 5))
        self.VERIFICATION_SEND_WINDOW_HOURS = max(1, _env_int("VERIFICATION_SEND_WINDOW_HOURS", 1))

        self.JOB_REAPPLY_DAYS = max(0, _env_int("JOB_REAPPLY_DAYS", 14))
        self.EXCEPTION_COOLDOWN_HOURS = max(0, _env_int("EXCEPTION_COOLDOWN_HOURS", 24))

        self.SINGLE_ROLE_CONFLICT_POLICY = _env_str("SINGLE_ROLE_CONFLICT_POLICY", "confirm").lower()
        self.BULK_ROLE_CONFLICT_POLICY = _env_str("BULK_ROLE_CONFLICT_POLICY", "overwrite").lower()
        self.BULK_UPLOAD_MAX_BYTES = max(1024, _env_int("BULK_UPLOAD_MAX_BYTES", 100 * 1024 * 1024))

        self.MAIL_MODE = _env_str("MAIL_MODE", "log").lower()
        self.MAIL_API_URL = _env_str("MAIL_API_URL", "https://api.brevo.com/v3/smtp/email")
        self.MAIL_API_KEY = _env_str("MAIL_API_KEY", "")
        self.MAIL_FROM = _env_str("MAIL_FROM", "no-reply@example.com")
        self.MAIL_FROM_NAME = _env_str("MAIL_FROM_NAME", "Employee Portal")
        self.MAIL_TIMEOUT_SECONDS = max(1, _env_int("MAIL_TIMEOUT_SECONDS", 15))

        self.DEBUG_ERROR_DETAILS = _env_bool("DEBUG_ERROR_DETAILS", False)

    def validate(self) -> None:
        if self.SINGLE_ROLE_CONFLICT_POLICY not in ROLE_CONFLICT_POLICIES:
            raise RuntimeError(f"Invalid SINGLE_ROLE_CONFLICT_POLICY: {self.SINGLE_ROLE_CONFLICT_POLICY}")
        if self.BULK_ROLE_CONFLICT_POLICY not in ROLE_CONFLICT_POLICIES - {"confirm"}:
            # "confirm" needs an interactive step; bulk uploads have none.
            raise RuntimeError(f"Invalid BULK_ROLE_CONFLICT_POLICY: {self.BULK_ROLE_CONFLICT_POLICY}")
        if self.MAIL_MODE not in MAIL_MODES:
            raise RuntimeError(f"Invalid MAIL_MODE: {self.MAIL_MODE}")
        if self.IS_PRODUCTION and self.MAIL_MODE == "brevo" and not self.MAIL_API_KEY:
            raise RuntimeError("MAIL_API_KEY is required when MAIL_MODE=brevo")
        if not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is required")
