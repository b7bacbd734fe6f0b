from __future__ import annotations

import base64
import binascii
import hashlib
import json
import re
import secrets
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Optional

from flask import jsonify


ROLES = ("employee", "hr", "it", "admin")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$", re.IGNORECASE)

_SHORT_ID_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"

_REDACT_KEYS = {"password", "code", "token", "filebase64", "newpassword", "currentpassword"}


class ApiError(Exception):
    def __init__(self, code: str, message: str, http_status: int = 200):
        super().__init__(message)
        self.code = str(code or "INTERNAL")
        self.message = str(message or "")
        self.http_status = int(http_status or 200)


@dataclass
class AuthContext:
    valid: bool
    userId: str
    email: str
    role: str
    expiresAt: str


def ok(data: Any, http_status: int = 200):
    return jsonify({"ok": True, "data": data, "error": None}), http_status


def err(code: str, message: str, http_status: int = 200):
    return jsonify({"ok": False, "data": None, "error": {"code": code, "message": message}}), http_status


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso_utc(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def iso_utc_now() -> str:
    return to_iso_utc(utc_now())


def parse_datetime_maybe(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    s = str(value or "").strip()
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def parse_date_maybe(value: Any) -> Optional[date]:
    """Accepts YYYY-MM-DD or a full ISO timestamp."""
    s = str(value or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        return None


def new_uuid() -> str:
    return str(uuid.uuid4())


def short_unique_id(length: int = 6) -> str:
    return "".join(secrets.choice(_SHORT_ID_ALPHABET) for _ in range(length))


def sha256_hex(value: str) -> str:
    return hashlib.sha256(str(value or "").encode("utf-8")).hexdigest()


def now_monotonic() -> float:
    return time.monotonic()


def normalize_role(role: Any) -> str:
    r = str(role or "").strip().lower()
    return r if r in ROLES else ""


def normalize_email(email: Any) -> str:
    return str(email or "").strip().lower()


def is_valid_email(email: Any) -> bool:
    e = str(email or "").strip()
    return bool(e) and len(e) <= 254 and bool(EMAIL_RE.match(e))


def parse_json_body(raw: str) -> dict[str, Any]:
    s = str(raw or "").strip()
    if not s:
        raise ApiError("INVALID_ARGUMENT", "Empty request body")
    try:
        body = json.loads(s)
    except ValueError:
        raise ApiError("INVALID_ARGUMENT", "Invalid JSON body")
    if not isinstance(body, dict):
        raise ApiError("INVALID_ARGUMENT", "Request body must be a JSON object")
    return body


def decode_base64_to_bytes(value: Any) -> bytes:
    s = str(value or "").strip()
    if "," in s and s.lower().startswith("data:"):
        s = s.split(",", 1)[1]
    if not s:
        raise ApiError("INVALID_ARGUMENT", "Missing file content")
    try:
        return base64.b64decode(s, validate=True)
    except (binascii.Error, ValueError):
        raise ApiError("INVALID_ARGUMENT", "Invalid base64 file content")


def redact_for_audit(data: Any) -> Any:
    if isinstance(data, dict):
        out = {}
        for k, v in data.items():
            if str(k).lower() in _REDACT_KEYS:
                out[k] = "***"
            else:
                out[k] = redact_for_audit(v)
        return out
    if isinstance(data, list):
        return [redact_for_audit(x) for x in data[:50]]
    if isinstance(data, (bytes, bytearray)):
        return f"<{len(data)} bytes>"
    if isinstance(data, str) and len(data) > 500:
        return data[:500] + "..."
    return data


class SimpleRateLimiter:
    """Sliding one-minute window per key, in-process only."""

    def __init__(self, window_seconds: int = 60):
        self._window = max(1, int(window_seconds))
        self._hits: dict[str, deque] = {}
        self._lock = threading.Lock()
        self._last_sweep = now_monotonic()

    def _sweep(self, cutoff: float) -> None:
        # Keys whose newest hit left the window carry no state.
        stale = [k for k, q in self._hits.items() if not q or q[-1] <= cutoff]
        for k in stale:
            del self._hits[k]

    def check(self, key: str, limit: int) -> None:
        now = now_monotonic()
        cutoff = now - self._window
        with self._lock:
            if now - self._last_sweep >= self._window:
                self._sweep(cutoff)
                self._last_sweep = now
            q = self._hits.setdefault(str(key), deque())
            while q and q[0] <= cutoff:
                q.popleft()
            if len(q) >= int(limit):
                raise ApiError("RATE_LIMITED", "Too many requests. Please slow down.", http_status=429)
            q.append(now)

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)
