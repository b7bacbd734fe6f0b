from __future__ import annotations

import json
import logging
import os
import re
from typing import Any

from flask import Blueprint, current_app, g, request
from sqlalchemy.exc import DBAPIError

from actions import dispatch
from auth import assert_permission, is_public_action, role_or_public, validate_session_token
from config import Config
from db import SessionLocal
from models import AuditLog
from utils import ApiError, err, iso_utc_now, now_monotonic, ok, parse_json_body, redact_for_audit


api_bp = Blueprint("api", __name__)

log = logging.getLogger("api")

LOGIN_ACTIONS = {"LOGIN", "LOGIN_LOOKUP", "SEND_VERIFICATION_CODE", "VERIFY_CODE", "CREATE_AUTH_USER"}

CALLABLE_FUNCTIONS = {
    "sendVerificationCode": "SEND_VERIFICATION_CODE",
    "verifyCode": "VERIFY_CODE",
    "createAuthUser": "CREATE_AUTH_USER",
}


def _header_token() -> str:
    authz = str(request.headers.get("Authorization") or "").strip()
    if authz.lower().startswith("bearer "):
        return authz.split(" ", 1)[1].strip()
    return str(request.headers.get("X-Session-Token") or "").strip()


def _client_ip() -> str:
    fwd = str(request.headers.get("X-Forwarded-For") or "").split(",")[0].strip()
    return fwd or str(request.remote_addr or "")


def _check_rate_limits(cfg: Config, action_u: str) -> None:
    limiter = current_app.extensions["rate_limiter"]
    ip = _client_ip()
    if action_u in LOGIN_ACTIONS:
        limiter.check(f"{ip}:LOGIN", cfg.RATE_LIMIT_LOGIN)
    else:
        limiter.check(f"{ip}:GLOBAL", cfg.RATE_LIMIT_GLOBAL)
        limiter.check(f"{ip}:API:{action_u}", cfg.RATE_LIMIT_DEFAULT)


def _internal_error_message(cfg: Config, prefix: str, detail: str) -> str:
    request_id = str(getattr(g, "request_id", "") or "").strip()
    if cfg.IS_PRODUCTION:
        return f"{prefix} (requestId: {request_id})" if request_id else prefix
    detail = f": {detail}" if detail else ""
    return f"{prefix}{detail} (requestId: {request_id})" if request_id else f"{prefix}{detail}"


def _short(msg: str) -> str:
    msg = re.sub(r"\s+", " ", str(msg or "")).strip()
    return msg[:300] + "..." if len(msg) > 300 else msg


def handle_action(action: str, data: Any, token: Any):
    """
    Runs one action end to end: rate limit, session, RBAC, handler, audit, commit.

    Business errors come back as `ok=false` with the error's HTTP status;
    anything unexpected is rolled back, logged and reported as INTERNAL.
    """

    cfg: Config = current_app.config["CFG"]
    action_u = str(action or "").upper().strip()
    db = None
    auth_ctx = None

    try:
        if not action_u:
            raise ApiError("INVALID_ARGUMENT", "Missing action")
        if data is None:
            data = {}

        _check_rate_limits(cfg, action_u)

        db = SessionLocal()

        if not is_public_action(action_u):
            auth_ctx = validate_session_token(db, token)
            if not auth_ctx.valid:
                raise ApiError("AUTH_INVALID", "Invalid or expired session", http_status=401)
        elif token:
            try:
                maybe = validate_session_token(db, token)
                auth_ctx = maybe if maybe.valid else None
            except ApiError:
                auth_ctx = None

        assert_permission(role_or_public(auth_ctx), action_u)

        out = dispatch(action_u, data, auth_ctx, db, cfg)

        db.add(
            AuditLog(
                logId=f"LOG-{os.urandom(16).hex()}",
                entityType="API",
                entityId=str(auth_ctx.userId or auth_ctx.email or "") if auth_ctx else "PUBLIC",
                action=action_u,
                fromState="",
                toState="",
                stageTag="API_CALL",
                remark="",
                actorUserId=str(auth_ctx.userId) if auth_ctx else "PUBLIC",
                actorRole=str(auth_ctx.role) if auth_ctx else "PUBLIC",
                actorEmail=str(auth_ctx.email or "") if auth_ctx else "",
                at=iso_utc_now(),
                correlationId=str(getattr(g, "request_id", "") or ""),
                metaJson=json.dumps({"data": redact_for_audit(data)}),
            )
        )

        db.commit()

        latency_ms = int((now_monotonic() - g.start_ts) * 1000)
        log.info(
            "request_id=%s action=%s user=%s role=%s latency_ms=%s",
            g.request_id,
            action_u,
            (auth_ctx.userId if auth_ctx else "PUBLIC"),
            (auth_ctx.role if auth_ctx else "PUBLIC"),
            latency_ms,
        )

        return ok(out)
    except ApiError as e:
        if db is not None:
            db.rollback()
        _write_error_audit(action_u, auth_ctx, data, e)
        return err(e.code, e.message, http_status=e.http_status)
    except DBAPIError as e:
        if db is not None:
            db.rollback()
        orig = getattr(e, "orig", None)
        api_err = ApiError("INTERNAL", _internal_error_message(cfg, "Database error", _short(str(orig) if orig else "")), http_status=500)
        _write_error_audit(action_u, auth_ctx, data, api_err)
        log.exception("request_id=%s action=%s", getattr(g, "request_id", ""), action_u)
        return err(api_err.code, api_err.message, http_status=api_err.http_status)
    except Exception as e:
        if db is not None:
            db.rollback()
        detail = type(e).__name__
        if cfg.DEBUG_ERROR_DETAILS and str(e):
            detail = f"{detail}: {_short(str(e))}"
        api_err = ApiError("INTERNAL", _internal_error_message(cfg, "Unexpected error", detail), http_status=500)
        _write_error_audit(action_u, auth_ctx, data, api_err)
        log.exception("request_id=%s action=%s", getattr(g, "request_id", ""), action_u)
        return err(api_err.code, api_err.message, http_status=api_err.http_status)
    finally:
        if db is not None:
            db.close()


def _write_error_audit(action: str, auth_ctx, data: Any, err_obj: ApiError) -> None:
    db2 = SessionLocal()
    try:
        db2.add(
            AuditLog(
                logId=f"LOG-{os.urandom(16).hex()}",
                entityType="API",
                entityId=str(auth_ctx.userId or auth_ctx.email or "") if auth_ctx else "PUBLIC",
                action=str(action or "").upper() or "UNKNOWN",
                fromState="",
                toState="",
                stageTag="API_ERROR",
                remark=f"{err_obj.code}: {err_obj.message}",
                actorUserId=str(auth_ctx.userId) if auth_ctx else "PUBLIC",
                actorRole=str(auth_ctx.role) if auth_ctx else "PUBLIC",
                actorEmail=str(auth_ctx.email or "") if auth_ctx else "",
                at=iso_utc_now(),
                correlationId=str(getattr(g, "request_id", "") or ""),
                metaJson=json.dumps(
                    {
                        "data": redact_for_audit(data if isinstance(data, dict) else {}),
                        "error": {"code": err_obj.code, "message": err_obj.message},
                    }
                ),
            )
        )
        db2.commit()
    except Exception:
        db2.rollback()
        log.exception("failed to write error audit action=%s", action)
    finally:
        db2.close()


@api_bp.post("/api")
def api_route():
    try:
        body = parse_json_body(request.get_data(as_text=True))
    except ApiError as e:
        return err(e.code, e.message, http_status=e.http_status)

    token = body.get("token") or _header_token()
    return handle_action(body.get("action"), body.get("data") or {}, token)


@api_bp.post("/api/functions/<name>")
def callable_function(name: str):
    action = CALLABLE_FUNCTIONS.get(str(name or "").strip())
    if not action:
        return err("NOT_FOUND", f"Unknown function: {name}", http_status=404)

    body = request.get_json(silent=True) or {}
    data = body.get("data") if isinstance(body.get("data"), dict) else body
    return handle_action(action, data, _header_token())


@api_bp.post("/api/admin/users/bulk-upload")
def users_bulk_upload_route():
    f = request.files.get("file")
    if f is None:
        return err("INVALID_ARGUMENT", "Missing file", http_status=400)

    data = {"fileName": str(f.filename or ""), "fileBytes": f.read()}
    return handle_action("USERS_BULK_UPLOAD", data, _header_token())


@api_bp.post("/api/requests/<request_id>/decision")
def request_decision_route(request_id: str):
    body = request.get_json(silent=True) or {}
    data = {
        "requestId": request_id,
        "department": body.get("department") or "",
        "decision": body.get("decision") or "",
    }
    return handle_action("REQUEST_DECIDE", data, _header_token())


@api_bp.get("/api/review/queue")
def review_queue_route():
    data = {k: request.args.get(k, "") for k in ("type", "department", "status", "sort") if request.args.get(k)}
    return handle_action("REVIEW_QUEUE", data, _header_token())


@api_bp.get("/api/eligibility")
def eligibility_route():
    return handle_action("ELIGIBILITY_GET", {"type": request.args.get("type", "")}, _header_token())
