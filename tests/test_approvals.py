from __future__ import annotations

import json

import pytest
from sqlalchemy import select

from db import SessionLocal
from models import AuditLog, AuthAccount, Request, RequestDecision, User
from passwords import hash_password
from services.approvals import create_decision_slots, decide, resolve_slot
from utils import ApiError, AuthContext, iso_utc_now


PASSWORD = "Passw0rd!"


def _seed_request(request_id: str, request_type: str, required: dict | None = None) -> None:
    now = iso_utc_now()
    with SessionLocal() as db:
        db.add(
            Request(
                requestId=request_id,
                uniqueId=request_id[-6:],
                type=request_type,
                userId="USR-1",
                email="emp@example.com",
                createdAt=now,
                updatedAt=now,
            )
        )
        create_decision_slots(db, request_id=request_id, request_type=request_type, required=required)
        db.commit()


def _ctx(role: str) -> AuthContext:
    return AuthContext(valid=True, userId=f"USR-{role}", email=f"{role}@example.com", role=role, expiresAt="")


def _api(client, payload: dict):
    return client.post("/api", data=json.dumps(payload), content_type="text/plain; charset=utf-8")


def _seed_account(email: str, *, role: str, password: str = PASSWORD) -> None:
    now = iso_utc_now()
    with SessionLocal() as db:
        db.add(User(userId=email, email=email, fullName=email.split("@")[0], role=role, status="active", firstLoginDone=True, createdAt=now))
        db.add(AuthAccount(uid=f"UID-{email}", email=email, password_hash=hash_password(password), email_verified=True, created_at=now))
        db.commit()


def _login(client, email: str, password: str = PASSWORD) -> str:
    body = _api(client, {"action": "LOGIN", "token": None, "data": {"email": email, "password": password}}).get_json()
    assert body["ok"] is True
    return body["data"]["sessionToken"]


def test_decision_is_locked_after_first_transition(app_client):
    _seed_request("REQ-LOCK01", "exception_request", {"HR": True, "IT": True})

    first_at = "2026-01-05T09:00:00.000Z"
    with SessionLocal() as db:
        row = decide(db, request_id="REQ-LOCK01", slot="HR", decision="accepted", actor_id="USR-hr", now_iso=first_at)
        db.commit()
        assert row.status == "accepted"
        assert row.decisionBy == "USR-hr"
        assert row.lastUpdated == first_at

    with SessionLocal() as db:
        with pytest.raises(ApiError) as exc:
            decide(db, request_id="REQ-LOCK01", slot="HR", decision="rejected", actor_id="USR-other", now_iso=iso_utc_now())
        assert exc.value.code == "FAILED_PRECONDITION"
        db.rollback()

    with SessionLocal() as db:
        hr = db.execute(
            select(RequestDecision).where(RequestDecision.requestId == "REQ-LOCK01").where(RequestDecision.slot == "HR")
        ).scalar_one()
        it = db.execute(
            select(RequestDecision).where(RequestDecision.requestId == "REQ-LOCK01").where(RequestDecision.slot == "IT")
        ).scalar_one()
        assert hr.status == "accepted"
        assert hr.decisionBy == "USR-hr"
        assert hr.lastUpdated == first_at
        # No cross-department effect.
        assert it.status == "pending"
        assert it.decisionBy is None


def test_concurrent_reviewers_only_one_wins(app_client):
    _seed_request("REQ-RACE01", "job_application")

    db1 = SessionLocal()
    db2 = SessionLocal()
    try:
        # The loser has already read the slot as pending.
        stale = db2.execute(select(RequestDecision).where(RequestDecision.requestId == "REQ-RACE01")).scalar_one()
        assert stale.status == "pending"

        decide(db1, request_id="REQ-RACE01", slot="APPLICATION", decision="accepted", actor_id="USR-hr", now_iso=iso_utc_now())
        db1.commit()

        with pytest.raises(ApiError) as exc:
            decide(db2, request_id="REQ-RACE01", slot="APPLICATION", decision="rejected", actor_id="USR-it", now_iso=iso_utc_now())
        assert exc.value.code == "FAILED_PRECONDITION"
        assert "accepted" in exc.value.message
        db2.rollback()
    finally:
        db1.close()
        db2.close()

    with SessionLocal() as db:
        row = db.execute(select(RequestDecision).where(RequestDecision.requestId == "REQ-RACE01")).scalar_one()
        assert row.status == "accepted"
        assert row.decisionBy == "USR-hr"


def test_not_required_slot_never_transitions(app_client):
    _seed_request("REQ-NOREQ1", "exception_request", {"HR": True, "IT": False})

    with SessionLocal() as db:
        with pytest.raises(ApiError) as exc:
            decide(db, request_id="REQ-NOREQ1", slot="IT", decision="accepted", actor_id="USR-it", now_iso=iso_utc_now())
        assert exc.value.code == "FAILED_PRECONDITION"
        db.rollback()

        row = db.execute(
            select(RequestDecision).where(RequestDecision.requestId == "REQ-NOREQ1").where(RequestDecision.slot == "IT")
        ).scalar_one()
        assert row.status == "pending"


def test_missing_request_or_slot_is_not_found(app_client):
    _seed_request("REQ-RESIG1", "resignation")

    with SessionLocal() as db:
        with pytest.raises(ApiError) as exc:
            decide(db, request_id="REQ-MISSING", slot="HR", decision="accepted", actor_id="USR-hr", now_iso=iso_utc_now())
        assert exc.value.code == "NOT_FOUND"

        with pytest.raises(ApiError) as exc:
            decide(db, request_id="REQ-RESIG1", slot="IT", decision="accepted", actor_id="USR-it", now_iso=iso_utc_now())
        assert exc.value.code == "NOT_FOUND"


def test_invalid_decision_value_is_rejected(app_client):
    _seed_request("REQ-BADDEC", "job_application")

    with SessionLocal() as db:
        with pytest.raises(ApiError) as exc:
            decide(db, request_id="REQ-BADDEC", slot="APPLICATION", decision="pending", actor_id="USR-hr", now_iso=iso_utc_now())
        assert exc.value.code == "INVALID_ARGUMENT"


def test_resolve_slot_by_role():
    assert resolve_slot("job_application", _ctx("it")) == "APPLICATION"
    assert resolve_slot("exception_request", _ctx("hr")) == "HR"
    assert resolve_slot("exception_request", _ctx("it")) == "IT"
    assert resolve_slot("exception_request", _ctx("admin"), "it") == "IT"
    assert resolve_slot("resignation", _ctx("hr")) == "HR"

    with pytest.raises(ApiError) as exc:
        resolve_slot("exception_request", _ctx("admin"))
    assert exc.value.code == "INVALID_ARGUMENT"

    with pytest.raises(ApiError) as exc:
        resolve_slot("exception_request", _ctx("hr"), "IT")
    assert exc.value.code == "FORBIDDEN"

    with pytest.raises(ApiError) as exc:
        resolve_slot("resignation", _ctx("it"))
    assert exc.value.code == "INVALID_ARGUMENT"


def test_decide_through_api_writes_audit(app_client):
    _app, client = app_client
    _seed_request("REQ-AUDIT1", "resignation")
    _seed_account("hr@example.com", role="hr")
    token = _login(client, "hr@example.com")

    body = _api(client, {"action": "REQUEST_DECIDE", "token": token, "data": {"requestId": "REQ-AUDIT1", "decision": "accepted"}}).get_json()
    assert body["ok"] is True
    assert body["data"]["request"]["approvalStatus"]["HR"]["status"] == "accepted"

    with SessionLocal() as db:
        rows = db.execute(
            select(AuditLog).where(AuditLog.entityId == "REQ-AUDIT1").where(AuditLog.action == "REQUEST_DECIDE")
        ).scalars().all()
        assert len(rows) == 1
        assert rows[0].fromState == "pending"
        assert rows[0].toState == "accepted"
