from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

from db import SessionLocal
from models import AuthAccount, User
from passwords import hash_password
from utils import iso_utc_now


PASSWORD = "Passw0rd!"


def _api(client, payload: dict):
    return client.post("/api", data=json.dumps(payload), content_type="text/plain; charset=utf-8")


def _seed_account(email: str, *, role: str, full_name: str = "", password: str = PASSWORD) -> None:
    now = iso_utc_now()
    with SessionLocal() as db:
        db.add(
            User(
                userId=email,
                email=email,
                fullName=full_name or email.split("@")[0],
                role=role,
                status="active",
                firstLoginDone=True,
                createdAt=now,
            )
        )
        db.add(AuthAccount(uid=f"UID-{email}", email=email, password_hash=hash_password(password), email_verified=True, created_at=now))
        db.commit()


def _login(client, email: str, password: str = PASSWORD) -> str:
    body = _api(client, {"action": "LOGIN", "token": None, "data": {"email": email, "password": password}}).get_json()
    assert body["ok"] is True
    return body["data"]["sessionToken"]


def _submit_exception(client, token: str, *, hr: bool, it: bool) -> str:
    data = {
        "systemsNeeded": ["VPN"],
        "reason": "Remote week",
        "startDate": (datetime.now(timezone.utc).date() + timedelta(days=1)).isoformat(),
        "requireHR": hr,
        "requireIT": it,
    }
    body = _api(client, {"action": "EXCEPTION_REQUEST_SUBMIT", "token": token, "data": data}).get_json()
    assert body["ok"] is True
    return body["data"]["request"]["requestId"]


def _queue(client, token: str, **data) -> dict:
    body = _api(client, {"action": "REVIEW_QUEUE", "token": token, "data": data}).get_json()
    assert body["ok"] is True, body
    return body["data"]


def _setup(client) -> dict:
    _seed_account("zed@example.com", role="employee", full_name="Zed Zimmer")
    _seed_account("amy@example.com", role="employee", full_name="Amy Adams")
    _seed_account("hr@example.com", role="hr")
    _seed_account("it@example.com", role="it")
    _seed_account("admin@example.com", role="admin")

    tokens = {e: _login(client, f"{e}@example.com") for e in ("zed", "amy", "hr", "it", "admin")}
    tokens["zed_req"] = _submit_exception(client, tokens["zed"], hr=True, it=False)
    tokens["amy_req"] = _submit_exception(client, tokens["amy"], hr=True, it=True)
    return tokens


def test_queue_only_lists_required_slots(app_client):
    _app, client = app_client
    t = _setup(client)

    hr = _queue(client, t["hr"], type="exception_request")
    assert hr["department"] == "HR"
    assert {i["requestId"] for i in hr["items"]} == {t["zed_req"], t["amy_req"]}

    it = _queue(client, t["it"], type="exception_request")
    assert it["department"] == "IT"
    assert [i["requestId"] for i in it["items"]] == [t["amy_req"]]


def test_queue_sorting(app_client):
    _app, client = app_client
    t = _setup(client)

    atoz = _queue(client, t["hr"], type="exception_request", sort="atoz")
    assert [i["displayName"] for i in atoz["items"]] == ["Amy Adams", "Zed Zimmer"]

    ztoa = _queue(client, t["hr"], type="exception_request", sort="ztoa")
    assert [i["displayName"] for i in ztoa["items"]] == ["Zed Zimmer", "Amy Adams"]

    body = _api(client, {"action": "REVIEW_QUEUE", "token": t["hr"], "data": {"type": "exception_request", "sort": "sideways"}}).get_json()
    assert body["error"]["code"] == "INVALID_ARGUMENT"


def test_decision_route_locks_the_slot(app_client):
    _app, client = app_client
    t = _setup(client)
    headers = {"Authorization": f"Bearer {t['it']}"}

    res = client.post(f"/api/requests/{t['amy_req']}/decision", json={"decision": "accepted"}, headers=headers)
    body = res.get_json()
    assert body["ok"] is True
    slots = body["data"]["request"]["approvalStatus"]
    assert slots["IT"]["status"] == "accepted"
    assert slots["IT"]["decisionBy"] == "it@example.com"
    assert slots["HR"]["status"] == "pending"

    res = client.post(f"/api/requests/{t['amy_req']}/decision", json={"decision": "rejected"}, headers=headers)
    body = res.get_json()
    assert body["ok"] is False
    assert body["error"]["code"] == "FAILED_PRECONDITION"

    # IT has nothing pending anymore; HR still sees both.
    assert _queue(client, t["it"], type="exception_request")["items"] == []
    assert len(_queue(client, t["hr"], type="exception_request")["items"]) == 2

    everything = _queue(client, t["it"], type="exception_request", status="all")
    assert [i["requestId"] for i in everything["items"]] == [t["amy_req"]]

    accepted = _queue(client, t["it"], type="exception_request", status="accepted")
    assert len(accepted["items"]) == 1


def test_it_cannot_decide_not_required_slot(app_client):
    _app, client = app_client
    t = _setup(client)

    body = _api(client, {"action": "REQUEST_DECIDE", "token": t["it"], "data": {"requestId": t["zed_req"], "decision": "accepted"}}).get_json()
    assert body["ok"] is False
    assert body["error"]["code"] == "FAILED_PRECONDITION"


def test_admin_must_name_department(app_client):
    _app, client = app_client
    t = _setup(client)

    body = _api(client, {"action": "REVIEW_QUEUE", "token": t["admin"], "data": {"type": "exception_request"}}).get_json()
    assert body["error"]["code"] == "INVALID_ARGUMENT"

    res = client.get(
        "/api/review/queue?type=exception_request&department=it",
        headers={"Authorization": f"Bearer {t['admin']}"},
    )
    data = res.get_json()["data"]
    assert data["department"] == "IT"
    assert data["total"] == 1

    body = _api(
        client,
        {"action": "REQUEST_DECIDE", "token": t["admin"], "data": {"requestId": t["zed_req"], "department": "HR", "decision": "rejected"}},
    ).get_json()
    assert body["ok"] is True
    assert body["data"]["request"]["approvalStatus"]["HR"]["status"] == "rejected"


def test_hr_cannot_act_for_it(app_client):
    _app, client = app_client
    t = _setup(client)

    res = _api(
        client,
        {"action": "REQUEST_DECIDE", "token": t["hr"], "data": {"requestId": t["amy_req"], "department": "IT", "decision": "accepted"}},
    )
    assert res.status_code == 403
