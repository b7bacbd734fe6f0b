from __future__ import annotations

import base64
import io
import json

from sqlalchemy import select

from db import SessionLocal
from models import AuthAccount, Request, RequestDecision, Session as DbSession, User
from passwords import hash_password
from utils import iso_utc_now


PASSWORD = "Passw0rd!"

CSV_OK = (
    "Email,FullName,Role\n"
    "one@example.com,One Person,employee\n"
    "two@example.com,Two Person,hr\n"
    "three@example.com,Three Person,manager\n"
    "not-an-email,Broken Row,it\n"
)


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


def _admin(client) -> str:
    _seed_account("admin@example.com", role="admin")
    return _login(client, "admin@example.com")


def _user(email: str):
    with SessionLocal() as db:
        return db.execute(select(User).where(User.email == email)).scalars().first()


def test_user_add_role_conflict_needs_confirmation(app_client):
    _app, client = app_client
    token = _admin(client)

    body = _api(client, {"action": "USER_ADD", "token": token, "data": {"email": "New@Example.com", "fullName": "New Hire", "role": "employee"}}).get_json()
    assert body["ok"] is True
    assert body["data"]["created"] is True
    assert body["data"]["user"]["userId"] == "new@example.com"
    assert body["data"]["user"]["status"] == "neverLoggedIn"

    body = _api(client, {"action": "USER_ADD", "token": token, "data": {"email": "new@example.com", "fullName": "New Hire", "role": "it"}}).get_json()
    assert body["ok"] is False
    assert body["error"]["code"] == "ROLE_CONFLICT"
    assert _user("new@example.com").role == "employee"

    body = _api(
        client,
        {"action": "USER_ADD", "token": token, "data": {"email": "new@example.com", "fullName": "New Hire", "role": "it", "confirmReplace": True}},
    ).get_json()
    assert body["ok"] is True
    assert body["data"]["created"] is False
    assert _user("new@example.com").role == "it"


def test_user_add_skip_policy(app_client, monkeypatch):
    app, client = app_client
    token = _admin(client)
    monkeypatch.setattr(app.config["CFG"], "SINGLE_ROLE_CONFLICT_POLICY", "skip")

    _api(client, {"action": "USER_ADD", "token": token, "data": {"email": "keep@example.com", "fullName": "Keep", "role": "hr"}})
    body = _api(client, {"action": "USER_ADD", "token": token, "data": {"email": "keep@example.com", "fullName": "Keep", "role": "admin"}}).get_json()
    assert body["ok"] is True
    assert body["data"]["skipped"] is True
    assert _user("keep@example.com").role == "hr"


def test_user_add_validation(app_client):
    _app, client = app_client
    token = _admin(client)

    for data in (
        {"email": "bad", "fullName": "X", "role": "hr"},
        {"email": "x@example.com", "fullName": "", "role": "hr"},
        {"email": "x@example.com", "fullName": "X", "role": "manager"},
    ):
        body = _api(client, {"action": "USER_ADD", "token": token, "data": data}).get_json()
        assert body["error"]["code"] == "INVALID_ARGUMENT"


def test_bulk_upload_base64_counts_added_and_skipped(app_client):
    _app, client = app_client
    token = _admin(client)

    payload = {"fileName": "users.csv", "fileBase64": base64.b64encode(CSV_OK.encode("utf-8")).decode("ascii")}
    body = _api(client, {"action": "USERS_BULK_UPLOAD", "token": token, "data": payload}).get_json()
    assert body["ok"] is True
    assert body["data"] == {"added": 2, "skipped": 2}

    assert _user("one@example.com").role == "employee"
    assert _user("two@example.com").fullName == "Two Person"
    assert _user("three@example.com") is None


def test_bulk_upload_multipart_route(app_client):
    _app, client = app_client
    token = _admin(client)

    res = client.post(
        "/api/admin/users/bulk-upload",
        data={"file": (io.BytesIO(CSV_OK.encode("utf-8")), "users.csv")},
        content_type="multipart/form-data",
        headers={"Authorization": f"Bearer {token}"},
    )
    body = res.get_json()
    assert body["ok"] is True
    assert body["data"] == {"added": 2, "skipped": 2}


def test_bulk_upload_rejects_bad_header_and_type(app_client):
    _app, client = app_client
    token = _admin(client)

    bad = base64.b64encode(b"email,name\na@example.com,A\n").decode("ascii")
    body = _api(client, {"action": "USERS_BULK_UPLOAD", "token": token, "data": {"fileName": "users.csv", "fileBase64": bad}}).get_json()
    assert body["error"]["code"] == "INVALID_ARGUMENT"

    body = _api(client, {"action": "USERS_BULK_UPLOAD", "token": token, "data": {"fileName": "users.txt", "fileBase64": bad}}).get_json()
    assert body["error"]["code"] == "INVALID_ARGUMENT"


def test_bulk_upload_rejects_legacy_xls(app_client):
    _app, client = app_client
    token = _admin(client)

    blob = base64.b64encode(b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 64).decode("ascii")
    body = _api(client, {"action": "USERS_BULK_UPLOAD", "token": token, "data": {"fileName": "users.xls", "fileBase64": blob}}).get_json()
    assert body["ok"] is False
    assert body["error"]["code"] == "INVALID_ARGUMENT"
    assert ".xlsx" in body["error"]["message"]


def test_bulk_upload_conflict_policies(app_client, monkeypatch):
    app, client = app_client
    token = _admin(client)
    _api(client, {"action": "USER_ADD", "token": token, "data": {"email": "two@example.com", "fullName": "Two", "role": "it"}})

    monkeypatch.setattr(app.config["CFG"], "BULK_ROLE_CONFLICT_POLICY", "skip")
    payload = {"fileName": "users.csv", "fileBase64": base64.b64encode(CSV_OK.encode("utf-8")).decode("ascii")}
    body = _api(client, {"action": "USERS_BULK_UPLOAD", "token": token, "data": payload}).get_json()
    assert body["data"] == {"added": 1, "skipped": 3}
    assert _user("two@example.com").role == "it"

    monkeypatch.setattr(app.config["CFG"], "BULK_ROLE_CONFLICT_POLICY", "overwrite")
    body = _api(client, {"action": "USERS_BULK_UPLOAD", "token": token, "data": payload}).get_json()
    assert body["data"] == {"added": 2, "skipped": 2}
    assert _user("two@example.com").role == "hr"


def test_user_delete_cascades(app_client):
    _app, client = app_client
    token = _admin(client)
    _seed_account("leaver@example.com", role="employee")
    emp = _login(client, "leaver@example.com")

    data = {
        "lastWorkingDay": "2999-01-01",
        "resignationType": "Retirement",
        "noticeAcknowledged": True,
    }
    rid = _api(client, {"action": "RESIGNATION_SUBMIT", "token": emp, "data": data}).get_json()["data"]["request"]["requestId"]

    body = _api(client, {"action": "USER_DELETE", "token": token, "data": {"email": "leaver@example.com"}}).get_json()
    assert body["ok"] is True
    assert body["data"]["requestsDeleted"] == 1

    with SessionLocal() as db:
        assert db.get(User, "leaver@example.com") is None
        assert db.get(Request, rid) is None
        assert db.execute(select(RequestDecision).where(RequestDecision.requestId == rid)).scalars().all() == []
        assert db.execute(select(AuthAccount).where(AuthAccount.email == "leaver@example.com")).scalars().all() == []
        assert db.execute(select(DbSession).where(DbSession.userId == "leaver@example.com")).scalars().all() == []

    res = _api(client, {"action": "MY_REQUESTS_LIST", "token": emp, "data": {}})
    assert res.status_code == 401


def test_admin_cannot_delete_self_and_non_admin_is_forbidden(app_client):
    _app, client = app_client
    token = _admin(client)

    body = _api(client, {"action": "USER_DELETE", "token": token, "data": {"userId": "admin@example.com"}}).get_json()
    assert body["error"]["code"] == "FAILED_PRECONDITION"

    _seed_account("hr@example.com", role="hr")
    hr = _login(client, "hr@example.com")
    res = _api(client, {"action": "USERS_LIST", "token": hr, "data": {}})
    assert res.status_code == 403

    body = _api(client, {"action": "USERS_LIST", "token": token, "data": {"role": "hr"}}).get_json()
    assert [u["email"] for u in body["data"]["items"]] == ["hr@example.com"]


def test_user_update_changes_role(app_client):
    _app, client = app_client
    token = _admin(client)
    _api(client, {"action": "USER_ADD", "token": token, "data": {"email": "mover@example.com", "fullName": "Mover", "role": "employee"}})

    body = _api(client, {"action": "USER_UPDATE", "token": token, "data": {"email": "mover@example.com", "role": "it"}}).get_json()
    assert body["data"]["user"]["role"] == "it"

    body = _api(client, {"action": "USER_UPDATE", "token": token, "data": {"email": "mover@example.com"}}).get_json()
    assert body["error"]["code"] == "INVALID_ARGUMENT"

    body = _api(client, {"action": "USER_UPDATE", "token": token, "data": {"email": "ghost@example.com", "role": "it"}}).get_json()
    assert body["error"]["code"] == "NOT_FOUND"
