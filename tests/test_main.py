from types import SimpleNamespace

import pytest
from starlette.websockets import WebSocketDisconnect

from niramay.api import admin as admin_api
from niramay.models import EcoStoreItem, Notification, Profile, Report, RewardTransaction
from niramay.services.media import supabase

FAKE_JPEG = ("evidence.jpg", b"\xff\xd8\xff\xdbFAKEJPEGDATA", "image/jpeg")


def test_health(client):
    resp = client.get("/health/")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def _sign_up(client, email, aadhar="123456789012", **extra):
    payload = {"email": email, "password": "secret123", "name": "Ravi", "aadhar": aadhar, "ward": "Ward 12"}
    payload.update(extra)
    return client.post("/auth/sign-up/", json=payload)


def _sign_in(client, email):
    return client.post("/auth/sign-in/", json={"email": email, "password": "secret123"})


def test_sign_up_sign_in_and_profile_bootstrap(client, db):
    # Note: We use a valid email domain to bypass our burner shield
    resp1 = _sign_up(client, "ravi@gmail.com")
    assert resp1.status_code == 201, resp1.text
    assert resp1.json()["user_id"]

    resp2 = _sign_in(client, "ravi@gmail.com")
    assert resp2.status_code == 200, resp2.text
    body = resp2.json()
    assert body["access_token"]
    assert body["role"] == "citizen"
    assert body["eco_points"] == 0

    me = client.get("/me/", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()["name"] == "Ravi"
    assert me.json()["ward"] == "Ward 12"
    assert db.get(Profile, body["user_id"]).aadhar == "123456789012"


@pytest.mark.parametrize("requested_role", ["admin", "subworker"])
def test_self_sign_up_is_always_citizen(client, requested_role):
    assert _sign_up(client, "mallory@gmail.com", role=requested_role).status_code == 201
    body = _sign_in(client, "mallory@gmail.com").json()
    assert body["role"] == "citizen"

    headers = {"Authorization": f"Bearer {body['access_token']}"}
    assert client.get("/admin/integrity/", headers=headers).status_code == 403
    assert client.get("/worker/tasks/", headers=headers).status_code == 403


def test_staff_role_comes_from_app_metadata(client):
    _sign_up(client, "supervisor@gmail.com")
    _, user = supabase.auth.accounts["supervisor@gmail.com"]
    user.app_metadata["role"] = "subworker"

    body = _sign_in(client, "supervisor@gmail.com").json()
    assert body["role"] == "subworker"
    profile = client.get("/me/", headers={"Authorization": f"Bearer {body['access_token']}"}).json()
    assert profile["role"] == "subworker"


def test_duplicate_aadhar_rejected(client):
    _sign_up(client, "first@gmail.com", aadhar="999988887777")
    _sign_in(client, "first@gmail.com")

    resp = _sign_up(client, "second@gmail.com", aadhar="999988887777")
    assert resp.status_code == 409
    assert resp.json()["reason"] == "An account with this Aadhaar number already exists"
    assert "second@gmail.com" not in supabase.auth.accounts


@pytest.mark.parametrize("aadhar", ["12345", "12345678901a", ""])
def test_malformed_aadhar_rejected(client, aadhar):
    assert _sign_up(client, "x@gmail.com", aadhar=aadhar).status_code == 422


def test_burner_email_rejected(client):
    resp = _sign_up(client, "someone@mailinator.com")
    assert resp.status_code == 422


def test_bad_credentials_and_tokens_are_unauthorized(client):
    _sign_up(client, "a@gmail.com")
    resp = client.post("/auth/sign-in/", json={"email": "a@gmail.com", "password": "wrong-pass"})
    assert resp.status_code == 401

    assert client.get("/me/").status_code == 401
    assert client.get("/me/", headers={"Authorization": "Bearer not-a-session"}).status_code == 401


def test_citizen_report_upload(client, db, make_profile, auth_headers):
    citizen = make_profile("citizen", ward="Ward 7")

    resp = client.post(
        "/reports/",
        data={"latitude": "19.0760", "longitude": "72.8777", "address": "Near the bus depot, Andheri East, Mumbai"},
        files=[("images", FAKE_JPEG), ("images", ("second.jpg", b"\xff\xd8\xff\xdbMORE", "image/jpeg"))],
        headers=auth_headers(citizen),
    )
    assert resp.status_code == 201, resp.text
    report = resp.json()["report"]
    # No AI key configured: the default medium assessment applies
    assert report["priority_level"] == "medium"
    assert report["eco_points"] == 20
    assert report["status"] == "submitted"
    assert report["ward"] == "Ward 7"
    assert len(report["images"]) == 2
    assert all(url.startswith("https://storage.example.com/report-images/reports/") for url in report["images"])

    mine = client.get("/reports/mine/", headers=auth_headers(citizen))
    assert [r["id"] for r in mine.json()] == [report["id"]]


def test_report_upload_rejects_unknown_image_and_non_citizens(client, make_profile, auth_headers):
    citizen = make_profile("citizen")
    worker = make_profile("subworker")
    data = {"latitude": "19.07", "longitude": "72.87"}

    resp = client.post("/reports/", data=data, files=[("images", ("notes.txt", b"hello", "text/plain"))],
                       headers=auth_headers(citizen))
    assert resp.status_code == 400

    resp = client.post("/reports/", data=data, files=[("images", FAKE_JPEG)], headers=auth_headers(worker))
    assert resp.status_code == 403


def test_notifications_read_flow(client, db, make_profile, auth_headers):
    citizen = make_profile("citizen")
    other = make_profile("citizen")
    for i in range(3):
        db.add(Notification(user_id=citizen.id, title=f"T{i}", message="m", type="info"))
    foreign = Notification(user_id=other.id, title="Other", message="m", type="info")
    db.add(foreign)
    db.commit()

    headers = auth_headers(citizen)
    listed = client.get("/notifications/", headers=headers).json()
    assert len(listed) == 3

    assert client.post(f"/notifications/{listed[0]['id']}/read/", headers=headers).status_code == 200
    # Someone else's notification is invisible
    assert client.post(f"/notifications/{foreign.id}/read/", headers=headers).status_code == 404

    resp = client.post("/notifications/read-all/", headers=headers)
    assert resp.json()["updated"] == 2
    assert all(n["is_read"] for n in client.get("/notifications/", headers=headers).json())


def test_leaderboard_ranks_citizens_by_points(client, make_profile):
    make_profile("citizen", name="Low", eco_points=10)
    make_profile("citizen", name="High", eco_points=90)
    make_profile("admin", name="Admin", eco_points=500)

    board = client.get("/leaderboard/").json()
    assert [(e["rank"], e["name"]) for e in board] == [(1, "High"), (2, "Low")]


def test_store_redeem_endpoint(client, db, make_profile, auth_headers):
    citizen = make_profile("citizen", eco_points=100, address="12 MG Road, Indiranagar, Bengaluru")
    item = EcoStoreItem(name="Compost Bin", point_cost=40, quantity=2, category="compost", image_url="x")
    db.add(item)
    db.commit()
    headers = auth_headers(citizen)

    items = client.get("/store/items/").json()
    assert [i["name"] for i in items] == ["Compost Bin"]

    check = client.get(f"/store/items/{item.id}/check/", params={"quantity": 3}, headers=headers).json()
    assert check["can_redeem"] is False

    resp = client.post("/store/redeem/", json={"item_id": item.id, "quantity": 2}, headers=headers)
    assert resp.status_code == 200, resp.text
    assert resp.json()["order_details"]["total_points_spent"] == 80

    resp = client.post("/store/redeem/", json={"item_id": item.id, "quantity": 1}, headers=headers)
    assert resp.status_code == 409
    assert resp.json()["error"] == "insufficient_inventory"
    assert client.get("/store/items/").json() == []
    assert client.get("/store/redemptions/", headers=headers).json()[0]["item_name"] == "Compost Bin"


def test_full_task_lifecycle(client, db, make_profile, auth_headers):
    citizen = make_profile("citizen", ward="Ward 3")
    worker = make_profile("subworker", ward="Ward 3", assigned_ward="Ward 3")
    admin = make_profile("admin")
    report = Report(user_id=citizen.id, images=["https://img"], lat=12.9716, lng=77.5946, ward="Ward 3",
                    status="submitted", priority_level="high", eco_points=30)
    db.add(report)
    db.commit()

    admin_headers = auth_headers(admin)
    worker_headers = auth_headers(worker)

    check = client.get(f"/admin/reports/{report.id}/eligibility/{worker.id}/", headers=admin_headers).json()
    assert check == {"is_eligible": True, "reason": None}

    resp = client.post(f"/admin/reports/{report.id}/assign/", json={"worker_id": worker.id}, headers=admin_headers)
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "assigned"

    assert client.patch("/worker/status/", json={"status": "offline"}, headers=worker_headers).status_code == 409

    tasks = client.get("/worker/tasks/", headers=worker_headers).json()
    assert [t["id"] for t in tasks] == [report.id]
    assert client.post(f"/worker/tasks/{report.id}/start/", headers=worker_headers).json()["status"] == "in-progress"

    far = client.post(
        f"/worker/tasks/{report.id}/proof/",
        data={"latitude": str(12.9716 + 0.001), "longitude": "77.5946"},
        files={"image": FAKE_JPEG},
        headers=worker_headers,
    )
    assert far.status_code == 400
    assert "Current distance" in far.json()["reason"]

    near = client.post(
        f"/worker/tasks/{report.id}/proof/",
        data={"latitude": str(12.9716 + 0.0002), "longitude": "77.5946"},
        files={"image": FAKE_JPEG},
        headers=worker_headers,
    )
    assert near.status_code == 200, near.text
    assert near.json()["report"]["status"] == "submitted_for_approval"

    resp = client.post(f"/admin/reports/{report.id}/approve/", headers=admin_headers)
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "approved"

    db.expire_all()
    assert citizen.eco_points == 30
    assert worker.status == "available"
    assert worker.current_task_id is None
    assert worker.task_completion_count == 1
    assert db.query(RewardTransaction).filter_by(user_id=citizen.id).one().points == 30

    stats = client.get("/admin/workers/stats/", headers=admin_headers).json()
    assert stats["available"] == 1
    assert stats["average_completion_rate"] == 1.0


def test_reject_sends_task_back(client, db, make_profile, auth_headers):
    citizen = make_profile("citizen")
    worker = make_profile("subworker", status="busy")
    admin = make_profile("admin")
    report = Report(user_id=citizen.id, images=["https://img"], lat=1.0, lng=1.0, status="submitted_for_approval",
                    assigned_to=worker.id, priority_level="low", eco_points=10)
    db.add(report)
    db.commit()
    worker.current_task_id = report.id
    db.commit()

    resp = client.post(f"/admin/reports/{report.id}/reject/", json={"comment": "Bags left behind"},
                       headers=auth_headers(admin))
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "assigned"
    assert resp.json()["rejection_comment"] == "Bags left behind"

    db.expire_all()
    assert citizen.eco_points == 0
    note = db.query(Notification).filter_by(user_id=worker.id).one()
    assert note.type == "rejection"


def test_admin_routes_require_admin(client, make_profile, auth_headers):
    citizen = make_profile("citizen")
    assert client.get("/admin/workers/", headers=auth_headers(citizen)).status_code == 403


def test_integrity_endpoints(client, make_profile, auth_headers):
    admin = make_profile("admin")
    make_profile("citizen", eco_points=-5)
    headers = auth_headers(admin)

    scan = client.get("/admin/integrity/", headers=headers).json()
    assert scan["total_issues"] >= 1
    profiles = next(r for r in scan["results"] if r["table"] == "profiles")
    assert profiles["issues_found"] == 1

    fixed = client.post("/admin/integrity/fix/", headers=headers).json()
    assert any(f.startswith("Fixed negative eco_points") for f in fixed["fixes_applied"])


def test_integrity_fix_publishes_roster(client, db, make_profile, auth_headers, monkeypatch):
    admin = make_profile("admin")
    confused = make_profile("subworker", status="sleeping")
    published = []

    async def record(session):
        published.append({w.id: w.status for w in session.query(Profile).filter_by(role="subworker")})

    monkeypatch.setattr(client.app.state.roster, "publish_roster", record)

    fixed = client.post("/admin/integrity/fix/", headers=auth_headers(admin)).json()
    assert f"Fixed invalid status for subworker {confused.id}" in fixed["fixes_applied"]
    assert published == [{confused.id: "available"}]

    # Nothing left to fix, nothing to announce
    client.post("/admin/integrity/fix/", headers=auth_headers(admin))
    assert len(published) == 1


def test_roster_websocket(client, session_factory, make_profile, monkeypatch):
    admin = make_profile("admin")
    citizen = make_profile("citizen")
    make_profile("subworker", name="Asha")
    monkeypatch.setattr(admin_api, "SessionLocal", session_factory)
    supabase.auth.sessions["admin-token"] = SimpleNamespace(id=admin.id, email=admin.email)
    supabase.auth.sessions["citizen-token"] = SimpleNamespace(id=citizen.id, email=citizen.email)

    with client.websocket_connect("/admin/ws/workers?token=admin-token") as ws:
        snapshot = ws.receive_json()
        assert snapshot["event_type"] == "roster"
        assert [w["name"] for w in snapshot["workers"]] == ["Asha"]
        assert snapshot["stats"]["total"] == 1
        ws.send_text("ping")
        assert ws.receive_text() == "pong"

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/admin/ws/workers?token=citizen-token") as ws:
            ws.receive_text()
