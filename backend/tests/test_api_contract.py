from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import make_plan, make_user

from app.auth import get_current_user, get_password_hash, get_permission_engine
from app.database import get_db
from app.main import app
from app.routers.auth import get_login_throttle
from app.services.plan_events import get_event_dispatcher


class _ThrottleStub:
    def __init__(self):
        self.failures = []
        self.cleared = []

    def check(self, *, ip, email):
        return None

    def register_failure(self, *, email):
        self.failures.append(email)

    def clear(self, *, email):
        self.cleared.append(email)


@pytest.fixture()
def api(db, permissions):
    state = {"user": None, "events": [], "throttle": _ThrottleStub()}

    def _db():
        yield db

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_current_user] = lambda: state["user"]
    app.dependency_overrides[get_permission_engine] = lambda: permissions
    app.dependency_overrides[get_event_dispatcher] = lambda: state["events"].extend
    app.dependency_overrides[get_login_throttle] = lambda: state["throttle"]
    try:
        yield TestClient(app), state
    finally:
        app.dependency_overrides.clear()


def test_finalize_then_status_endpoints(api, db) -> None:
    client, state = api
    state["user"] = make_user(db, role="leader")
    make_plan(db, status="Achieved")
    make_plan(db, status="Not Achieved")

    response = client.post("/api/v1/departments/BAS/months/2026/January/finalize")
    assert response.status_code == 200
    assert response.json()["success_count"] == 2

    summary = client.get("/api/v1/departments/BAS/months/2026/jan/status").json()
    assert summary["submitted_count"] == 2
    assert summary["can_recall"] is True
    assert summary["can_finalize"] is False


def test_grading_recalled_item_returns_problem_details(api, db) -> None:
    client, state = api
    state["user"] = make_user(db, role="admin", department_code=None)
    plan = make_plan(db)

    response = client.post(f"/api/v1/grading/{plan.id}", json={"decision": "approve", "quality_score": 90})

    assert response.status_code == 409
    assert response.headers["content-type"].startswith("application/problem+json")
    assert response.json()["code"] == "ITEM_RECALLED"


def test_grade_endpoint_returns_plan_and_queues_event(api, db) -> None:
    client, state = api
    state["user"] = make_user(db, role="admin", department_code=None)
    plan = make_plan(db, submission_status="submitted")

    response = client.post(f"/api/v1/grading/{plan.id}", json={"decision": "approve", "quality_score": 77})

    assert response.status_code == 200
    body = response.json()
    assert body["quality_score"] == 77
    assert body["is_editable"] is False
    assert [event.type for event in state["events"]] == ["GRADE_RECEIVED"]


def test_locked_edit_is_rejected_with_precondition_failed(api, db) -> None:
    client, state = api
    state["user"] = make_user(db, role="leader")
    plan = make_plan(db, submission_status="submitted")

    response = client.patch(f"/api/v1/action-plans/{plan.id}", json={"remark": "late"})

    assert response.status_code == 409
    assert response.json()["code"] == "PRECONDITION_FAILED"


def test_unlock_request_and_batch_approval(api, db) -> None:
    client, state = api
    leader = make_user(db, role="leader")
    admin = make_user(db, role="admin", department_code=None)
    make_plan(db, submission_status="submitted")

    state["user"] = leader
    response = client.post(
        "/api/v1/unlock-requests",
        json={"department_code": "BAS", "month": "January", "year": 2026, "reason": "Wrong link"},
    )
    assert response.status_code == 201
    assert response.json()["success_count"] == 1

    state["user"] = admin
    batches = client.get("/api/v1/unlock-requests").json()
    assert len(batches) == 1
    assert batches[0]["requester_name"] == leader.full_name

    response = client.post(
        "/api/v1/unlock-requests/approve",
        json={
            "department_code": "BAS",
            "month": "January",
            "year": 2026,
            "requested_by": str(leader.id),
            "duration_hours": 24,
        },
    )
    assert response.status_code == 200
    assert [item["unlock_status"] for item in response.json()] == ["approved"]
    assert response.json()[0]["is_editable"] is True


def test_login_returns_token_and_clears_failures(api, db) -> None:
    client, state = api
    user = make_user(db, role="staff", email="staff@example.com")
    user.password_hash = get_password_hash("s3cret-pass")
    db.commit()

    bad = client.post("/api/v1/auth/login", json={"email": "staff@example.com", "password": "nope"})
    good = client.post("/api/v1/auth/login", json={"email": " Staff@Example.com ", "password": "s3cret-pass"})

    assert bad.status_code == 401
    assert state["throttle"].failures == ["staff@example.com"]
    assert good.status_code == 200
    assert good.json()["user"]["role"] == "staff"
    assert state["throttle"].cleared == ["staff@example.com"]


def test_health_endpoint(api) -> None:
    client, _ = api
    assert client.get("/api/v1/system/health").json()["status"] == "ok"
