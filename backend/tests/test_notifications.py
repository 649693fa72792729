from __future__ import annotations

from types import SimpleNamespace
from uuid import uuid4

from conftest import make_plan, make_user

from app.models import Notification
from app.services.plan_events import GRADE_RECEIVED, UNLOCK_APPROVED, emit, plan_event
from app.celery_app import store_plan_notifications


def test_grade_event_notifies_leaders_and_assignee_but_not_actor(db) -> None:
    leader = make_user(db, role="leader")
    staff = make_user(db, role="staff", full_name="Siti Rahma")
    bystander = make_user(db, role="staff", full_name="Budi Santoso")
    make_user(db, role="leader", department_code="FIN")
    admin = make_user(db, role="admin", department_code=None)
    plan = make_plan(db, submission_status="submitted", quality_score=90, pic="siti rahma")

    event = plan_event(GRADE_RECEIVED, plan=plan, actor=admin, message="Graded 90/100", quality_score=90)
    created = store_plan_notifications(db, [event.to_payload()])
    db.commit()

    assert created == 2
    rows = db.query(Notification).all()
    assert {row.user_id for row in rows} == {leader.id, staff.id}
    assert bystander.id not in {row.user_id for row in rows}
    assert all(row.type == "GRADE_RECEIVED" and row.meta_data == {"quality_score": 90} for row in rows)


def test_redelivered_event_is_stored_once(db) -> None:
    leader = make_user(db, role="leader")
    plan = make_plan(db)
    payload = plan_event(GRADE_RECEIVED, plan=plan, actor=None, message="Graded").to_payload()

    assert store_plan_notifications(db, [payload]) == 1
    db.commit()
    assert store_plan_notifications(db, [payload]) == 0
    assert db.query(Notification).filter(Notification.user_id == leader.id).count() == 1


def test_unlock_event_goes_to_requester_only(db) -> None:
    make_user(db, role="leader")
    requester = make_user(db, role="leader", full_name="Budi Santoso")
    admin = make_user(db, role="admin", department_code=None)
    plan = make_plan(db, submission_status="submitted", unlock_status="pending", unlock_requested_by=requester.id)

    event = plan_event(UNLOCK_APPROVED, plan=plan, actor=admin, message="Approved", requested_by=str(requester.id))
    store_plan_notifications(db, [event.to_payload()])
    db.commit()

    assert [row.user_id for row in db.query(Notification).all()] == [requester.id]


def test_emit_swallows_dispatcher_failures() -> None:
    def _broken(_events):
        raise RuntimeError("broker down")

    plan = SimpleNamespace(id=uuid4())
    emit(_broken, [plan_event(GRADE_RECEIVED, plan=plan, actor=None, message="x")])
