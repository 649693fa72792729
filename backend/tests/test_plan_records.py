from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import NOW, make_actor, make_plan

from app.domain_errors import DomainError
from app.models import ActionPlan, AuditLog, ProgressLog
from app.services.change_log import describe_changes
from app.use_cases.plan_records import (
    bulk_create_plans_use_case,
    create_plan_use_case,
    list_deleted_plans_use_case,
    list_plans_use_case,
    permanently_delete_plan_use_case,
    plan_history_use_case,
    restore_plan_use_case,
    soft_delete_plan_use_case,
    update_plan_status_use_case,
    update_plan_use_case,
)
from app.use_cases.unlock_workflow import revoke_unlock_access_use_case


def _admin():
    return make_actor(role="admin", department_code=None, full_name="System Administrator")


def test_create_plan_starts_as_pending_draft(db, permissions) -> None:
    leader = make_actor()

    plan = create_plan_use_case(
        db=db,
        permissions=permissions,
        current_user=leader,
        department_code="BAS",
        fields={"month": "feb", "year": 2026, "action_plan": "  Publish onboarding checklist  "},
    )

    assert plan.month == "February"
    assert plan.action_plan == "Publish onboarding checklist"
    assert plan.status == "Pending"
    assert plan.submission_status == "draft"
    assert plan.unlock_status == "none"
    assert db.query(AuditLog).filter(AuditLog.change_type == "CREATED").count() == 1


def test_category_and_area_focus_are_stored_and_tracked(db, permissions) -> None:
    leader = make_actor()

    plan = create_plan_use_case(
        db=db,
        permissions=permissions,
        current_user=leader,
        department_code="BAS",
        fields={
            "month": "January",
            "year": 2026,
            "action_plan": "Weekly follow-up on receivables",
            "category": " High Priority ",
            "area_focus": "Collections",
        },
    )
    assert plan.category == "High Priority"
    assert plan.area_focus == "Collections"

    updated = update_plan_use_case(
        db=db,
        permissions=permissions,
        plan_id=plan.id,
        current_user=leader,
        changes={"category": "Medium Priority", "area_focus": "Cash flow"},
        now=NOW,
        dispatch=None,
    )

    assert updated.category == "Medium Priority"
    assert updated.area_focus == "Cash flow"
    entry = db.query(AuditLog).filter(AuditLog.change_type == "UPDATED").one()
    assert entry.description == (
        "Updated Category: 'High Priority' -> 'Medium Priority'; Area Focus: 'Collections' -> 'Cash flow'"
    )


def test_create_plan_rejects_legacy_status(db, permissions) -> None:
    with pytest.raises(DomainError) as exc:
        create_plan_use_case(
            db=db,
            permissions=permissions,
            current_user=make_actor(),
            department_code="BAS",
            fields={"month": "January", "year": 2026, "action_plan": "x", "status": "Internal Review"},
        )

    assert exc.value.code == "VALIDATION_FAILED"


def test_staff_cannot_create_plans(db, permissions) -> None:
    with pytest.raises(DomainError) as exc:
        create_plan_use_case(
            db=db,
            permissions=permissions,
            current_user=make_actor(role="staff"),
            department_code="BAS",
            fields={"month": "January", "year": 2026, "action_plan": "x"},
        )

    assert exc.value.code == "PERMISSION_DENIED"


def test_bulk_create_is_all_or_nothing(db, permissions) -> None:
    items = [
        {"department_code": "BAS", "month": "January", "year": 2026, "action_plan": "First"},
        {"department_code": "BAS", "month": "Janvier", "year": 2026, "action_plan": "Second"},
        {"department_code": "FIN", "month": "January", "year": 2026, "action_plan": "Third"},
    ]

    with pytest.raises(DomainError) as exc:
        bulk_create_plans_use_case(db=db, permissions=permissions, current_user=make_actor(), items=items)

    assert exc.value.code == "VALIDATION_FAILED"
    assert [error["index"] for error in exc.value.details["errors"]] == [1, 2]
    assert db.query(ActionPlan).count() == 0


def test_bulk_create_by_admin_spans_departments(db, permissions) -> None:
    items = [
        {"department_code": "BAS", "month": "January", "year": 2026, "action_plan": "First"},
        {"department_code": "FIN", "month": "March", "year": 2026, "action_plan": "Second"},
    ]

    plans = bulk_create_plans_use_case(db=db, permissions=permissions, current_user=_admin(), items=items)

    assert {plan.department_code for plan in plans} == {"BAS", "FIN"}
    assert db.query(AuditLog).filter(AuditLog.change_type == "CREATED").count() == 2


def test_update_records_change_description_and_emits_status_event(db, permissions) -> None:
    plan = make_plan(db, status="Pending", remark=None)
    events = []

    updated = update_plan_use_case(
        db=db,
        permissions=permissions,
        plan_id=plan.id,
        current_user=make_actor(),
        changes={"status": "On Progress", "remark": "A" * 40},
        now=NOW,
        dispatch=events.extend,
    )

    assert updated.status == "On Progress"
    entry = db.query(AuditLog).filter(AuditLog.change_type == "UPDATED").one()
    assert entry.description == (
        "Updated Status: 'Pending' -> 'On Progress'; Remark: '(empty)' -> '" + "A" * 30 + "...'"
    )
    assert [event.type for event in events] == ["STATUS_CHANGE"]
    assert events[0].details == {"old_status": "Pending", "new_status": "On Progress"}


def test_locked_item_cannot_be_edited_without_unlock(db, permissions) -> None:
    plan = make_plan(db, submission_status="submitted")

    with pytest.raises(DomainError) as exc:
        update_plan_use_case(
            db=db,
            permissions=permissions,
            plan_id=plan.id,
            current_user=make_actor(),
            changes={"remark": "late fix"},
            now=NOW,
            dispatch=None,
        )

    assert exc.value.code == "PRECONDITION_FAILED"


def test_stale_edit_after_concurrent_revoke_is_rejected(session_factory, db, permissions) -> None:
    plan = make_plan(
        db,
        submission_status="submitted",
        unlock_status="approved",
        approved_until=NOW + timedelta(hours=4),
        remark="before unlock",
    )
    plan_id = plan.id

    editor_session = session_factory()
    admin_session = session_factory()
    try:
        stale = editor_session.query(ActionPlan).filter(ActionPlan.id == plan_id).one()
        assert stale.unlock_status == "approved"

        revoke_unlock_access_use_case(
            db=admin_session, permissions=permissions, plan_id=plan_id, current_user=_admin(), now=NOW, dispatch=None
        )

        # The editor still sees the open window it read before the revoke.
        assert stale.unlock_status == "approved"
        with pytest.raises(DomainError) as exc:
            update_plan_use_case(
                db=editor_session,
                permissions=permissions,
                plan_id=plan_id,
                current_user=make_actor(),
                changes={"remark": "after unlock"},
                now=NOW,
                dispatch=None,
            )
        assert exc.value.code == "PRECONDITION_FAILED"
    finally:
        editor_session.close()
        admin_session.close()

    db.expire_all()
    stored = db.query(ActionPlan).filter(ActionPlan.id == plan_id).one()
    assert stored.remark == "before unlock"
    assert stored.unlock_status == "none"
    assert db.query(AuditLog).filter(AuditLog.change_type == "UPDATED").count() == 0


def test_stale_progress_update_after_concurrent_revoke_is_rejected(session_factory, db, permissions) -> None:
    staff = make_actor(role="staff", full_name="Siti Rahma")
    plan = make_plan(
        db,
        status="On Progress",
        pic="Siti Rahma",
        submission_status="submitted",
        unlock_status="approved",
        approved_until=NOW + timedelta(hours=4),
    )
    plan_id = plan.id

    staff_session = session_factory()
    admin_session = session_factory()
    try:
        staff_session.query(ActionPlan).filter(ActionPlan.id == plan_id).one()
        revoke_unlock_access_use_case(
            db=admin_session, permissions=permissions, plan_id=plan_id, current_user=_admin(), now=NOW, dispatch=None
        )

        with pytest.raises(DomainError) as exc:
            update_plan_status_use_case(
                db=staff_session,
                permissions=permissions,
                plan_id=plan_id,
                current_user=staff,
                status="Achieved",
                progress={"remark": "done"},
                note="Report delivered",
                now=NOW,
                dispatch=None,
            )
        assert exc.value.code == "PRECONDITION_FAILED"
    finally:
        staff_session.close()
        admin_session.close()

    db.expire_all()
    stored = db.query(ActionPlan).filter(ActionPlan.id == plan_id).one()
    assert stored.status == "On Progress"
    assert db.query(ProgressLog).count() == 0


def test_unlocked_item_is_editable_until_expiry(db, permissions) -> None:
    plan = make_plan(
        db,
        submission_status="submitted",
        unlock_status="approved",
        approved_until=NOW + timedelta(hours=1),
    )
    leader = make_actor()

    updated = update_plan_use_case(
        db=db,
        permissions=permissions,
        plan_id=plan.id,
        current_user=leader,
        changes={"remark": "fixed"},
        now=NOW,
        dispatch=None,
    )
    assert updated.remark == "fixed"

    with pytest.raises(DomainError) as exc:
        update_plan_use_case(
            db=db,
            permissions=permissions,
            plan_id=plan.id,
            current_user=leader,
            changes={"remark": "too late"},
            now=NOW + timedelta(hours=2),
            dispatch=None,
        )
    assert exc.value.code == "PRECONDITION_FAILED"


def test_staff_updates_status_on_own_plan_only(db, permissions) -> None:
    staff = make_actor(role="staff", full_name="Siti Rahma")
    own = make_plan(db, status="Pending", pic="siti rahma")
    other = make_plan(db, status="Pending", pic="Budi Santoso")

    updated = update_plan_status_use_case(
        db=db,
        permissions=permissions,
        plan_id=own.id,
        current_user=staff,
        status="Achieved",
        progress={"outcome_link": "https://example.com/report"},
        now=NOW,
        dispatch=None,
    )
    assert updated.status == "Achieved"
    assert updated.outcome_link == "https://example.com/report"

    with pytest.raises(DomainError) as exc:
        update_plan_status_use_case(
            db=db,
            permissions=permissions,
            plan_id=other.id,
            current_user=staff,
            status="Achieved",
            now=NOW,
            dispatch=None,
        )
    assert exc.value.code == "PERMISSION_DENIED"


def test_progress_update_is_logged_and_shown_in_history(db, permissions) -> None:
    staff = make_actor(role="staff", full_name="Siti Rahma")
    plan = make_plan(db, status="On Progress", pic="Siti Rahma")

    update_plan_status_use_case(
        db=db,
        permissions=permissions,
        plan_id=plan.id,
        current_user=staff,
        progress={"remark": "Survey sent to 40 customers"},
        note="Waiting on replies from the north region",
        now=NOW,
        dispatch=None,
    )
    update_plan_status_use_case(
        db=db,
        permissions=permissions,
        plan_id=plan.id,
        current_user=staff,
        progress={"outcome_link": "https://example.com/survey"},
        now=NOW,
        dispatch=None,
    )

    logs = db.query(ProgressLog).filter(ProgressLog.action_plan_id == plan.id).all()
    assert sorted(log.message for log in logs) == [
        "Updated Evidence: '(empty)' -> 'https://example.com/survey'",
        "Waiting on replies from the north region",
    ]
    assert {log.type for log in logs} == {"progress_update"}
    assert {log.user_name for log in logs} == {"Siti Rahma"}

    history = plan_history_use_case(db=db, plan_id=plan.id, current_user=staff)
    assert sorted(entry["kind"] for entry in history) == ["audit", "audit", "progress", "progress"]
    progress_notes = {entry["description"] for entry in history if entry["kind"] == "progress"}
    assert "Waiting on replies from the north region" in progress_notes


def test_status_only_update_writes_no_progress_log(db, permissions) -> None:
    plan = make_plan(db, status="Pending")

    update_plan_status_use_case(
        db=db,
        permissions=permissions,
        plan_id=plan.id,
        current_user=make_actor(),
        status="On Progress",
        now=NOW,
        dispatch=None,
    )

    assert db.query(ProgressLog).count() == 0


def test_status_update_rejects_unknown_progress_fields(db, permissions) -> None:
    plan = make_plan(db)

    with pytest.raises(DomainError) as exc:
        update_plan_status_use_case(
            db=db,
            permissions=permissions,
            plan_id=plan.id,
            current_user=make_actor(),
            progress={"quality_score": 100},
            now=NOW,
            dispatch=None,
        )

    assert exc.value.code == "VALIDATION_FAILED"


def test_soft_delete_requires_reason_and_restore_brings_item_back(db, permissions) -> None:
    plan = make_plan(db, status="Pending")
    leader = make_actor(full_name="Budi Santoso")

    with pytest.raises(DomainError):
        soft_delete_plan_use_case(
            db=db, permissions=permissions, plan_id=plan.id, current_user=leader, reason="", now=NOW
        )

    deleted = soft_delete_plan_use_case(
        db=db, permissions=permissions, plan_id=plan.id, current_user=leader, reason="Duplicate", now=NOW
    )
    assert deleted.deleted_by == "Budi Santoso"
    assert list_plans_use_case(db=db, current_user=leader) == []
    assert [item.id for item in list_deleted_plans_use_case(db=db, permissions=permissions, current_user=leader)] == [
        plan.id
    ]

    restored = restore_plan_use_case(db=db, permissions=permissions, plan_id=plan.id, current_user=leader)
    assert restored.deleted_at is None
    assert [item.id for item in list_plans_use_case(db=db, current_user=leader)] == [plan.id]


def test_achieved_item_cannot_be_deleted_by_leader(db, permissions) -> None:
    plan = make_plan(db, status="Achieved")

    with pytest.raises(DomainError) as exc:
        soft_delete_plan_use_case(
            db=db, permissions=permissions, plan_id=plan.id, current_user=make_actor(), reason="cleanup", now=NOW
        )

    assert exc.value.code == "PERMISSION_DENIED"


def test_permanent_delete_requires_recycle_bin_and_keeps_history(db, permissions) -> None:
    plan = make_plan(db, status="Pending")
    plan_id = plan.id
    admin = _admin()

    with pytest.raises(DomainError) as exc:
        permanently_delete_plan_use_case(db=db, plan_id=plan_id, current_user=admin)
    assert exc.value.code == "PRECONDITION_FAILED"

    soft_delete_plan_use_case(db=db, permissions=permissions, plan_id=plan_id, current_user=admin, reason="dup", now=NOW)
    permanently_delete_plan_use_case(db=db, plan_id=plan_id, current_user=admin)

    assert db.query(ActionPlan).filter(ActionPlan.id == plan_id).first() is None
    history = plan_history_use_case(db=db, plan_id=plan_id, current_user=admin)
    assert {entry["change_type"] for entry in history} == {"DELETED", "PERMANENTLY_DELETED"}
    assert {entry["kind"] for entry in history} == {"audit"}

    with pytest.raises(DomainError) as exc:
        plan_history_use_case(db=db, plan_id=plan_id, current_user=make_actor())
    assert exc.value.code == "NOT_FOUND"


def test_permanent_delete_is_superuser_only(db) -> None:
    plan = make_plan(db, status="Pending")

    with pytest.raises(DomainError) as exc:
        permanently_delete_plan_use_case(db=db, plan_id=plan.id, current_user=make_actor())

    assert exc.value.code == "PERMISSION_DENIED"


def test_staff_list_is_limited_to_assigned_plans(db) -> None:
    staff = make_actor(role="staff", full_name="Siti Rahma")
    own = make_plan(db, assignee_id=staff.id)
    make_plan(db, pic="Siti Rahma", assignee_id=None, department_code="FIN")
    make_plan(db, pic="Budi Santoso")

    plans = list_plans_use_case(db=db, current_user=staff)

    assert [plan.id for plan in plans] == [own.id]


def test_describe_changes_truncates_long_values() -> None:
    before = {"indicator": "short", "pic": "Budi"}
    after = {"indicator": "x" * 31, "pic": "Budi"}

    assert describe_changes(before, after) == "Updated Indicator: 'short' -> '" + "x" * 30 + "...'"
    assert describe_changes(before, dict(before)) == "No tracked fields changed"


def test_describe_changes_ignores_untracked_fields() -> None:
    assert describe_changes({"evidence": "old"}, {"evidence": "new"}) == "No tracked fields changed"
