from __future__ import annotations

import pytest

from conftest import NOW, make_actor, make_plan

from app.domain_errors import DomainError
from app.models import ActionPlan, AuditLog
from app.use_cases.grading import bulk_reset_grades_use_case, grade_plan_use_case
from app.use_cases.plan_lifecycle import recall_month_use_case


def _admin():
    return make_actor(role="admin", department_code=None, full_name="Review Admin")


def _grade(db, permissions, plan, *, events=None, actor=None, **kwargs):
    return grade_plan_use_case(
        db=db,
        permissions=permissions,
        plan_id=plan.id,
        current_user=actor or _admin(),
        now=NOW,
        dispatch=(events.extend if events is not None else None),
        **kwargs,
    )


def test_approve_sets_score_and_achieved(db, permissions) -> None:
    plan = make_plan(db, status="Not Achieved", submission_status="submitted")
    events = []

    graded = _grade(db, permissions, plan, decision="approve", quality_score=88, feedback="Solid", events=events)

    assert graded.status == "Achieved"
    assert graded.quality_score == 88
    assert graded.admin_feedback == "Solid"
    assert graded.submission_status == "submitted"
    assert [event.type for event in events] == ["GRADE_RECEIVED"]
    assert events[0].details == {"quality_score": 88}
    assert db.query(AuditLog).filter(AuditLog.change_type == "APPROVED").count() == 1


def test_reject_returns_item_to_draft_with_feedback(db, permissions) -> None:
    plan = make_plan(db, submission_status="submitted", quality_score=40)
    events = []

    graded = _grade(db, permissions, plan, decision="reject", feedback="Attach evidence", events=events)

    assert graded.status == "On Progress"
    assert graded.quality_score is None
    assert graded.submission_status == "draft"
    assert graded.unlock_status == "none"
    assert graded.admin_feedback == "Attach evidence"
    assert [event.type for event in events] == ["KICKBACK"]


def test_reject_requires_feedback(db, permissions) -> None:
    plan = make_plan(db, submission_status="submitted")

    with pytest.raises(DomainError) as exc:
        _grade(db, permissions, plan, decision="reject", feedback="  ")

    assert exc.value.code == "VALIDATION_FAILED"


@pytest.mark.parametrize("score", [None, -5, 101])
def test_approve_rejects_invalid_score(db, permissions, score) -> None:
    plan = make_plan(db, submission_status="submitted")

    with pytest.raises(DomainError) as exc:
        _grade(db, permissions, plan, decision="approve", quality_score=score)

    assert exc.value.code == "VALIDATION_FAILED"
    db.refresh(plan)
    assert plan.quality_score is None


def test_leader_cannot_grade(db, permissions) -> None:
    plan = make_plan(db, submission_status="submitted")

    with pytest.raises(DomainError) as exc:
        _grade(db, permissions, plan, decision="approve", quality_score=90, actor=make_actor(role="leader"))

    assert exc.value.code == "PERMISSION_DENIED"


def test_grading_a_draft_reports_item_recalled(db, permissions) -> None:
    plan = make_plan(db)

    with pytest.raises(DomainError) as exc:
        _grade(db, permissions, plan, decision="approve", quality_score=90)

    assert exc.value.code == "ITEM_RECALLED"
    assert exc.value.http_status == 409


def test_grade_loses_race_against_concurrent_recall(session_factory, db, permissions) -> None:
    plan = make_plan(db, submission_status="submitted")
    plan_id = plan.id

    grader_session = session_factory()
    department_session = session_factory()
    try:
        stale = grader_session.query(ActionPlan).filter(ActionPlan.id == plan_id).one()
        assert stale.submission_status == "submitted"

        recall_month_use_case(
            db=department_session,
            permissions=permissions,
            department_code="BAS",
            month="January",
            year=2026,
            current_user=make_actor(role="leader"),
        )

        # The grader still holds the row as it was read before the recall.
        assert stale.submission_status == "submitted"
        with pytest.raises(DomainError) as exc:
            grade_plan_use_case(
                db=grader_session,
                permissions=permissions,
                plan_id=plan_id,
                current_user=_admin(),
                decision="approve",
                quality_score=95,
                now=NOW,
                dispatch=None,
            )
        assert exc.value.code == "ITEM_RECALLED"
    finally:
        grader_session.close()
        department_session.close()

    db.expire_all()
    stored = db.query(ActionPlan).filter(ActionPlan.id == plan_id).one()
    assert stored.submission_status == "draft"
    assert stored.quality_score is None
    assert db.query(AuditLog).filter(AuditLog.change_type == "APPROVED").count() == 0


def test_regrading_a_graded_submission_overwrites_score(db, permissions) -> None:
    plan = make_plan(db, submission_status="submitted", quality_score=50)

    graded = _grade(db, permissions, plan, decision="approve", quality_score=75)

    assert graded.quality_score == 75


def test_bulk_reset_requires_confirmation_phrase(db, permissions) -> None:
    make_plan(db, submission_status="submitted", quality_score=80)

    with pytest.raises(DomainError) as exc:
        bulk_reset_grades_use_case(db=db, permissions=permissions, current_user=_admin(), confirmation="reset")

    assert exc.value.code == "VALIDATION_FAILED"
    assert db.query(ActionPlan).filter(ActionPlan.quality_score.isnot(None)).count() == 1


def test_bulk_reset_is_superuser_only(db, permissions) -> None:
    make_plan(db, submission_status="submitted", quality_score=80)

    with pytest.raises(DomainError) as exc:
        bulk_reset_grades_use_case(
            db=db,
            permissions=permissions,
            current_user=make_actor(role="leader"),
            confirmation="RESET ALL GRADES",
        )

    assert exc.value.code == "PERMISSION_DENIED"
    assert exc.value.details == {"resource": "action_plan", "action": "grade"}
    assert db.query(ActionPlan).filter(ActionPlan.quality_score.isnot(None)).count() == 1


def test_bulk_reset_clears_every_grade_in_scope(db, permissions) -> None:
    first = make_plan(db, submission_status="submitted", quality_score=80, remark="ok")
    second = make_plan(db, submission_status="submitted", quality_score=30)
    other = make_plan(db, submission_status="submitted", quality_score=55, department_code="FIN")

    count = bulk_reset_grades_use_case(
        db=db,
        permissions=permissions,
        current_user=_admin(),
        confirmation="RESET ALL GRADES",
        department_code="BAS",
    )

    assert count == 2
    for plan in (first, second):
        db.refresh(plan)
        assert plan.quality_score is None
        assert plan.status == "Pending"
        assert plan.submission_status == "draft"
        assert plan.remark is None
    db.refresh(other)
    assert other.quality_score == 55
    assert db.query(AuditLog).filter(AuditLog.change_type == "GRADE_RESET").count() == 2


def test_bulk_reset_with_nothing_graded_returns_zero(db, permissions) -> None:
    make_plan(db)
    count = bulk_reset_grades_use_case(
        db=db, permissions=permissions, current_user=_admin(), confirmation="RESET ALL GRADES"
    )
    assert count == 0
