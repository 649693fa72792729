"""Grading use cases: approve / reject a submission and the company-wide grade reset."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..domain_errors import (
    item_recalled,
    precondition_failed,
    store_error,
    validation_failed,
)
from ..models import ActionPlan, User
from ..services.change_log import record_audit
from ..services.permissions import PermissionEngine
from ..services.plan_events import (
    GRADE_RECEIVED,
    KICKBACK,
    EventDispatcher,
    dispatch_plan_events,
    emit,
    plan_event,
)
from ..services.plan_rules import (
    STATUS_ACHIEVED,
    STATUS_ON_PROGRESS,
    STATUS_PENDING,
    SUBMISSION_DRAFT,
    SUBMISSION_SUBMITTED,
    is_submitted,
    normalize_month,
    now_utc,
    validate_quality_score,
)
from .common import UNLOCK_RESET_VALUES, commit_or_store_error, get_plan_or_404

logger = logging.getLogger(__name__)

DECISION_APPROVE = "approve"
DECISION_REJECT = "reject"


def _approval_values(*, quality_score: Any, feedback: str | None) -> dict[Any, Any]:
    try:
        score = validate_quality_score(quality_score, max_score=settings.MAX_QUALITY_SCORE)
    except ValueError as exc:
        raise validation_failed(str(exc), details={"quality_score": quality_score}) from exc
    return {
        ActionPlan.status: STATUS_ACHIEVED,
        ActionPlan.quality_score: score,
        ActionPlan.admin_feedback: (feedback or "").strip() or None,
    }


def _rejection_values(*, feedback: str | None) -> dict[Any, Any]:
    text = (feedback or "").strip()
    if not text:
        raise validation_failed("Feedback is required when requesting a revision")
    values: dict[Any, Any] = {
        ActionPlan.status: STATUS_ON_PROGRESS,
        ActionPlan.quality_score: None,
        ActionPlan.submission_status: SUBMISSION_DRAFT,
        ActionPlan.submitted_at: None,
        ActionPlan.submitted_by: None,
        ActionPlan.admin_feedback: text,
    }
    values.update({getattr(ActionPlan, key): value for key, value in UNLOCK_RESET_VALUES.items()})
    return values


def grade_plan_use_case(
    *,
    db: Session,
    permissions: PermissionEngine,
    plan_id: UUID,
    current_user: User,
    decision: str,
    quality_score: int | None = None,
    feedback: str | None = None,
    now: datetime | None = None,
    dispatch: EventDispatcher | None = dispatch_plan_events,
) -> ActionPlan:
    """
    Record a grading decision on a submitted plan.

    The write is conditional on submission_status = 'submitted'; when the
    department recalled the item after it was read, nothing is written and
    ITEM_RECALLED is raised.
    """
    plan = get_plan_or_404(db, plan_id)
    permissions.require(current_user, "action_plan", "grade", plan)

    if decision == DECISION_APPROVE:
        values = _approval_values(quality_score=quality_score, feedback=feedback)
    elif decision == DECISION_REJECT:
        values = _rejection_values(feedback=feedback)
    else:
        raise validation_failed(f"Unknown grading decision: {decision}", details={"decision": decision})

    if not is_submitted(plan):
        raise item_recalled(
            "This item was recalled by the department and is no longer awaiting grading",
            details={"plan_id": str(plan.id)},
        )

    ts = now or now_utc()
    previous = {"status": plan.status, "quality_score": plan.quality_score}
    values.update({ActionPlan.reviewed_by: current_user.id, ActionPlan.reviewed_at: ts})

    updated = db.query(ActionPlan).filter(
        ActionPlan.id == plan.id,
        ActionPlan.submission_status == SUBMISSION_SUBMITTED,
        ActionPlan.deleted_at.is_(None),
    ).update(values, synchronize_session=False)
    if updated != 1:
        db.rollback()
        logger.info("Grade on plan=%s lost to a concurrent recall", plan.id)
        raise item_recalled(
            "This item was recalled by the department and is no longer awaiting grading",
            details={"plan_id": str(plan.id)},
        )

    approved = decision == DECISION_APPROVE
    record_audit(
        db,
        plan=plan,
        actor=current_user,
        change_type="APPROVED" if approved else "REJECTED",
        description=(
            f"Graded {values[ActionPlan.quality_score]}/{settings.MAX_QUALITY_SCORE}"
            if approved
            else "Revision requested: " + values[ActionPlan.admin_feedback]
        ),
        previous_value=previous,
        new_value={
            "status": values[ActionPlan.status],
            "quality_score": values[ActionPlan.quality_score],
        },
    )
    commit_or_store_error(db, operation="grade_plan")
    db.refresh(plan)

    if approved:
        event = plan_event(
            GRADE_RECEIVED,
            plan=plan,
            actor=current_user,
            message=f"Your action plan was graded {plan.quality_score}/{settings.MAX_QUALITY_SCORE}",
            quality_score=plan.quality_score,
        )
    else:
        event = plan_event(
            KICKBACK,
            plan=plan,
            actor=current_user,
            message="Revision requested: " + (plan.admin_feedback or ""),
        )
    emit(dispatch, [event])
    logger.info("Plan %s %s by user=%s", plan.id, "approved" if approved else "returned", current_user.id)
    return plan


def bulk_reset_grades_use_case(
    *,
    db: Session,
    permissions: PermissionEngine,
    current_user: User,
    confirmation: str,
    department_code: str | None = None,
    month: str | None = None,
    year: int | None = None,
) -> int:
    """Clear every grade in scope in one transaction; returns how many items were reset."""
    # Company-wide, so no record scope.
    permissions.require(current_user, "action_plan", "grade")
    if confirmation != settings.GRADE_RESET_CONFIRMATION:
        raise validation_failed(
            "Confirmation text does not match",
            details={"expected": settings.GRADE_RESET_CONFIRMATION},
        )

    query = db.query(ActionPlan).filter(
        ActionPlan.quality_score.isnot(None),
        ActionPlan.deleted_at.is_(None),
    )
    if department_code:
        query = query.filter(ActionPlan.department_code == department_code)
    if month:
        try:
            query = query.filter(ActionPlan.month == normalize_month(month))
        except ValueError as exc:
            raise validation_failed(str(exc), details={"month": month}) from exc
    if year is not None:
        query = query.filter(ActionPlan.year == year)

    plans = query.all()
    if not plans:
        return 0

    ids = [plan.id for plan in plans]
    try:
        for plan in plans:
            record_audit(
                db,
                plan=plan,
                actor=current_user,
                change_type="GRADE_RESET",
                description="Grade cleared by administrator reset",
                previous_value={"status": plan.status, "quality_score": plan.quality_score},
                new_value={"status": STATUS_PENDING, "quality_score": None},
            )
        updated = db.query(ActionPlan).filter(
            ActionPlan.id.in_(ids),
            ActionPlan.quality_score.isnot(None),
        ).update(
            {
                ActionPlan.quality_score: None,
                ActionPlan.admin_feedback: None,
                ActionPlan.reviewed_by: None,
                ActionPlan.reviewed_at: None,
                ActionPlan.outcome_link: None,
                ActionPlan.remark: None,
                ActionPlan.status: STATUS_PENDING,
                ActionPlan.submission_status: SUBMISSION_DRAFT,
                ActionPlan.submitted_at: None,
                ActionPlan.submitted_by: None,
                **{getattr(ActionPlan, key): value for key, value in UNLOCK_RESET_VALUES.items()},
            },
            synchronize_session=False,
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Grade reset failed; nothing was reset")
        raise store_error("Grade reset failed; nothing was reset") from exc

    if updated != len(ids):
        db.rollback()
        raise precondition_failed(
            "Grades changed while resetting; nothing was reset",
            details={"expected": len(ids), "updated": updated},
        )

    commit_or_store_error(db, operation="bulk_reset_grades")
    logger.warning("Grade reset cleared %s item(s) by user=%s", updated, current_user.id)
    return updated
