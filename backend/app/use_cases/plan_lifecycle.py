"""Month-level lifecycle use cases: finalize, recall, single recall and status summary."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..domain_errors import PRECONDITION_FAILED, precondition_failed
from ..models import ActionPlan, User
from ..security import require_department_access
from ..services.change_log import record_audit
from ..services.permissions import DepartmentScope, PermissionEngine
from ..services.plan_rules import (
    PHASE_DRAFT,
    PHASE_SUBMITTED_GRADED,
    SUBMISSION_DRAFT,
    SUBMISSION_SUBMITTED,
    TERMINAL_STATUSES,
    UNLOCK_PENDING,
    effective_unlock_status,
    finalize_blockers,
    is_submitted,
    now_utc,
    plan_phase,
    recallable_plans,
    summarize_month,
)
from .common import (
    UNLOCK_RESET_VALUES,
    BatchResult,
    commit_or_store_error,
    get_plan_or_404,
    month_scope_query,
    parse_month,
)

logger = logging.getLogger(__name__)


def finalize_month_use_case(
    *,
    db: Session,
    permissions: PermissionEngine,
    department_code: str,
    month: str,
    year: int,
    current_user: User,
    now: datetime | None = None,
) -> BatchResult:
    """Submit every draft of a department month for grading."""
    month = parse_month(month)
    permissions.require(current_user, "action_plan", "submit", DepartmentScope(department_code))
    ts = now or now_utc()

    plans = month_scope_query(db, department_code=department_code, month=month, year=year).order_by(
        ActionPlan.created_at
    ).all()
    drafts = [plan for plan in plans if not is_submitted(plan)]
    if not drafts:
        raise precondition_failed("No draft items to finalize for this month")

    blockers = finalize_blockers(plans)
    if blockers:
        raise precondition_failed(
            "Every item must be Achieved or Not Achieved before finalizing",
            details={"blocking_ids": [str(plan.id) for plan in blockers]},
        )

    pending_unlock = [plan for plan in plans if effective_unlock_status(plan, now=ts) == UNLOCK_PENDING]
    if pending_unlock:
        raise precondition_failed(
            "Resolve pending unlock requests before finalizing",
            details={"pending_unlock_ids": [str(plan.id) for plan in pending_unlock]},
        )

    result = BatchResult()
    for plan in drafts:
        updated = db.query(ActionPlan).filter(
            ActionPlan.id == plan.id,
            or_(ActionPlan.submission_status == SUBMISSION_DRAFT, ActionPlan.submission_status.is_(None)),
            ActionPlan.status.in_(sorted(TERMINAL_STATUSES)),
            ActionPlan.deleted_at.is_(None),
        ).update(
            {
                ActionPlan.submission_status: SUBMISSION_SUBMITTED,
                ActionPlan.submitted_at: ts,
                ActionPlan.submitted_by: current_user.id,
            },
            synchronize_session=False,
        )
        if updated != 1:
            result.fail(plan.id, code=PRECONDITION_FAILED, message="Item changed before it could be submitted")
            continue
        record_audit(
            db,
            plan=plan,
            actor=current_user,
            change_type="SUBMITTED",
            description=f"Submitted for grading ({month} {year})",
            previous_value={"submission_status": SUBMISSION_DRAFT},
            new_value={"submission_status": SUBMISSION_SUBMITTED},
        )
        result.ok(plan.id)

    commit_or_store_error(db, operation="finalize_month")
    logger.info(
        "Finalized %s/%s items for %s %s %s by user=%s",
        result.success_count, len(drafts), department_code, month, year, current_user.id,
    )
    return result


def recall_month_use_case(
    *,
    db: Session,
    permissions: PermissionEngine,
    department_code: str,
    month: str,
    year: int,
    current_user: User,
) -> BatchResult:
    """Return the ungraded submissions of a month to draft; graded items stay locked."""
    month = parse_month(month)
    permissions.require(current_user, "action_plan", "submit", DepartmentScope(department_code))

    plans = month_scope_query(db, department_code=department_code, month=month, year=year).all()
    targets = recallable_plans(plans)
    graded_count = sum(1 for plan in plans if plan_phase(plan) == PHASE_SUBMITTED_GRADED)
    if not targets:
        raise precondition_failed(
            "Nothing to recall: no submitted items are awaiting grading",
            details={"graded_count": graded_count},
        )

    result = BatchResult(skipped_count=graded_count)
    for plan in targets:
        updated = db.query(ActionPlan).filter(
            ActionPlan.id == plan.id,
            ActionPlan.submission_status == SUBMISSION_SUBMITTED,
            ActionPlan.quality_score.is_(None),
        ).update(
            {
                ActionPlan.submission_status: SUBMISSION_DRAFT,
                ActionPlan.submitted_at: None,
                ActionPlan.submitted_by: None,
                **{getattr(ActionPlan, key): value for key, value in UNLOCK_RESET_VALUES.items()},
            },
            synchronize_session=False,
        )
        if updated != 1:
            result.skipped_count += 1
            result.fail(plan.id, code=PRECONDITION_FAILED, message="Item was graded before it could be recalled")
            continue
        record_audit(
            db,
            plan=plan,
            actor=current_user,
            change_type="RECALLED",
            description=f"Recalled to draft ({month} {year})",
            previous_value={"submission_status": SUBMISSION_SUBMITTED},
            new_value={"submission_status": SUBMISSION_DRAFT},
        )
        result.ok(plan.id)

    commit_or_store_error(db, operation="recall_month")
    logger.info(
        "Recalled %s items for %s %s %s (graded kept=%s) by user=%s",
        result.success_count, department_code, month, year, result.skipped_count, current_user.id,
    )
    return result


def recall_plan_use_case(
    *,
    db: Session,
    permissions: PermissionEngine,
    plan_id: UUID,
    current_user: User,
) -> ActionPlan:
    """Return one submitted item to draft; a graded item is reopened and its grade cleared."""
    plan = get_plan_or_404(db, plan_id)
    permissions.require(current_user, "action_plan", "submit", plan)

    phase = plan_phase(plan)
    # Idempotent: already editable draft.
    if phase == PHASE_DRAFT:
        return plan

    previous = {
        "submission_status": SUBMISSION_SUBMITTED,
        "quality_score": plan.quality_score,
        "admin_feedback": plan.admin_feedback,
    }
    values: dict[Any, Any] = {
        ActionPlan.submission_status: SUBMISSION_DRAFT,
        ActionPlan.submitted_at: None,
        ActionPlan.submitted_by: None,
        ActionPlan.quality_score: None,
        ActionPlan.admin_feedback: None,
        ActionPlan.reviewed_by: None,
        ActionPlan.reviewed_at: None,
    }
    values.update({getattr(ActionPlan, key): value for key, value in UNLOCK_RESET_VALUES.items()})
    updated = db.query(ActionPlan).filter(
        ActionPlan.id == plan.id,
        ActionPlan.submission_status == SUBMISSION_SUBMITTED,
    ).update(values, synchronize_session=False)
    if updated != 1:
        raise precondition_failed("Item is no longer submitted", details={"plan_id": str(plan.id)})

    record_audit(
        db,
        plan=plan,
        actor=current_user,
        change_type="RECALLED",
        description="Reopened as draft" if phase == PHASE_SUBMITTED_GRADED else "Recalled to draft",
        previous_value=previous,
        new_value={"submission_status": SUBMISSION_DRAFT, "quality_score": None},
    )
    commit_or_store_error(db, operation="recall_plan")
    db.refresh(plan)
    logger.info("Recalled plan=%s (phase=%s) by user=%s", plan.id, phase, current_user.id)
    return plan


def month_status_use_case(
    *,
    db: Session,
    department_code: str,
    month: str,
    year: int,
    current_user: User,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Counts and gate flags for one department month."""
    month = parse_month(month)
    require_department_access(current_user, department_code)
    plans = month_scope_query(db, department_code=department_code, month=month, year=year).all()
    summary = summarize_month(plans, now=now or now_utc())
    summary["finalize_blockers"] = [str(plan_id) for plan_id in summary["finalize_blockers"]]
    summary.update({"department_code": department_code, "month": month, "year": year})
    return summary
