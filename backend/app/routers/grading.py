"""Grading endpoints."""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import get_current_user, get_permission_engine
from ..database import get_db
from ..models import User
from ..schemas import ActionPlanResponse, GradeRequest, GradeResetRequest, GradeResetResponse
from ..services.permissions import PermissionEngine
from ..services.plan_events import EventDispatcher, get_event_dispatcher
from ..services.plan_response_builder import plan_to_response
from ..use_cases.grading import bulk_reset_grades_use_case, grade_plan_use_case

router = APIRouter(prefix="/grading", tags=["grading"])


@router.post("/reset", response_model=GradeResetResponse)
def reset_grades(
    payload: GradeResetRequest,
    current_user: User = Depends(get_current_user),
    permissions: PermissionEngine = Depends(get_permission_engine),
    db: Session = Depends(get_db),
):
    """Clear every grade in scope (requires the confirmation phrase)."""
    count = bulk_reset_grades_use_case(
        db=db,
        permissions=permissions,
        current_user=current_user,
        confirmation=payload.confirmation,
        department_code=payload.department_code,
        month=payload.month,
        year=payload.year,
    )
    return GradeResetResponse(reset_count=count)


@router.post("/{plan_id}", response_model=ActionPlanResponse)
def grade_action_plan(
    plan_id: UUID,
    payload: GradeRequest,
    current_user: User = Depends(get_current_user),
    permissions: PermissionEngine = Depends(get_permission_engine),
    dispatch: EventDispatcher = Depends(get_event_dispatcher),
    db: Session = Depends(get_db),
):
    """Approve with a score or send back for revision."""
    plan = grade_plan_use_case(
        db=db,
        permissions=permissions,
        plan_id=plan_id,
        current_user=current_user,
        decision=payload.decision,
        quality_score=payload.quality_score,
        feedback=payload.feedback,
        dispatch=dispatch,
    )
    return plan_to_response(plan)
