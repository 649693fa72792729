"""Action plan endpoints."""
from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..auth import get_current_user, get_permission_engine
from ..database import get_db
from ..models import User
from ..schemas import (
    ActionPlanBulkCreate,
    ActionPlanCreate,
    ActionPlanDelete,
    ActionPlanResponse,
    ActionPlanStatusUpdate,
    ActionPlanUpdate,
    HistoryEntryResponse,
)
from ..services.permissions import PermissionEngine
from ..services.plan_events import EventDispatcher, get_event_dispatcher
from ..services.plan_response_builder import plan_to_response, plans_to_response
from ..use_cases.plan_lifecycle import recall_plan_use_case
from ..use_cases.plan_records import (
    bulk_create_plans_use_case,
    create_plan_use_case,
    get_plan_use_case,
    list_deleted_plans_use_case,
    list_plans_use_case,
    permanently_delete_plan_use_case,
    plan_history_use_case,
    restore_plan_use_case,
    soft_delete_plan_use_case,
    update_plan_status_use_case,
    update_plan_use_case,
)

router = APIRouter(prefix="/action-plans", tags=["action-plans"])


@router.get("", response_model=list[ActionPlanResponse])
def list_action_plans(
    department_code: Optional[str] = None,
    month: Optional[str] = None,
    year: Optional[int] = None,
    submission_status: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List active plans visible to the caller."""
    plans = list_plans_use_case(
        db=db,
        current_user=current_user,
        department_code=department_code,
        month=month,
        year=year,
        submission_status=submission_status,
        status=status_filter,
    )
    return plans_to_response(plans)


@router.get("/recycle-bin", response_model=list[ActionPlanResponse])
def list_recycle_bin(
    current_user: User = Depends(get_current_user),
    permissions: PermissionEngine = Depends(get_permission_engine),
    db: Session = Depends(get_db),
):
    """Soft-deleted plans."""
    return plans_to_response(list_deleted_plans_use_case(db=db, permissions=permissions, current_user=current_user))


@router.post("", response_model=ActionPlanResponse, status_code=status.HTTP_201_CREATED)
def create_action_plan(
    payload: ActionPlanCreate,
    current_user: User = Depends(get_current_user),
    permissions: PermissionEngine = Depends(get_permission_engine),
    db: Session = Depends(get_db),
):
    fields = payload.model_dump(exclude_none=True, exclude={"department_code"})
    plan = create_plan_use_case(
        db=db,
        permissions=permissions,
        current_user=current_user,
        department_code=payload.department_code,
        fields=fields,
    )
    return plan_to_response(plan)


@router.post("/bulk", response_model=list[ActionPlanResponse], status_code=status.HTTP_201_CREATED)
def bulk_create_action_plans(
    payload: ActionPlanBulkCreate,
    current_user: User = Depends(get_current_user),
    permissions: PermissionEngine = Depends(get_permission_engine),
    db: Session = Depends(get_db),
):
    """Import many plans in one transaction."""
    plans = bulk_create_plans_use_case(
        db=db, permissions=permissions, current_user=current_user, items=payload.items
    )
    return plans_to_response(plans)


@router.get("/{plan_id}", response_model=ActionPlanResponse)
def get_action_plan(
    plan_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return plan_to_response(get_plan_use_case(db=db, plan_id=plan_id, current_user=current_user))


@router.patch("/{plan_id}", response_model=ActionPlanResponse)
def update_action_plan(
    plan_id: UUID,
    payload: ActionPlanUpdate,
    current_user: User = Depends(get_current_user),
    permissions: PermissionEngine = Depends(get_permission_engine),
    dispatch: EventDispatcher = Depends(get_event_dispatcher),
    db: Session = Depends(get_db),
):
    """Edit plan content (draft or unlocked items)."""
    plan = update_plan_use_case(
        db=db,
        permissions=permissions,
        plan_id=plan_id,
        current_user=current_user,
        changes=payload.model_dump(exclude_unset=True),
        dispatch=dispatch,
    )
    return plan_to_response(plan)


@router.post("/{plan_id}/status", response_model=ActionPlanResponse)
def update_action_plan_status(
    plan_id: UUID,
    payload: ActionPlanStatusUpdate,
    current_user: User = Depends(get_current_user),
    permissions: PermissionEngine = Depends(get_permission_engine),
    dispatch: EventDispatcher = Depends(get_event_dispatcher),
    db: Session = Depends(get_db),
):
    """Update completion status and progress fields."""
    plan = update_plan_status_use_case(
        db=db,
        permissions=permissions,
        plan_id=plan_id,
        current_user=current_user,
        status=payload.status,
        progress=payload.model_dump(exclude={"status", "note"}, exclude_none=True),
        note=payload.note,
        dispatch=dispatch,
    )
    return plan_to_response(plan)


@router.post("/{plan_id}/recall", response_model=ActionPlanResponse)
def recall_action_plan(
    plan_id: UUID,
    current_user: User = Depends(get_current_user),
    permissions: PermissionEngine = Depends(get_permission_engine),
    db: Session = Depends(get_db),
):
    """Return a single submitted item to draft."""
    plan = recall_plan_use_case(db=db, permissions=permissions, plan_id=plan_id, current_user=current_user)
    return plan_to_response(plan)


@router.delete("/{plan_id}", response_model=ActionPlanResponse)
def delete_action_plan(
    plan_id: UUID,
    payload: ActionPlanDelete,
    current_user: User = Depends(get_current_user),
    permissions: PermissionEngine = Depends(get_permission_engine),
    db: Session = Depends(get_db),
):
    """Move a plan to the recycle bin."""
    plan = soft_delete_plan_use_case(
        db=db, permissions=permissions, plan_id=plan_id, current_user=current_user, reason=payload.reason
    )
    return plan_to_response(plan)


@router.post("/{plan_id}/restore", response_model=ActionPlanResponse)
def restore_action_plan(
    plan_id: UUID,
    current_user: User = Depends(get_current_user),
    permissions: PermissionEngine = Depends(get_permission_engine),
    db: Session = Depends(get_db),
):
    plan = restore_plan_use_case(db=db, permissions=permissions, plan_id=plan_id, current_user=current_user)
    return plan_to_response(plan)


@router.delete("/{plan_id}/permanent", status_code=status.HTTP_204_NO_CONTENT)
def permanently_delete_action_plan(
    plan_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    permanently_delete_plan_use_case(db=db, plan_id=plan_id, current_user=current_user)


@router.get("/{plan_id}/history", response_model=list[HistoryEntryResponse])
def get_action_plan_history(
    plan_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Audit trail and progress notes of one plan, newest first."""
    return plan_history_use_case(db=db, plan_id=plan_id, current_user=current_user)
