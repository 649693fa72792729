"""Unlock request endpoints."""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..auth import get_current_user, get_permission_engine
from ..database import get_db
from ..models import User
from ..schemas import (
    ActionPlanResponse,
    BatchResultResponse,
    UnlockApproveRequest,
    UnlockBatchKey,
    UnlockBatchResponse,
    UnlockDecisionRequest,
    UnlockRejectRequest,
    UnlockRequestCreate,
)
from ..services.permissions import PermissionEngine
from ..services.plan_events import EventDispatcher, get_event_dispatcher
from ..services.plan_response_builder import plan_to_response, plans_to_response
from ..use_cases.unlock_workflow import (
    approve_unlock_batch_use_case,
    list_unlock_batches_use_case,
    process_unlock_request_use_case,
    reject_unlock_batch_use_case,
    request_unlock_use_case,
    revoke_unlock_access_use_case,
    revoke_unlock_batch_use_case,
)

router = APIRouter(prefix="/unlock-requests", tags=["unlock-requests"])


@router.get("", response_model=list[UnlockBatchResponse])
def list_unlock_batches(
    state: str = Query("pending", pattern="^(pending|active)$"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Pending requests or currently open unlock windows, grouped per batch."""
    return list_unlock_batches_use_case(db=db, current_user=current_user, state=state)


@router.post("", response_model=BatchResultResponse, status_code=status.HTTP_201_CREATED)
def request_unlock(
    payload: UnlockRequestCreate,
    current_user: User = Depends(get_current_user),
    permissions: PermissionEngine = Depends(get_permission_engine),
    db: Session = Depends(get_db),
):
    result = request_unlock_use_case(
        db=db,
        permissions=permissions,
        current_user=current_user,
        department_code=payload.department_code,
        month=payload.month,
        year=payload.year,
        reason=payload.reason,
        plan_ids=payload.plan_ids,
    )
    return result.as_dict()


@router.post("/approve", response_model=list[ActionPlanResponse])
def approve_unlock_batch(
    payload: UnlockApproveRequest,
    current_user: User = Depends(get_current_user),
    permissions: PermissionEngine = Depends(get_permission_engine),
    dispatch: EventDispatcher = Depends(get_event_dispatcher),
    db: Session = Depends(get_db),
):
    plans = approve_unlock_batch_use_case(
        db=db,
        permissions=permissions,
        current_user=current_user,
        department_code=payload.department_code,
        month=payload.month,
        year=payload.year,
        requested_by=payload.requested_by,
        duration_hours=payload.duration_hours,
        expires_at=payload.expires_at,
        dispatch=dispatch,
    )
    return plans_to_response(plans)


@router.post("/reject", response_model=list[ActionPlanResponse])
def reject_unlock_batch(
    payload: UnlockRejectRequest,
    current_user: User = Depends(get_current_user),
    permissions: PermissionEngine = Depends(get_permission_engine),
    dispatch: EventDispatcher = Depends(get_event_dispatcher),
    db: Session = Depends(get_db),
):
    plans = reject_unlock_batch_use_case(
        db=db,
        permissions=permissions,
        current_user=current_user,
        department_code=payload.department_code,
        month=payload.month,
        year=payload.year,
        requested_by=payload.requested_by,
        reason=payload.reason,
        dispatch=dispatch,
    )
    return plans_to_response(plans)


@router.post("/revoke", response_model=list[ActionPlanResponse])
def revoke_unlock_batch(
    payload: UnlockBatchKey,
    current_user: User = Depends(get_current_user),
    permissions: PermissionEngine = Depends(get_permission_engine),
    dispatch: EventDispatcher = Depends(get_event_dispatcher),
    db: Session = Depends(get_db),
):
    """Close an unlock window before it expires."""
    plans = revoke_unlock_batch_use_case(
        db=db,
        permissions=permissions,
        current_user=current_user,
        department_code=payload.department_code,
        month=payload.month,
        year=payload.year,
        requested_by=payload.requested_by,
        dispatch=dispatch,
    )
    return plans_to_response(plans)


@router.post("/plans/{plan_id}/decision", response_model=ActionPlanResponse)
def decide_plan_unlock(
    plan_id: UUID,
    payload: UnlockDecisionRequest,
    current_user: User = Depends(get_current_user),
    permissions: PermissionEngine = Depends(get_permission_engine),
    dispatch: EventDispatcher = Depends(get_event_dispatcher),
    db: Session = Depends(get_db),
):
    plan = process_unlock_request_use_case(
        db=db,
        permissions=permissions,
        plan_id=plan_id,
        current_user=current_user,
        action=payload.action,
        duration_hours=payload.duration_hours,
        expires_at=payload.expires_at,
        rejection_reason=payload.rejection_reason,
        dispatch=dispatch,
    )
    return plan_to_response(plan)


@router.post("/plans/{plan_id}/revoke", response_model=ActionPlanResponse)
def revoke_plan_unlock(
    plan_id: UUID,
    current_user: User = Depends(get_current_user),
    permissions: PermissionEngine = Depends(get_permission_engine),
    dispatch: EventDispatcher = Depends(get_event_dispatcher),
    db: Session = Depends(get_db),
):
    plan = revoke_unlock_access_use_case(
        db=db, permissions=permissions, plan_id=plan_id, current_user=current_user, dispatch=dispatch
    )
    return plan_to_response(plan)
