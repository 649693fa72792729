"""Time-bounded unlock workflow for submitted action plans."""
from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from ..config import settings
from ..domain_errors import (
    PRECONDITION_FAILED,
    DomainError,
    precondition_failed,
    validation_failed,
)
from ..models import ActionPlan, User
from ..security import scope_plan_query
from ..services.change_log import record_audit
from ..services.permissions import DepartmentScope, PermissionEngine
from ..services.plan_events import (
    UNLOCK_APPROVED,
    UNLOCK_REJECTED,
    UNLOCK_REVOKED,
    EventDispatcher,
    PlanEvent,
    dispatch_plan_events,
    emit,
    plan_event,
)
from ..services.plan_rules import (
    SUBMISSION_SUBMITTED,
    UNLOCK_APPROVED as STATUS_APPROVED,
    UNLOCK_NONE,
    UNLOCK_PENDING,
    UNLOCK_REJECTED as STATUS_REJECTED,
    as_utc,
    is_unlock_active,
    month_index,
    normalize_unlock_status,
    now_utc,
    resolve_unlock_expiry,
)
from .common import BatchResult, commit_or_store_error, get_plan_or_404, parse_month

logger = logging.getLogger(__name__)

ACTION_APPROVE = "APPROVE"
ACTION_REJECT = "REJECT"

BatchKey = tuple[str, str, int, UUID | None]


def unlock_batch_key(plan: ActionPlan) -> BatchKey:
    """Requests are grouped per department month and requester."""
    return (plan.department_code, plan.month, plan.year, plan.unlock_requested_by)


def _resolve_expiry(*, now: datetime, duration_hours: int | None, expires_at: datetime | None) -> datetime:
    try:
        return resolve_unlock_expiry(
            now=now,
            duration_hours=duration_hours,
            expires_at=expires_at,
            presets=settings.unlock_preset_hours,
        )
    except ValueError as exc:
        raise validation_failed(
            str(exc),
            details={"duration_hours": duration_hours, "presets": settings.unlock_preset_hours},
        ) from exc


def request_unlock_use_case(
    *,
    db: Session,
    permissions: PermissionEngine,
    current_user: User,
    department_code: str,
    month: str,
    year: int,
    reason: str,
    plan_ids: Iterable[UUID] | None = None,
    now: datetime | None = None,
) -> BatchResult:
    """Ask for a temporary unlock of locked items in one department month."""
    month = parse_month(month)
    permissions.require(current_user, "action_plan", "submit", DepartmentScope(department_code))
    reason = (reason or "").strip()
    if not reason:
        raise validation_failed("A reason is required to request an unlock")
    ts = now or now_utc()

    query = db.query(ActionPlan).filter(
        ActionPlan.department_code == department_code,
        ActionPlan.month == month,
        ActionPlan.year == year,
        ActionPlan.deleted_at.is_(None),
        ActionPlan.submission_status == SUBMISSION_SUBMITTED,
    )
    requested_ids = set(plan_ids) if plan_ids is not None else None
    if requested_ids is not None:
        query = query.filter(ActionPlan.id.in_(requested_ids))
    plans = query.all()

    result = BatchResult()
    if requested_ids is not None:
        for missing in requested_ids - {plan.id for plan in plans}:
            result.fail(missing, code=PRECONDITION_FAILED, message="Item is not locked in this month")

    for plan in plans:
        updated = db.query(ActionPlan).filter(
            ActionPlan.id == plan.id,
            ActionPlan.submission_status == SUBMISSION_SUBMITTED,
            or_(
                ActionPlan.unlock_status == UNLOCK_NONE,
                and_(ActionPlan.unlock_status == STATUS_APPROVED, ActionPlan.approved_until <= ts),
            ),
        ).update(
            {
                ActionPlan.unlock_status: UNLOCK_PENDING,
                ActionPlan.unlock_reason: reason,
                ActionPlan.unlock_requested_by: current_user.id,
                ActionPlan.unlock_requested_at: ts,
                ActionPlan.unlock_approved_by: None,
                ActionPlan.unlock_approved_at: None,
                ActionPlan.unlock_rejection_reason: None,
                ActionPlan.approved_until: None,
            },
            synchronize_session=False,
        )
        if updated != 1:
            result.fail(
                plan.id,
                code=PRECONDITION_FAILED,
                message=f"Unlock already {normalize_unlock_status(plan.unlock_status)}",
            )
            continue
        record_audit(
            db,
            plan=plan,
            actor=current_user,
            change_type="UNLOCK_REQUESTED",
            description=f"Unlock requested: {reason}",
            new_value={"unlock_status": UNLOCK_PENDING},
        )
        result.ok(plan.id)

    if result.success_count == 0:
        db.rollback()
        raise precondition_failed(
            "No locked items are eligible for an unlock request",
            details={"failures": result.failures},
        )

    commit_or_store_error(db, operation="request_unlock")
    logger.info(
        "Unlock requested for %s item(s) in %s %s %s by user=%s",
        result.success_count, department_code, month, year, current_user.id,
    )
    return result


def process_unlock_request(
    *,
    db: Session,
    permissions: PermissionEngine,
    plan_id: UUID,
    current_user: User,
    action: str,
    duration_hours: int | None = None,
    expires_at: datetime | None = None,
    rejection_reason: str | None = None,
    now: datetime | None = None,
) -> tuple[ActionPlan, PlanEvent]:
    """
    Decide one pending request inside the caller's transaction (no commit).

    The write is conditional on unlock_status = 'pending'; a request decided by
    someone else after it was read raises PRECONDITION_FAILED and is left as is.
    """
    ts = now or now_utc()
    plan = get_plan_or_404(db, plan_id)
    permissions.require(current_user, "action_plan", "grade", plan)

    current = normalize_unlock_status(plan.unlock_status)
    if current != UNLOCK_PENDING:
        raise precondition_failed(
            f"No pending unlock request (unlock status is {current})",
            details={"plan_id": str(plan.id), "unlock_status": current},
        )

    if action == ACTION_APPROVE:
        until = _resolve_expiry(now=ts, duration_hours=duration_hours, expires_at=expires_at)
        values: dict[Any, Any] = {
            ActionPlan.unlock_status: STATUS_APPROVED,
            ActionPlan.unlock_approved_by: current_user.id,
            ActionPlan.unlock_approved_at: ts,
            ActionPlan.unlock_rejection_reason: None,
            ActionPlan.approved_until: until,
        }
        change_type = "UNLOCK_APPROVED"
        description = f"Unlock approved until {until.isoformat()}"
        event_type = UNLOCK_APPROVED
        message = f"Your unlock request was approved until {until.isoformat()}"
        extra = {"approved_until": until.isoformat()}
    elif action == ACTION_REJECT:
        until = None
        reason = (rejection_reason or "").strip() or None
        values = {
            ActionPlan.unlock_status: STATUS_REJECTED,
            ActionPlan.unlock_rejection_reason: reason,
            ActionPlan.approved_until: None,
        }
        change_type = "UNLOCK_REJECTED"
        description = "Unlock rejected" + (f": {reason}" if reason else "")
        event_type = UNLOCK_REJECTED
        message = description
        extra = {}
    else:
        raise validation_failed(f"Unknown unlock action: {action}", details={"action": action})

    updated = db.query(ActionPlan).filter(
        ActionPlan.id == plan.id,
        ActionPlan.unlock_status == UNLOCK_PENDING,
        ActionPlan.deleted_at.is_(None),
    ).update(values, synchronize_session=False)
    if updated != 1:
        logger.info("Unlock decision on plan=%s lost to a concurrent decision", plan.id)
        raise precondition_failed(
            "This unlock request was already decided",
            details={"plan_id": str(plan.id)},
        )

    record_audit(
        db,
        plan=plan,
        actor=current_user,
        change_type=change_type,
        description=description,
        previous_value={"unlock_status": UNLOCK_PENDING},
        new_value={
            "unlock_status": values[ActionPlan.unlock_status],
            "approved_until": until.isoformat() if until else None,
        },
    )
    event = plan_event(
        event_type,
        plan=plan,
        actor=current_user,
        message=message,
        requested_by=str(plan.unlock_requested_by) if plan.unlock_requested_by else None,
        **extra,
    )
    return plan, event


def revoke_unlock_access(
    *,
    db: Session,
    permissions: PermissionEngine,
    plan_id: UUID,
    current_user: User,
    now: datetime | None = None,
) -> tuple[ActionPlan, PlanEvent | None]:
    """End an unlock window now (no commit). Revoking an item with no unlock is a no-op."""
    plan = get_plan_or_404(db, plan_id)
    permissions.require(current_user, "action_plan", "grade", plan)

    current = normalize_unlock_status(plan.unlock_status)
    if current == UNLOCK_NONE:
        return plan, None
    if current != STATUS_APPROVED:
        raise precondition_failed(
            f"Only approved unlocks can be revoked (unlock status is {current})",
            details={"plan_id": str(plan.id), "unlock_status": current},
        )

    was_active = is_unlock_active(plan, now=now or now_utc())
    previous_until = as_utc(plan.approved_until)
    updated = db.query(ActionPlan).filter(
        ActionPlan.id == plan.id,
        ActionPlan.unlock_status == STATUS_APPROVED,
    ).update(
        {ActionPlan.unlock_status: UNLOCK_NONE, ActionPlan.approved_until: None},
        synchronize_session=False,
    )
    if updated != 1:
        db.refresh(plan)
        current = normalize_unlock_status(plan.unlock_status)
        if current == UNLOCK_NONE:
            # Revoked concurrently; same outcome as revoking twice.
            return plan, None
        logger.info("Revoke on plan=%s lost to a concurrent change (now %s)", plan.id, current)
        raise precondition_failed(
            f"The unlock changed before it could be revoked (unlock status is {current})",
            details={"plan_id": str(plan.id), "unlock_status": current},
        )

    record_audit(
        db,
        plan=plan,
        actor=current_user,
        change_type="UNLOCK_REVOKED",
        description="Unlock revoked" if was_active else "Expired unlock cleared",
        previous_value={
            "unlock_status": STATUS_APPROVED,
            "approved_until": previous_until.isoformat() if previous_until else None,
        },
        new_value={"unlock_status": UNLOCK_NONE, "approved_until": None},
    )
    event = plan_event(
        UNLOCK_REVOKED,
        plan=plan,
        actor=current_user,
        message="Your edit access was revoked",
        requested_by=str(plan.unlock_requested_by) if plan.unlock_requested_by else None,
    )
    return plan, event


def process_unlock_request_use_case(
    *,
    db: Session,
    permissions: PermissionEngine,
    plan_id: UUID,
    current_user: User,
    action: str,
    duration_hours: int | None = None,
    expires_at: datetime | None = None,
    rejection_reason: str | None = None,
    now: datetime | None = None,
    dispatch: EventDispatcher | None = dispatch_plan_events,
) -> ActionPlan:
    try:
        plan, event = process_unlock_request(
            db=db,
            permissions=permissions,
            plan_id=plan_id,
            current_user=current_user,
            action=action,
            duration_hours=duration_hours,
            expires_at=expires_at,
            rejection_reason=rejection_reason,
            now=now,
        )
    except DomainError:
        db.rollback()
        raise
    commit_or_store_error(db, operation="process_unlock_request")
    db.refresh(plan)
    emit(dispatch, [event])
    logger.info("Unlock %s for plan=%s by user=%s", action.lower(), plan.id, current_user.id)
    return plan


def revoke_unlock_access_use_case(
    *,
    db: Session,
    permissions: PermissionEngine,
    plan_id: UUID,
    current_user: User,
    now: datetime | None = None,
    dispatch: EventDispatcher | None = dispatch_plan_events,
) -> ActionPlan:
    try:
        plan, event = revoke_unlock_access(
            db=db, permissions=permissions, plan_id=plan_id, current_user=current_user, now=now
        )
    except DomainError:
        db.rollback()
        raise
    if event is None:
        return plan
    commit_or_store_error(db, operation="revoke_unlock_access")
    db.refresh(plan)
    emit(dispatch, [event])
    logger.info("Unlock revoked for plan=%s by user=%s", plan.id, current_user.id)
    return plan


def _batch_plans(
    db: Session,
    *,
    department_code: str,
    month: str,
    year: int,
    requested_by: UUID | None,
    unlock_status: str,
) -> list[ActionPlan]:
    query = db.query(ActionPlan).filter(
        ActionPlan.department_code == department_code,
        ActionPlan.month == month,
        ActionPlan.year == year,
        ActionPlan.unlock_status == unlock_status,
        ActionPlan.deleted_at.is_(None),
    )
    if requested_by is None:
        query = query.filter(ActionPlan.unlock_requested_by.is_(None))
    else:
        query = query.filter(ActionPlan.unlock_requested_by == requested_by)
    return query.order_by(ActionPlan.created_at).all()


def _decide_batch(
    *,
    db: Session,
    permissions: PermissionEngine,
    current_user: User,
    department_code: str,
    month: str,
    year: int,
    requested_by: UUID | None,
    action: str,
    duration_hours: int | None,
    expires_at: datetime | None,
    rejection_reason: str | None,
    now: datetime | None,
    dispatch: EventDispatcher | None,
) -> list[ActionPlan]:
    month = parse_month(month)
    ts = now or now_utc()
    permissions.require(current_user, "action_plan", "grade", DepartmentScope(department_code))
    if action == ACTION_APPROVE:
        # Validate once up front so a bad expiry never touches the batch.
        _resolve_expiry(now=ts, duration_hours=duration_hours, expires_at=expires_at)

    plans = _batch_plans(
        db,
        department_code=department_code,
        month=month,
        year=year,
        requested_by=requested_by,
        unlock_status=UNLOCK_PENDING,
    )
    if not plans:
        raise precondition_failed(
            "No pending unlock requests in this batch",
            details={"department_code": department_code, "month": month, "year": year},
        )

    events: list[PlanEvent] = []
    try:
        for plan in plans:
            _, event = process_unlock_request(
                db=db,
                permissions=permissions,
                plan_id=plan.id,
                current_user=current_user,
                action=action,
                duration_hours=duration_hours,
                expires_at=expires_at,
                rejection_reason=rejection_reason,
                now=ts,
            )
            events.append(event)
    except DomainError:
        db.rollback()
        raise

    commit_or_store_error(db, operation=f"unlock_batch_{action.lower()}")
    emit(dispatch, events)
    logger.info(
        "Unlock batch %s: %s item(s) in %s %s %s by user=%s",
        action.lower(), len(plans), department_code, month, year, current_user.id,
    )
    return plans


def approve_unlock_batch_use_case(
    *,
    db: Session,
    permissions: PermissionEngine,
    current_user: User,
    department_code: str,
    month: str,
    year: int,
    requested_by: UUID | None,
    duration_hours: int | None = None,
    expires_at: datetime | None = None,
    now: datetime | None = None,
    dispatch: EventDispatcher | None = dispatch_plan_events,
) -> list[ActionPlan]:
    """Approve every pending request of a batch with one shared expiry."""
    return _decide_batch(
        db=db,
        permissions=permissions,
        current_user=current_user,
        department_code=department_code,
        month=month,
        year=year,
        requested_by=requested_by,
        action=ACTION_APPROVE,
        duration_hours=duration_hours,
        expires_at=expires_at,
        rejection_reason=None,
        now=now,
        dispatch=dispatch,
    )


def reject_unlock_batch_use_case(
    *,
    db: Session,
    permissions: PermissionEngine,
    current_user: User,
    department_code: str,
    month: str,
    year: int,
    requested_by: UUID | None,
    reason: str | None = None,
    now: datetime | None = None,
    dispatch: EventDispatcher | None = dispatch_plan_events,
) -> list[ActionPlan]:
    return _decide_batch(
        db=db,
        permissions=permissions,
        current_user=current_user,
        department_code=department_code,
        month=month,
        year=year,
        requested_by=requested_by,
        action=ACTION_REJECT,
        duration_hours=None,
        expires_at=None,
        rejection_reason=reason,
        now=now,
        dispatch=dispatch,
    )


def revoke_unlock_batch_use_case(
    *,
    db: Session,
    permissions: PermissionEngine,
    current_user: User,
    department_code: str,
    month: str,
    year: int,
    requested_by: UUID | None,
    now: datetime | None = None,
    dispatch: EventDispatcher | None = dispatch_plan_events,
) -> list[ActionPlan]:
    """Revoke every approved unlock of a batch; an already closed batch is a no-op."""
    month = parse_month(month)
    ts = now or now_utc()
    permissions.require(current_user, "action_plan", "grade", DepartmentScope(department_code))
    plans = _batch_plans(
        db,
        department_code=department_code,
        month=month,
        year=year,
        requested_by=requested_by,
        unlock_status=STATUS_APPROVED,
    )
    if not plans:
        return []

    events: list[PlanEvent] = []
    try:
        for plan in plans:
            _, event = revoke_unlock_access(
                db=db, permissions=permissions, plan_id=plan.id, current_user=current_user, now=ts
            )
            if event is not None:
                events.append(event)
    except DomainError:
        db.rollback()
        raise

    commit_or_store_error(db, operation="revoke_unlock_batch")
    emit(dispatch, events)
    logger.info(
        "Unlock batch revoked: %s item(s) in %s %s %s by user=%s",
        len(plans), department_code, month, year, current_user.id,
    )
    return plans


def group_unlock_batches(plans: Iterable[ActionPlan], *, now: datetime | None = None) -> list[dict[str, Any]]:
    """Fold plans into batches keyed by department, month, year and requester."""
    ts = now or now_utc()
    batches: dict[BatchKey, dict[str, Any]] = {}
    for plan in plans:
        key = unlock_batch_key(plan)
        batch = batches.get(key)
        if batch is None:
            batch = {
                "department_code": plan.department_code,
                "month": plan.month,
                "year": plan.year,
                "requested_by": plan.unlock_requested_by,
                "reason": plan.unlock_reason,
                "requested_at": as_utc(plan.unlock_requested_at),
                "approved_until": None,
                "plan_ids": [],
            }
            batches[key] = batch
        batch["plan_ids"].append(plan.id)
        requested_at = as_utc(plan.unlock_requested_at)
        if requested_at and (batch["requested_at"] is None or requested_at < batch["requested_at"]):
            batch["requested_at"] = requested_at
        until = as_utc(plan.approved_until)
        if until and is_unlock_active(plan, now=ts):
            if batch["approved_until"] is None or until < batch["approved_until"]:
                batch["approved_until"] = until

    for batch in batches.values():
        batch["count"] = len(batch["plan_ids"])
    return sorted(
        batches.values(),
        key=lambda item: (item["year"], month_index(item["month"]), item["department_code"]),
    )


def list_unlock_batches_use_case(
    *,
    db: Session,
    current_user: User,
    state: str = UNLOCK_PENDING,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Pending requests, or approvals whose window is still open ("active")."""
    ts = now or now_utc()
    query = scope_plan_query(db.query(ActionPlan), current_user).filter(ActionPlan.deleted_at.is_(None))
    if state == UNLOCK_PENDING:
        plans = query.filter(ActionPlan.unlock_status == UNLOCK_PENDING).all()
    elif state == "active":
        plans = [
            plan
            for plan in query.filter(ActionPlan.unlock_status == STATUS_APPROVED).all()
            if is_unlock_active(plan, now=ts)
        ]
    else:
        raise validation_failed(f"Unknown unlock listing: {state}", details={"state": state})

    batches = group_unlock_batches(plans, now=ts)
    requester_ids = {batch["requested_by"] for batch in batches if batch["requested_by"]}
    names: dict[UUID, str] = {}
    if requester_ids:
        names = {
            user.id: user.full_name
            for user in db.query(User).filter(User.id.in_(requester_ids)).all()
        }
    for batch in batches:
        batch["requester_name"] = names.get(batch["requested_by"])
    return batches
