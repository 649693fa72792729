"""Action plan record use cases: create, edit, progress updates, deletion and history."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from ..domain_errors import DomainError, permission_denied, precondition_failed, validation_failed
from ..models import ActionPlan, AuditLog, ProgressLog, User
from ..security import can_view_plan, require_department_access, require_plan_visible, scope_plan_query
from ..services.change_log import describe_changes, record_audit, snapshot
from ..services.permissions import DepartmentScope, PermissionEngine, is_superuser
from ..services.plan_events import (
    STATUS_CHANGE,
    EventDispatcher,
    dispatch_plan_events,
    emit,
    plan_event,
)
from ..services.plan_rules import (
    STATUS_ACHIEVED,
    STATUS_PENDING,
    SUBMISSION_DRAFT,
    UNLOCK_NONE,
    is_editable,
    normalize_month,
    now_utc,
    validate_completion_status,
)
from .common import commit_or_store_error, editable_clause, get_plan_or_404

logger = logging.getLogger(__name__)

CONTENT_FIELDS: tuple[str, ...] = (
    "category", "area_focus", "goal_strategy", "action_plan", "indicator", "report_format", "pic", "assignee_id",
    "month", "year", "status", "outcome_link", "remark", "evidence",
)
PROGRESS_FIELDS: tuple[str, ...] = ("outcome_link", "remark", "evidence")
MIN_YEAR = 2000
MAX_YEAR = 2100


def _clean_plan_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Validate and normalize writable plan fields; raises ValueError."""
    cleaned: dict[str, Any] = {}
    for name, value in fields.items():
        if name not in CONTENT_FIELDS:
            raise ValueError(f"Field {name!r} cannot be set")
        if name == "month":
            value = normalize_month(value)
        elif name == "year":
            if not isinstance(value, int) or not MIN_YEAR <= value <= MAX_YEAR:
                raise ValueError(f"Year must be between {MIN_YEAR} and {MAX_YEAR}")
        elif name == "status":
            value = validate_completion_status(value)
        elif name == "action_plan":
            value = (value or "").strip()
            if not value:
                raise ValueError("Action plan text is required")
        elif isinstance(value, str):
            value = value.strip() or None
        cleaned[name] = value
    return cleaned


def _ensure_unlocked(plan: ActionPlan, current_user: User, *, now: datetime) -> None:
    if is_superuser(current_user):
        return
    if not is_editable(plan, now=now):
        raise precondition_failed(
            "This item is locked; request an unlock to edit it",
            details={"plan_id": str(plan.id), "submission_status": plan.submission_status},
        )


def _write_if_editable(
    db: Session,
    plan: ActionPlan,
    current_user: User,
    values: dict[str, Any],
    *,
    now: datetime,
) -> None:
    """
    Apply `values` with one conditional UPDATE.

    For non-superusers the row must still be a draft or inside an open unlock
    window when the statement runs; a lock that landed after the plan was read
    leaves the row untouched and raises PRECONDITION_FAILED.
    """
    query = db.query(ActionPlan).filter(ActionPlan.id == plan.id, ActionPlan.deleted_at.is_(None))
    if not is_superuser(current_user):
        query = query.filter(editable_clause(now))
    updated = query.update(
        {getattr(ActionPlan, name): value for name, value in values.items()},
        synchronize_session=False,
    )
    if updated != 1:
        plan_id = str(plan.id)
        db.rollback()
        logger.info("Write to plan=%s lost to a concurrent lock", plan_id)
        raise precondition_failed(
            "This item was locked before the change was saved; request an unlock to edit it",
            details={"plan_id": plan_id},
        )
    db.refresh(plan)


def _new_plan(*, department_code: str, fields: dict[str, Any]) -> ActionPlan:
    return ActionPlan(
        department_code=department_code,
        status=fields.pop("status", STATUS_PENDING),
        submission_status=SUBMISSION_DRAFT,
        unlock_status=UNLOCK_NONE,
        **fields,
    )


def create_plan_use_case(
    *,
    db: Session,
    permissions: PermissionEngine,
    current_user: User,
    department_code: str,
    fields: dict[str, Any],
) -> ActionPlan:
    """Create a draft plan in a department month."""
    permissions.require(current_user, "action_plan", "create", DepartmentScope(department_code))
    missing = [name for name in ("month", "year", "action_plan") if fields.get(name) in (None, "")]
    if missing:
        raise validation_failed("Missing required fields", details={"missing": missing})
    try:
        cleaned = _clean_plan_fields(fields)
    except ValueError as exc:
        raise validation_failed(str(exc)) from exc

    plan = _new_plan(department_code=department_code, fields=cleaned)
    db.add(plan)
    db.flush()
    record_audit(
        db,
        plan=plan,
        actor=current_user,
        change_type="CREATED",
        description=f"Created action plan for {plan.month} {plan.year}",
        new_value=snapshot(plan),
    )
    commit_or_store_error(db, operation="create_plan")
    db.refresh(plan)
    logger.info("Created plan=%s in %s by user=%s", plan.id, department_code, current_user.id)
    return plan


def bulk_create_plans_use_case(
    *,
    db: Session,
    permissions: PermissionEngine,
    current_user: User,
    items: list[dict[str, Any]],
) -> list[ActionPlan]:
    """Create many plans at once; any invalid item rejects the whole import."""
    if not items:
        raise validation_failed("No items to import")

    prepared: list[tuple[str, dict[str, Any]]] = []
    errors: list[dict[str, Any]] = []
    for index, item in enumerate(items):
        payload = dict(item)
        department_code = payload.pop("department_code", None)
        if not department_code:
            errors.append({"index": index, "message": "department_code is required"})
            continue
        if not permissions.authorize(current_user, "action_plan", "create", DepartmentScope(department_code)):
            errors.append({"index": index, "message": f"Not allowed to create plans in {department_code}"})
            continue
        missing = [name for name in ("month", "year", "action_plan") if payload.get(name) in (None, "")]
        if missing:
            errors.append({"index": index, "message": f"Missing required fields: {', '.join(missing)}"})
            continue
        try:
            prepared.append((department_code, _clean_plan_fields(payload)))
        except ValueError as exc:
            errors.append({"index": index, "message": str(exc)})

    if errors:
        raise validation_failed("Import rejected; no items were created", details={"errors": errors})

    plans: list[ActionPlan] = []
    for department_code, cleaned in prepared:
        plan = _new_plan(department_code=department_code, fields=cleaned)
        db.add(plan)
        plans.append(plan)
    db.flush()
    for plan in plans:
        record_audit(
            db,
            plan=plan,
            actor=current_user,
            change_type="CREATED",
            description=f"Imported action plan for {plan.month} {plan.year}",
            new_value=snapshot(plan),
        )
    commit_or_store_error(db, operation="bulk_create_plans")
    for plan in plans:
        db.refresh(plan)
    logger.info("Imported %s plan(s) by user=%s", len(plans), current_user.id)
    return plans


def update_plan_use_case(
    *,
    db: Session,
    permissions: PermissionEngine,
    plan_id: UUID,
    current_user: User,
    changes: dict[str, Any],
    now: datetime | None = None,
    dispatch: EventDispatcher | None = dispatch_plan_events,
) -> ActionPlan:
    """Edit plan content while it is a draft or inside an unlock window."""
    ts = now or now_utc()
    plan = get_plan_or_404(db, plan_id)
    permissions.require(current_user, "action_plan", "edit", plan)
    _ensure_unlocked(plan, current_user, now=ts)
    try:
        cleaned = _clean_plan_fields(changes)
    except ValueError as exc:
        raise validation_failed(str(exc)) from exc
    if not cleaned:
        return plan

    before = snapshot(plan)
    old_status = plan.status
    _write_if_editable(db, plan, current_user, cleaned, now=ts)
    after = snapshot(plan)

    record_audit(
        db,
        plan=plan,
        actor=current_user,
        change_type="UPDATED",
        description=describe_changes(before, after),
        previous_value=before,
        new_value=after,
    )
    commit_or_store_error(db, operation="update_plan")
    db.refresh(plan)

    if plan.status != old_status:
        emit(dispatch, [_status_event(plan, current_user, old_status)])
    logger.info("Updated plan=%s fields=%s by user=%s", plan.id, sorted(cleaned), current_user.id)
    return plan


def _status_event(plan: ActionPlan, actor: User, old_status: str | None):
    return plan_event(
        STATUS_CHANGE,
        plan=plan,
        actor=actor,
        message=f"Status changed from {old_status} to {plan.status}",
        old_status=old_status,
        new_status=plan.status,
    )


def update_plan_status_use_case(
    *,
    db: Session,
    permissions: PermissionEngine,
    plan_id: UUID,
    current_user: User,
    status: str | None = None,
    progress: dict[str, Any] | None = None,
    note: str | None = None,
    now: datetime | None = None,
    dispatch: EventDispatcher | None = dispatch_plan_events,
) -> ActionPlan:
    """
    Completion status and progress fields (outcome link, remark, evidence).

    A progress update also appends a progress log entry: the caller's note,
    or the change description when no note is given.
    """
    progress = {key: value for key, value in (progress or {}).items() if value is not None}
    unknown = set(progress) - set(PROGRESS_FIELDS)
    if unknown:
        raise validation_failed("Unknown progress fields", details={"fields": sorted(unknown)})
    if status is None and not progress:
        raise validation_failed("Nothing to update")
    note = (note or "").strip() or None

    ts = now or now_utc()
    plan = get_plan_or_404(db, plan_id)
    if status is not None:
        permissions.require(current_user, "action_plan", "update_status", plan)
    if progress or note:
        permissions.require(current_user, "action_plan", "update_progress", plan)
    _ensure_unlocked(plan, current_user, now=ts)

    changes: dict[str, Any] = dict(progress)
    if status is not None:
        changes["status"] = status
    try:
        cleaned = _clean_plan_fields(changes)
    except ValueError as exc:
        raise validation_failed(str(exc)) from exc

    old_status = plan.status
    before = snapshot(plan, list(cleaned))
    _write_if_editable(db, plan, current_user, cleaned, now=ts)
    after = snapshot(plan, list(cleaned))
    description = describe_changes(before, after)
    record_audit(
        db,
        plan=plan,
        actor=current_user,
        change_type="STATUS_UPDATE" if "status" in cleaned else "UPDATED",
        description=description,
        previous_value=before,
        new_value=after,
    )
    if progress or note:
        db.add(ProgressLog(
            action_plan_id=plan.id,
            user_id=current_user.id,
            user_name=current_user.full_name,
            type="progress_update",
            message=note or description,
        ))
    commit_or_store_error(db, operation="update_plan_status")
    db.refresh(plan)

    if plan.status != old_status:
        emit(dispatch, [_status_event(plan, current_user, old_status)])
    logger.info("Plan %s status=%s by user=%s", plan.id, plan.status, current_user.id)
    return plan


def soft_delete_plan_use_case(
    *,
    db: Session,
    permissions: PermissionEngine,
    plan_id: UUID,
    current_user: User,
    reason: str,
    now: datetime | None = None,
) -> ActionPlan:
    """Move a plan to the recycle bin."""
    ts = now or now_utc()
    plan = get_plan_or_404(db, plan_id)
    permissions.require(current_user, "action_plan", "delete", plan)
    if plan.status == STATUS_ACHIEVED and not is_superuser(current_user):
        raise permission_denied("Achieved items can only be deleted by an administrator")
    _ensure_unlocked(plan, current_user, now=ts)
    reason = (reason or "").strip()
    if not reason:
        raise validation_failed("A deletion reason is required")

    previous = snapshot(plan)
    _write_if_editable(
        db,
        plan,
        current_user,
        {"deleted_at": ts, "deleted_by": current_user.full_name, "deletion_reason": reason},
        now=ts,
    )
    record_audit(
        db,
        plan=plan,
        actor=current_user,
        change_type="DELETED",
        description=f"Moved to recycle bin: {reason}",
        previous_value=previous,
    )
    commit_or_store_error(db, operation="soft_delete_plan")
    db.refresh(plan)
    logger.info("Soft-deleted plan=%s by user=%s", plan.id, current_user.id)
    return plan


def restore_plan_use_case(
    *,
    db: Session,
    permissions: PermissionEngine,
    plan_id: UUID,
    current_user: User,
) -> ActionPlan:
    plan = get_plan_or_404(db, plan_id, include_deleted=True)
    permissions.require(current_user, "action_plan", "delete", plan)
    if plan.deleted_at is None:
        return plan

    reason = plan.deletion_reason
    plan.deleted_at = None
    plan.deleted_by = None
    plan.deletion_reason = None
    record_audit(
        db,
        plan=plan,
        actor=current_user,
        change_type="RESTORED",
        description="Restored from recycle bin",
        previous_value={"deletion_reason": reason},
    )
    commit_or_store_error(db, operation="restore_plan")
    db.refresh(plan)
    logger.info("Restored plan=%s by user=%s", plan.id, current_user.id)
    return plan


def permanently_delete_plan_use_case(
    *,
    db: Session,
    plan_id: UUID,
    current_user: User,
) -> None:
    """Remove a recycled plan for good; its audit history is kept."""
    if not is_superuser(current_user):
        raise permission_denied("Only administrators can permanently delete action plans")
    plan = get_plan_or_404(db, plan_id, include_deleted=True)
    if plan.deleted_at is None:
        raise precondition_failed(
            "Move the item to the recycle bin before deleting it permanently",
            details={"plan_id": str(plan.id)},
        )

    record_audit(
        db,
        plan=plan,
        actor=current_user,
        change_type="PERMANENTLY_DELETED",
        description=f"Permanently deleted ({plan.department_code} {plan.month} {plan.year})",
        previous_value=snapshot(plan),
    )
    db.delete(plan)
    commit_or_store_error(db, operation="permanently_delete_plan")
    logger.warning("Permanently deleted plan=%s by user=%s", plan_id, current_user.id)


def list_plans_use_case(
    *,
    db: Session,
    current_user: User,
    department_code: str | None = None,
    month: str | None = None,
    year: int | None = None,
    submission_status: str | None = None,
    status: str | None = None,
) -> list[ActionPlan]:
    query = scope_plan_query(db.query(ActionPlan), current_user).filter(ActionPlan.deleted_at.is_(None))
    if department_code:
        require_department_access(current_user, department_code)
        query = query.filter(ActionPlan.department_code == department_code)
    if month:
        try:
            query = query.filter(ActionPlan.month == normalize_month(month))
        except ValueError as exc:
            raise validation_failed(str(exc)) from exc
    if year is not None:
        query = query.filter(ActionPlan.year == year)
    if submission_status:
        query = query.filter(ActionPlan.submission_status == submission_status)
    if status:
        query = query.filter(ActionPlan.status == status)
    plans = query.order_by(ActionPlan.year.desc(), ActionPlan.department_code, ActionPlan.created_at).all()
    return [plan for plan in plans if can_view_plan(plan, current_user)]


def get_plan_use_case(*, db: Session, plan_id: UUID, current_user: User) -> ActionPlan:
    plan = get_plan_or_404(db, plan_id)
    require_plan_visible(plan, current_user)
    return plan


def list_deleted_plans_use_case(
    *,
    db: Session,
    permissions: PermissionEngine,
    current_user: User,
) -> list[ActionPlan]:
    """Recycle bin contents visible to the caller."""
    if not permissions.authorize(current_user, "action_plan", "delete"):
        raise permission_denied("Permission denied: action_plan.delete")
    query = scope_plan_query(db.query(ActionPlan), current_user).filter(ActionPlan.deleted_at.isnot(None))
    return query.order_by(ActionPlan.deleted_at.desc()).all()


def _audit_entry(entry: AuditLog) -> dict[str, Any]:
    return {
        "id": entry.id,
        "kind": "audit",
        "action_plan_id": entry.action_plan_id,
        "user_id": entry.user_id,
        "user_name": entry.user_name,
        "change_type": entry.change_type,
        "description": entry.description,
        "previous_value": entry.previous_value,
        "new_value": entry.new_value,
        "created_at": entry.created_at,
    }


def _progress_entry(entry: ProgressLog) -> dict[str, Any]:
    return {
        "id": entry.id,
        "kind": "progress",
        "action_plan_id": entry.action_plan_id,
        "user_id": entry.user_id,
        "user_name": entry.user_name,
        "change_type": entry.type,
        "description": entry.message,
        "previous_value": None,
        "new_value": None,
        "created_at": entry.created_at,
    }


def plan_history_use_case(*, db: Session, plan_id: UUID, current_user: User) -> list[dict[str, Any]]:
    """Audit rows and progress notes of one plan merged into a single timeline, newest first."""
    try:
        plan = get_plan_or_404(db, plan_id, include_deleted=True)
    except DomainError:
        if not is_superuser(current_user):
            raise
        # Permanently deleted plans keep their history for administrators.
        plan = None
    if plan is not None:
        require_plan_visible(plan, current_user)
    entries = [
        _audit_entry(entry)
        for entry in db.query(AuditLog).filter(AuditLog.action_plan_id == plan_id).all()
    ]
    entries.extend(
        _progress_entry(entry)
        for entry in db.query(ProgressLog).filter(ProgressLog.action_plan_id == plan_id).all()
    )
    entries.sort(key=lambda entry: entry["created_at"] or datetime.min, reverse=True)
    return entries
