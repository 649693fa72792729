"""Audit log endpoints."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import PermissionChecker
from ..database import get_db
from ..models import AuditLog, User
from ..schemas import AuditLogResponse

router = APIRouter(prefix="/audit-logs", tags=["audit"])


@router.get("", response_model=list[AuditLogResponse])
def get_audit_logs(
    action_plan_id: Optional[UUID] = None,
    change_type: Optional[str] = None,
    limit: int = Query(200, ge=1, le=1000),
    current_user: User = Depends(PermissionChecker("settings", "manage")),
    db: Session = Depends(get_db),
):
    """Get recent audit rows (optionally scoped to one plan or change type)."""
    query = db.query(AuditLog)

    if action_plan_id:
        query = query.filter(AuditLog.action_plan_id == action_plan_id)
    if change_type:
        query = query.filter(AuditLog.change_type == change_type)

    return (
        query.order_by(AuditLog.created_at.desc())
        .limit(limit)
        .all()
    )
