"""Helpers shared by action plan use cases."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..domain_errors import not_found, store_error, validation_failed
from ..models import ActionPlan
from ..services.plan_rules import SUBMISSION_DRAFT, UNLOCK_APPROVED, normalize_month

logger = logging.getLogger(__name__)


def get_plan_or_404(db: Session, plan_id: UUID, *, include_deleted: bool = False) -> ActionPlan:
    query = db.query(ActionPlan).filter(ActionPlan.id == plan_id)
    if not include_deleted:
        query = query.filter(ActionPlan.deleted_at.is_(None))
    plan = query.first()
    if not plan:
        raise not_found("Action plan not found", details={"plan_id": str(plan_id)})
    return plan


def month_scope_query(db: Session, *, department_code: str, month: str, year: int):
    """Active (not soft-deleted) plans of one department month."""
    return db.query(ActionPlan).filter(
        ActionPlan.department_code == department_code,
        ActionPlan.month == month,
        ActionPlan.year == year,
        ActionPlan.deleted_at.is_(None),
    )


def parse_month(month: str) -> str:
    try:
        return normalize_month(month)
    except ValueError as exc:
        raise validation_failed(str(exc), details={"month": month}) from exc


def commit_or_store_error(db: Session, *, operation: str) -> None:
    """Commit the unit of work; store failures roll back and surface as STORE_ERROR."""
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Commit failed during %s", operation)
        raise store_error(f"Could not save changes ({operation})", details={"operation": operation}) from exc


@dataclass
class BatchResult:
    """Outcome of a multi-record operation."""

    success_count: int = 0
    skipped_count: int = 0
    succeeded: list[str] = field(default_factory=list)
    failures: list[dict[str, Any]] = field(default_factory=list)

    def ok(self, record_id: Any) -> None:
        self.success_count += 1
        self.succeeded.append(str(record_id))

    def fail(self, record_id: Any, *, code: str, message: str) -> None:
        self.failures.append({"id": str(record_id), "code": code, "message": message})

    def as_dict(self) -> dict[str, Any]:
        return {
            "success_count": self.success_count,
            "skipped_count": self.skipped_count,
            "succeeded": self.succeeded,
            "failures": self.failures,
        }


# Applied whenever a plan returns to draft.
UNLOCK_RESET_VALUES: dict[str, Any] = {"unlock_status": "none", "approved_until": None}


def editable_clause(now: datetime):
    """SQL form of is_editable: a draft, or an approved unlock still open at `now`."""
    return or_(
        ActionPlan.submission_status == SUBMISSION_DRAFT,
        and_(ActionPlan.unlock_status == UNLOCK_APPROVED, ActionPlan.approved_until > now),
    )
