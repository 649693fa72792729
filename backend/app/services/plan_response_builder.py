"""Action plan response serialization helpers."""
from __future__ import annotations

from datetime import datetime

from ..models import ActionPlan
from ..schemas import ActionPlanResponse
from .plan_rules import as_utc, is_editable, normalize_submission_status, normalize_unlock_status, now_utc

_DATETIME_FIELDS = (
    "submitted_at", "reviewed_at", "unlock_requested_at", "approved_until",
    "deleted_at", "created_at", "updated_at",
)


def plan_to_response(plan: ActionPlan, *, now: datetime | None = None) -> ActionPlanResponse:
    """Serialize a plan with derived editability evaluated at `now`."""
    response = ActionPlanResponse.model_validate(plan)
    updates = {name: as_utc(getattr(plan, name)) for name in _DATETIME_FIELDS}
    updates.update(
        submission_status=normalize_submission_status(plan.submission_status),
        unlock_status=normalize_unlock_status(plan.unlock_status),
        is_editable=is_editable(plan, now=now or now_utc()),
    )
    return response.model_copy(update=updates)


def plans_to_response(plans: list[ActionPlan], *, now: datetime | None = None) -> list[ActionPlanResponse]:
    ts = now or now_utc()
    return [plan_to_response(plan, now=ts) for plan in plans]
