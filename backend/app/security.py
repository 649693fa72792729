"""Security helpers (department scoping and read access checks)."""

from __future__ import annotations

from sqlalchemy.orm import Query

from .domain_errors import permission_denied
from .models import ActionPlan, User
from .services.permissions import is_plan_assignee, is_superuser, normalize_role

# Roles that read across every department.
COMPANY_WIDE_READERS: frozenset[str] = frozenset({"admin", "holding_admin", "executive"})


def can_view_department(user: User, department_code: str) -> bool:
    if normalize_role(user.role) in COMPANY_WIDE_READERS:
        return True
    return bool(user.department_code) and user.department_code == department_code


def require_department_access(user: User, department_code: str) -> None:
    if not can_view_department(user, department_code):
        raise permission_denied(
            "Department is outside your scope",
            details={"department_code": department_code},
        )


def can_view_plan(plan: ActionPlan, user: User) -> bool:
    """Staff see their own plans, leaders their department, the rest everything."""
    if not can_view_department(user, plan.department_code):
        return False
    if normalize_role(user.role) == "staff":
        return is_plan_assignee(plan, user)
    return True


def require_plan_visible(plan: ActionPlan, user: User) -> None:
    if not can_view_plan(plan, user):
        raise permission_denied("Action plan is outside your scope", details={"plan_id": str(plan.id)})


def scope_plan_query(query: Query, user: User) -> Query:
    """Restrict a plan query to the departments the user may read."""
    if is_superuser(user) or normalize_role(user.role) in COMPANY_WIDE_READERS:
        return query
    if not user.department_code:
        return query.filter(ActionPlan.id.is_(None))
    return query.filter(ActionPlan.department_code == user.department_code)
