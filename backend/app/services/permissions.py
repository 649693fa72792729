"""Role permission engine: fixed rule tiers, stored values for configurable cells, record scope."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from ..domain_errors import permission_denied
from ..models import RolePermission
from .plan_rules import now_utc, pic_matches

logger = logging.getLogger(__name__)

PermissionKey = tuple[str, str, str]


class RuleTier(str, Enum):
    LOCKED_ON = "LOCKED_ON"
    LOCKED_OFF = "LOCKED_OFF"
    CONFIGURABLE = "CONFIGURABLE"


RESOURCE_ACTIONS: dict[str, tuple[str, ...]] = {
    "action_plan": ("create", "edit", "delete", "update_status", "update_progress", "grade", "submit"),
    "user": ("create", "edit", "delete", "view"),
    "report": ("export",),
    "settings": ("manage",),
}

MATRIX_ROLES: tuple[str, ...] = ("admin", "executive", "leader", "staff")
SUPERUSER_ROLES: frozenset[str] = frozenset({"admin", "holding_admin"})
ROLE_ALIASES: dict[str, str] = {"dept_head": "leader"}

_ON = RuleTier.LOCKED_ON
_OFF = RuleTier.LOCKED_OFF
_CFG = RuleTier.CONFIGURABLE

PERMISSION_RULES: dict[str, dict[str, dict[str, RuleTier]]] = {
    "admin": {
        "action_plan": {
            "create": _ON, "edit": _ON, "delete": _ON,
            "update_status": _ON, "update_progress": _ON, "grade": _ON,
            # Admins review submissions, they never submit.
            "submit": _OFF,
        },
        "user": {"create": _ON, "edit": _ON, "delete": _ON, "view": _ON},
        "report": {"export": _ON},
        "settings": {"manage": _ON},
    },
    "executive": {
        "action_plan": {
            "create": _OFF, "edit": _OFF, "delete": _OFF,
            "update_status": _OFF, "update_progress": _OFF, "grade": _OFF, "submit": _OFF,
        },
        "user": {"create": _OFF, "edit": _OFF, "delete": _OFF, "view": _CFG},
        "report": {"export": _CFG},
        "settings": {"manage": _OFF},
    },
    "leader": {
        "action_plan": {
            "create": _CFG, "edit": _CFG, "delete": _CFG,
            "update_status": _ON, "update_progress": _ON, "submit": _ON,
            "grade": _OFF,
        },
        "user": {"create": _OFF, "edit": _OFF, "delete": _OFF, "view": _OFF},
        "report": {"export": _CFG},
        "settings": {"manage": _OFF},
    },
    "staff": {
        "action_plan": {
            "update_status": _ON, "update_progress": _ON,
            "create": _OFF, "edit": _OFF, "delete": _OFF, "grade": _OFF, "submit": _OFF,
        },
        "user": {"create": _OFF, "edit": _OFF, "delete": _OFF, "view": _OFF},
        "report": {"export": _OFF},
        "settings": {"manage": _OFF},
    },
}

# Staff may only perform these on plans assigned to them.
_ASSIGNEE_SCOPED_ACTIONS: frozenset[str] = frozenset({"update_status", "update_progress"})


def normalize_role(role: str | None) -> str:
    value = (role or "").strip().lower()
    return ROLE_ALIASES.get(value, value)


def is_superuser(actor: Any) -> bool:
    return normalize_role(getattr(actor, "role", None)) in SUPERUSER_ROLES


def is_known_permission(resource: str, action: str) -> bool:
    return action in RESOURCE_ACTIONS.get(resource, ())


def rule_tier(role: str, resource: str, action: str) -> RuleTier:
    """Tier for a cell; anything not listed is CONFIGURABLE."""
    return PERMISSION_RULES.get(normalize_role(role), {}).get(resource, {}).get(action, RuleTier.CONFIGURABLE)


@dataclass(frozen=True)
class DepartmentScope:
    """Record stand-in for operations addressed to a whole department month."""

    department_code: str


class PermissionCache:
    """Stored permission values with their fetch time; staleness is a pure predicate."""

    def __init__(self, ttl_seconds: int = 300) -> None:
        self.ttl = timedelta(seconds=ttl_seconds)
        self._value: dict[PermissionKey, bool] | None = None
        self._fetched_at: datetime | None = None
        self._lock = threading.Lock()

    @property
    def value(self) -> dict[PermissionKey, bool] | None:
        return self._value

    @property
    def fetched_at(self) -> datetime | None:
        return self._fetched_at

    def is_stale(self, now: datetime) -> bool:
        if self._value is None or self._fetched_at is None:
            return True
        return now - self._fetched_at >= self.ttl

    def store(self, value: dict[PermissionKey, bool], now: datetime) -> None:
        with self._lock:
            self._value = dict(value)
            self._fetched_at = now

    def invalidate(self) -> None:
        with self._lock:
            self._value = None
            self._fetched_at = None


def load_role_permissions(db: Session) -> dict[PermissionKey, bool]:
    """Read stored values for every (role, resource, action) row."""
    values: dict[PermissionKey, bool] = {}
    for row in db.query(RolePermission).all():
        values[(normalize_role(row.role), row.resource, row.action)] = bool(row.is_allowed)
    return values


class PermissionEngine:
    """Single decision point for role permissions and record scope."""

    def __init__(
        self,
        *,
        load_values: Callable[[], dict[PermissionKey, bool]],
        cache: PermissionCache,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._load_values = load_values
        self.cache = cache
        self._clock = clock

    def stored_values(self) -> dict[PermissionKey, bool]:
        now = self._clock()
        if self.cache.is_stale(now):
            self.cache.store(self._load_values(), now)
        return self.cache.value or {}

    def invalidate(self) -> None:
        self.cache.invalidate()

    def is_allowed(self, role: str | None, resource: str, action: str) -> bool:
        """Role-level decision (no record scope)."""
        normalized = normalize_role(role)
        if normalized in SUPERUSER_ROLES:
            return True
        if not is_known_permission(resource, action):
            logger.debug("Permission %s.%s is outside the matrix; using its stored value", resource, action)
        tier = rule_tier(normalized, resource, action)
        if tier is RuleTier.LOCKED_ON:
            return True
        if tier is RuleTier.LOCKED_OFF:
            return False
        return self.stored_values().get((normalized, resource, action), False)

    def authorize(self, actor: Any, resource: str, action: str, record: Any | None = None) -> bool:
        if actor is None:
            return False
        if is_superuser(actor):
            return True
        if not self.is_allowed(actor.role, resource, action):
            return False
        if record is None or resource != "action_plan":
            return True

        role = normalize_role(actor.role)
        if role in ("leader", "staff"):
            if not actor.department_code or actor.department_code != getattr(record, "department_code", None):
                return False
        if role == "staff" and action in _ASSIGNEE_SCOPED_ACTIONS:
            return is_plan_assignee(record, actor)
        return True

    def require(self, actor: Any, resource: str, action: str, record: Any | None = None) -> None:
        if not self.authorize(actor, resource, action, record):
            raise permission_denied(
                f"Permission denied: {resource}.{action}",
                details={"resource": resource, "action": action},
            )

    def matrix(self) -> list[dict[str, Any]]:
        """Every matrix cell with its tier and effective value."""
        stored = self.stored_values()
        cells: list[dict[str, Any]] = []
        for role in MATRIX_ROLES:
            for resource, actions in RESOURCE_ACTIONS.items():
                for action in actions:
                    tier = rule_tier(role, resource, action)
                    if tier is RuleTier.CONFIGURABLE:
                        value = stored.get((role, resource, action), False)
                    else:
                        value = tier is RuleTier.LOCKED_ON
                    cells.append(
                        {"role": role, "resource": resource, "action": action, "tier": tier.value, "is_allowed": value}
                    )
        return cells


def is_plan_assignee(plan: Any, user: Any) -> bool:
    """Owner by id link when present, otherwise by display name."""
    assignee_id = getattr(plan, "assignee_id", None)
    if assignee_id is not None:
        return assignee_id == user.id
    return pic_matches(getattr(plan, "pic", None), getattr(user, "full_name", None))
