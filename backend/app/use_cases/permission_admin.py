"""Permission matrix administration."""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from ..domain_errors import validation_failed
from ..models import RolePermission, User
from ..services.permissions import (
    MATRIX_ROLES,
    PermissionEngine,
    RuleTier,
    is_known_permission,
    normalize_role,
    rule_tier,
)
from .common import commit_or_store_error

logger = logging.getLogger(__name__)


def get_permission_matrix_use_case(*, permissions: PermissionEngine, current_user: User) -> list[dict[str, Any]]:
    permissions.require(current_user, "settings", "manage")
    return permissions.matrix()


def update_permissions_use_case(
    *,
    db: Session,
    permissions: PermissionEngine,
    current_user: User,
    changes: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Upsert configurable cells. A locked cell anywhere in the request rejects the whole update."""
    permissions.require(current_user, "settings", "manage")
    if not changes:
        raise validation_failed("No permission changes supplied")

    rejected: list[dict[str, Any]] = []
    normalized: list[tuple[str, str, str, bool]] = []
    for change in changes:
        role = normalize_role(change.get("role"))
        resource = change.get("resource")
        action = change.get("action")
        if role not in MATRIX_ROLES or not is_known_permission(resource, action):
            rejected.append({"role": role, "resource": resource, "action": action, "reason": "unknown permission"})
            continue
        tier = rule_tier(role, resource, action)
        if tier is not RuleTier.CONFIGURABLE:
            rejected.append({"role": role, "resource": resource, "action": action, "reason": tier.value})
            continue
        normalized.append((role, resource, action, bool(change.get("is_allowed"))))

    if rejected:
        raise validation_failed("Locked or unknown permissions cannot be changed", details={"rejected": rejected})

    for role, resource, action, allowed in normalized:
        row = db.query(RolePermission).filter(
            RolePermission.role == role,
            RolePermission.resource == resource,
            RolePermission.action == action,
        ).first()
        if row is None:
            row = RolePermission(role=role, resource=resource, action=action)
            db.add(row)
        row.is_allowed = allowed
        row.updated_by = current_user.id

    commit_or_store_error(db, operation="update_permissions")
    permissions.invalidate()
    logger.info("Permission matrix updated (%s cell(s)) by user=%s", len(normalized), current_user.id)
    return permissions.matrix()
