"""Permission matrix endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import get_current_user, get_permission_engine
from ..database import get_db
from ..models import User
from ..schemas import PermissionCell, PermissionUpdateRequest
from ..services.permissions import RESOURCE_ACTIONS, PermissionEngine
from ..use_cases.permission_admin import get_permission_matrix_use_case, update_permissions_use_case

router = APIRouter(prefix="/permissions", tags=["permissions"])


@router.get("", response_model=list[PermissionCell])
def get_permission_matrix(
    current_user: User = Depends(get_current_user),
    permissions: PermissionEngine = Depends(get_permission_engine),
):
    return get_permission_matrix_use_case(permissions=permissions, current_user=current_user)


@router.put("", response_model=list[PermissionCell])
def update_permission_matrix(
    payload: PermissionUpdateRequest,
    current_user: User = Depends(get_current_user),
    permissions: PermissionEngine = Depends(get_permission_engine),
    db: Session = Depends(get_db),
):
    """Change configurable cells; locked cells are rejected."""
    return update_permissions_use_case(
        db=db,
        permissions=permissions,
        current_user=current_user,
        changes=[change.model_dump() for change in payload.changes],
    )


@router.get("/me")
def get_my_permissions(
    current_user: User = Depends(get_current_user),
    permissions: PermissionEngine = Depends(get_permission_engine),
):
    """Effective role-level permissions of the caller."""
    return {
        resource: {action: permissions.is_allowed(current_user.role, resource, action) for action in actions}
        for resource, actions in RESOURCE_ACTIONS.items()
    }
