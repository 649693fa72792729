"""Pydantic schemas for API."""
from pydantic import BaseModel, Field, ConfigDict
from typing import Any, Literal, Optional
from datetime import datetime
from uuid import UUID


# Auth / users
class LoginRequest(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    id: UUID
    email: str
    full_name: str
    role: str
    department_code: Optional[str] = None
    is_active: bool
    model_config = ConfigDict(from_attributes=True)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


# Action plans
class ActionPlanFields(BaseModel):
    """Editable plan content."""
    category: Optional[str] = None
    area_focus: Optional[str] = None
    goal_strategy: Optional[str] = None
    action_plan: Optional[str] = None
    indicator: Optional[str] = None
    report_format: Optional[str] = None
    pic: Optional[str] = None
    assignee_id: Optional[UUID] = None
    month: Optional[str] = None
    year: Optional[int] = None
    status: Optional[str] = None
    outcome_link: Optional[str] = None
    remark: Optional[str] = None
    evidence: Optional[str] = None


class ActionPlanCreate(ActionPlanFields):
    department_code: str
    month: str
    year: int
    action_plan: str


class ActionPlanBulkCreate(BaseModel):
    items: list[dict[str, Any]] = Field(min_length=1)


class ActionPlanUpdate(ActionPlanFields):
    pass


class ActionPlanStatusUpdate(BaseModel):
    status: Optional[str] = None
    outcome_link: Optional[str] = None
    remark: Optional[str] = None
    evidence: Optional[str] = None
    note: Optional[str] = None


class ActionPlanDelete(BaseModel):
    reason: str = Field(min_length=1)


class ActionPlanResponse(BaseModel):
    id: UUID
    department_code: str
    month: str
    year: int
    category: Optional[str] = None
    area_focus: Optional[str] = None
    goal_strategy: Optional[str] = None
    action_plan: str
    indicator: Optional[str] = None
    report_format: Optional[str] = None
    pic: Optional[str] = None
    assignee_id: Optional[UUID] = None
    status: str
    outcome_link: Optional[str] = None
    remark: Optional[str] = None
    evidence: Optional[str] = None
    submission_status: str
    submitted_at: Optional[datetime] = None
    quality_score: Optional[int] = None
    admin_feedback: Optional[str] = None
    reviewed_by: Optional[UUID] = None
    reviewed_at: Optional[datetime] = None
    unlock_status: str
    unlock_reason: Optional[str] = None
    unlock_requested_by: Optional[UUID] = None
    unlock_requested_at: Optional[datetime] = None
    unlock_rejection_reason: Optional[str] = None
    approved_until: Optional[datetime] = None
    is_editable: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None
    deletion_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class GradeRequest(BaseModel):
    decision: Literal["approve", "reject"]
    quality_score: Optional[int] = None
    feedback: Optional[str] = None


class GradeResetRequest(BaseModel):
    """Type-to-confirm company-wide grade reset."""
    confirmation: str
    department_code: Optional[str] = None
    month: Optional[str] = None
    year: Optional[int] = None


class GradeResetResponse(BaseModel):
    reset_count: int


class BatchResultResponse(BaseModel):
    success_count: int
    skipped_count: int = 0
    succeeded: list[str] = []
    failures: list[dict[str, Any]] = []


class MonthStatusResponse(BaseModel):
    department_code: str
    month: str
    year: int
    total_count: int
    draft_count: int
    submitted_count: int
    graded_count: int
    ungraded_count: int
    recallable_count: int
    pending_unlock_count: int
    finalize_blockers: list[str]
    can_finalize: bool
    can_recall: bool


# Unlock workflow
class UnlockRequestCreate(BaseModel):
    department_code: str
    month: str
    year: int
    reason: str = Field(min_length=1)
    plan_ids: Optional[list[UUID]] = None


class UnlockBatchKey(BaseModel):
    department_code: str
    month: str
    year: int
    requested_by: Optional[UUID] = None


class UnlockApproveRequest(UnlockBatchKey):
    duration_hours: Optional[int] = None
    expires_at: Optional[datetime] = None


class UnlockRejectRequest(UnlockBatchKey):
    reason: Optional[str] = None


class UnlockDecisionRequest(BaseModel):
    action: Literal["APPROVE", "REJECT"]
    duration_hours: Optional[int] = None
    expires_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None


class UnlockBatchResponse(BaseModel):
    department_code: str
    month: str
    year: int
    requested_by: Optional[UUID] = None
    requester_name: Optional[str] = None
    reason: Optional[str] = None
    requested_at: Optional[datetime] = None
    approved_until: Optional[datetime] = None
    plan_ids: list[UUID]
    count: int


# Permissions
class PermissionCell(BaseModel):
    role: str
    resource: str
    action: str
    tier: str
    is_allowed: bool


class PermissionChange(BaseModel):
    role: str
    resource: str
    action: str
    is_allowed: bool


class PermissionUpdateRequest(BaseModel):
    changes: list[PermissionChange] = Field(min_length=1)


# Audit / notifications
class AuditLogResponse(BaseModel):
    id: UUID
    action_plan_id: UUID
    user_id: Optional[UUID] = None
    user_name: Optional[str] = None
    change_type: str
    previous_value: Optional[dict[str, Any]] = None
    new_value: Optional[dict[str, Any]] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class HistoryEntryResponse(BaseModel):
    """One row of a plan timeline: an audit entry or a progress note."""
    id: UUID
    kind: Literal["audit", "progress"]
    action_plan_id: UUID
    user_id: Optional[UUID] = None
    user_name: Optional[str] = None
    change_type: str
    description: Optional[str] = None
    previous_value: Optional[dict[str, Any]] = None
    new_value: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None


class NotificationResponse(BaseModel):
    id: UUID
    action_plan_id: Optional[UUID] = None
    actor_id: Optional[UUID] = None
    type: str
    message: str
    is_read: bool
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)
