"""SQLAlchemy models for departments, users, action plans, permissions, audit and notifications."""
from sqlalchemy import (
    Boolean, Column, String, Integer, DateTime, Text, JSON, Uuid,
    ForeignKey, CheckConstraint, Index, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from .database import Base
from .services.plan_rules import ALL_STATUSES, MONTHS, SUBMISSION_STATUSES, UNLOCK_STATUSES

USER_ROLES = ("holding_admin", "admin", "executive", "leader", "dept_head", "staff")


class Department(Base):
    """Department (organizational unit owning action plans)."""
    __tablename__ = "departments"

    code = Column(String(20), primary_key=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    users = relationship("User", back_populates="department")


class User(Base):
    """User model."""
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False)
    role = Column(String(50), nullable=False, index=True)
    department_code = Column(String(20), ForeignKey("departments.code"), nullable=True, index=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(role.in_(USER_ROLES), name='chk_user_role'),
    )

    department = relationship("Department", back_populates="users")


class ActionPlan(Base):
    """
    Monthly action plan item.

    Lifecycle is carried by three columns: submission_status (draft/submitted),
    quality_score (NULL until graded) and unlock_status + approved_until for the
    time-bounded unlock window.
    """
    __tablename__ = "action_plans"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    department_code = Column(String(20), ForeignKey("departments.code"), nullable=False, index=True)
    month = Column(String(20), nullable=False)
    year = Column(Integer, nullable=False)

    category = Column(String(100), nullable=True)
    area_focus = Column(Text, nullable=True)
    goal_strategy = Column(Text, nullable=True)
    action_plan = Column(Text, nullable=False)
    indicator = Column(Text, nullable=True)
    report_format = Column(String(100), nullable=True)
    pic = Column(String(255), nullable=True)  # display name of the person in charge
    assignee_id = Column(Uuid, ForeignKey("users.id"), nullable=True, index=True)

    status = Column(String(30), nullable=False, default="Pending")
    outcome_link = Column(Text, nullable=True)
    remark = Column(Text, nullable=True)
    evidence = Column(Text, nullable=True)

    submission_status = Column(String(20), nullable=False, default="draft", index=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    submitted_by = Column(Uuid, ForeignKey("users.id"), nullable=True)

    quality_score = Column(Integer, nullable=True)
    admin_feedback = Column(Text, nullable=True)
    reviewed_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)

    unlock_status = Column(String(20), nullable=False, default="none", index=True)
    unlock_reason = Column(Text, nullable=True)
    unlock_requested_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    unlock_requested_at = Column(DateTime(timezone=True), nullable=True)
    unlock_approved_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    unlock_approved_at = Column(DateTime(timezone=True), nullable=True)
    unlock_rejection_reason = Column(Text, nullable=True)
    approved_until = Column(DateTime(timezone=True), nullable=True)

    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)
    deleted_by = Column(String(255), nullable=True)
    deletion_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(month.in_(MONTHS), name='chk_action_plan_month'),
        CheckConstraint(status.in_(ALL_STATUSES), name='chk_action_plan_status'),
        CheckConstraint(submission_status.in_(SUBMISSION_STATUSES), name='chk_action_plan_submission_status'),
        CheckConstraint(unlock_status.in_(UNLOCK_STATUSES), name='chk_action_plan_unlock_status'),
        CheckConstraint(
            "quality_score IS NULL OR (quality_score >= 0 AND quality_score <= 100)",
            name='chk_action_plan_quality_score_range'
        ),
        CheckConstraint(
            "unlock_status = 'approved' OR approved_until IS NULL",
            name='chk_action_plan_approved_until_requires_approval'
        ),
        Index('idx_action_plans_scope', 'department_code', 'year', 'month'),
    )


class RolePermission(Base):
    """Stored value for a CONFIGURABLE (role, resource, action) cell."""
    __tablename__ = "role_permissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    role = Column(String(50), nullable=False)
    resource = Column(String(50), nullable=False)
    action = Column(String(50), nullable=False)
    is_allowed = Column(Boolean, nullable=False, default=False)
    updated_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('role', 'resource', 'action', name='uq_role_permission_cell'),
    )


AUDIT_CHANGE_TYPES = (
    'CREATED', 'UPDATED', 'STATUS_UPDATE', 'SUBMITTED', 'RECALLED',
    'APPROVED', 'REJECTED', 'GRADE_RESET',
    'DELETED', 'RESTORED', 'PERMANENTLY_DELETED',
    'UNLOCK_REQUESTED', 'UNLOCK_APPROVED', 'UNLOCK_REJECTED', 'UNLOCK_REVOKED',
)


class AuditLog(Base):
    """Audit trail row for an action plan (kept after permanent deletion)."""
    __tablename__ = "audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # No FK: history must outlive the plan row.
    action_plan_id = Column(Uuid, nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=True, index=True)
    user_name = Column(String(255), nullable=True)
    change_type = Column(String(30), nullable=False, index=True)
    previous_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(change_type.in_(AUDIT_CHANGE_TYPES), name='chk_audit_change_type'),
    )


PROGRESS_LOG_TYPES = ('progress_update', 'blocker_report', 'blocker_resolved', 'comment')


class ProgressLog(Base):
    """Progress note written alongside a status or progress update."""
    __tablename__ = "progress_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # No FK, same as audit_logs.
    action_plan_id = Column(Uuid, nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    user_name = Column(String(255), nullable=True)
    type = Column(String(30), nullable=False, default='progress_update')
    message = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(type.in_(PROGRESS_LOG_TYPES), name='chk_progress_log_type'),
    )


NOTIFICATION_TYPES = (
    'STATUS_CHANGE', 'GRADE_RECEIVED', 'KICKBACK',
    'UNLOCK_APPROVED', 'UNLOCK_REJECTED', 'UNLOCK_REVOKED',
)


class Notification(Base):
    """In-app notification, one row per recipient."""
    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    actor_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    action_plan_id = Column(Uuid, nullable=True, index=True)
    type = Column(String(30), nullable=False)
    message = Column(Text, nullable=False)
    meta_data = Column(JSON, default=dict)
    is_read = Column(Boolean, default=False, nullable=False)
    # Format: type:event_id:user_id
    idempotency_key = Column(String(255), unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(type.in_(NOTIFICATION_TYPES), name='chk_notification_type'),
    )
