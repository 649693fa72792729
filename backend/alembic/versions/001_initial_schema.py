"""initial schema: departments, users, action plans, permissions, audit, notifications

Revision ID: 001
Revises: 
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

MONTHS = (
    'January', 'February', 'March', 'April', 'May', 'June',
    'July', 'August', 'September', 'October', 'November', 'December',
)
STATUSES = ('Pending', 'On Progress', 'Achieved', 'Not Achieved', 'Internal Review', 'Waiting Approval')


def _in(column: str, values) -> str:
    return f"{column} IN ({', '.join(repr(value) for value in values)})"


def upgrade() -> None:
    op.create_table(
        'departments',
        sa.Column('code', sa.String(20), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('role', sa.String(50), nullable=False),
        sa.Column('department_code', sa.String(20), sa.ForeignKey('departments.code'), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            _in('role', ('holding_admin', 'admin', 'executive', 'leader', 'dept_head', 'staff')),
            name='chk_user_role',
        ),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_department_code', 'users', ['department_code'])

    op.create_table(
        'action_plans',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('department_code', sa.String(20), sa.ForeignKey('departments.code'), nullable=False),
        sa.Column('month', sa.String(20), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('goal_strategy', sa.Text(), nullable=True),
        sa.Column('action_plan', sa.Text(), nullable=False),
        sa.Column('indicator', sa.Text(), nullable=True),
        sa.Column('report_format', sa.String(100), nullable=True),
        sa.Column('pic', sa.String(255), nullable=True),
        sa.Column('assignee_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('status', sa.String(30), nullable=False, server_default='Pending'),
        sa.Column('outcome_link', sa.Text(), nullable=True),
        sa.Column('remark', sa.Text(), nullable=True),
        sa.Column('evidence', sa.Text(), nullable=True),
        sa.Column('submission_status', sa.String(20), nullable=False, server_default='draft'),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('submitted_by', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('quality_score', sa.Integer(), nullable=True),
        sa.Column('admin_feedback', sa.Text(), nullable=True),
        sa.Column('reviewed_by', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('unlock_status', sa.String(20), nullable=False, server_default='none'),
        sa.Column('unlock_reason', sa.Text(), nullable=True),
        sa.Column('unlock_requested_by', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('unlock_requested_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('unlock_approved_by', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('unlock_approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('unlock_rejection_reason', sa.Text(), nullable=True),
        sa.Column('approved_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_by', sa.String(255), nullable=True),
        sa.Column('deletion_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(_in('month', MONTHS), name='chk_action_plan_month'),
        sa.CheckConstraint(_in('status', STATUSES), name='chk_action_plan_status'),
        sa.CheckConstraint(_in('submission_status', ('draft', 'submitted')), name='chk_action_plan_submission_status'),
        sa.CheckConstraint(
            _in('unlock_status', ('none', 'pending', 'approved', 'rejected')),
            name='chk_action_plan_unlock_status',
        ),
        sa.CheckConstraint(
            'quality_score IS NULL OR (quality_score >= 0 AND quality_score <= 100)',
            name='chk_action_plan_quality_score_range',
        ),
        sa.CheckConstraint(
            "unlock_status = 'approved' OR approved_until IS NULL",
            name='chk_action_plan_approved_until_requires_approval',
        ),
    )
    op.create_index('idx_action_plans_scope', 'action_plans', ['department_code', 'year', 'month'])
    op.create_index('ix_action_plans_department_code', 'action_plans', ['department_code'])
    op.create_index('ix_action_plans_assignee_id', 'action_plans', ['assignee_id'])
    op.create_index('ix_action_plans_submission_status', 'action_plans', ['submission_status'])
    op.create_index('ix_action_plans_unlock_status', 'action_plans', ['unlock_status'])
    op.create_index('ix_action_plans_deleted_at', 'action_plans', ['deleted_at'])

    op.create_table(
        'role_permissions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('role', sa.String(50), nullable=False),
        sa.Column('resource', sa.String(50), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('is_allowed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('updated_by', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('role', 'resource', 'action', name='uq_role_permission_cell'),
    )

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('action_plan_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('user_name', sa.String(255), nullable=True),
        sa.Column('change_type', sa.String(30), nullable=False),
        sa.Column('previous_value', sa.JSON(), nullable=True),
        sa.Column('new_value', sa.JSON(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            _in('change_type', (
                'CREATED', 'UPDATED', 'STATUS_UPDATE', 'SUBMITTED', 'RECALLED',
                'APPROVED', 'REJECTED', 'GRADE_RESET',
                'DELETED', 'RESTORED', 'PERMANENTLY_DELETED',
                'UNLOCK_REQUESTED', 'UNLOCK_APPROVED', 'UNLOCK_REJECTED', 'UNLOCK_REVOKED',
            )),
            name='chk_audit_change_type',
        ),
    )
    op.create_index('ix_audit_logs_action_plan_id', 'audit_logs', ['action_plan_id'])
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
    op.create_index('ix_audit_logs_change_type', 'audit_logs', ['change_type'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('actor_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('action_plan_id', sa.Uuid(), nullable=True),
        sa.Column('type', sa.String(30), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('meta_data', sa.JSON(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('idempotency_key', sa.String(255), nullable=False, unique=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            _in('type', (
                'STATUS_CHANGE', 'GRADE_RECEIVED', 'KICKBACK',
                'UNLOCK_APPROVED', 'UNLOCK_REJECTED', 'UNLOCK_REVOKED',
            )),
            name='chk_notification_type',
        ),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_action_plan_id', 'notifications', ['action_plan_id'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'])


def downgrade() -> None:
    op.drop_table('notifications')
    op.drop_table('audit_logs')
    op.drop_table('role_permissions')
    op.drop_table('action_plans')
    op.drop_table('users')
    op.drop_table('departments')
