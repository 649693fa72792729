"""add action_plans.category / area_focus and the progress_logs table

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column('action_plans', sa.Column('category', sa.String(100), nullable=True))
    op.add_column('action_plans', sa.Column('area_focus', sa.Text(), nullable=True))

    op.create_table(
        'progress_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('action_plan_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('user_name', sa.String(255), nullable=True),
        sa.Column('type', sa.String(30), nullable=False, server_default='progress_update'),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "type IN ('progress_update', 'blocker_report', 'blocker_resolved', 'comment')",
            name='chk_progress_log_type',
        ),
    )
    op.create_index('ix_progress_logs_action_plan_id', 'progress_logs', ['action_plan_id'])
    op.create_index('ix_progress_logs_created_at', 'progress_logs', ['created_at'])


def downgrade() -> None:
    op.drop_table('progress_logs')
    op.drop_column('action_plans', 'area_focus')
    op.drop_column('action_plans', 'category')
