"""Add dead_letter_tasks table

Revision ID: 002_dead_letter_tasks
Revises: 001_mention_tables
Create Date: 2026-10-18 09:10:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '002_dead_letter_tasks'
down_revision = '001_mention_tables'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table('dead_letter_tasks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('task_id', sa.String(), nullable=False),
        sa.Column('task_name', sa.String(), nullable=False),
        sa.Column('queue_name', sa.String(), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=True),
        sa.Column('original_args', sa.JSON(), nullable=True),
        sa.Column('original_kwargs', sa.JSON(), nullable=True),
        sa.Column('failure_reason', sa.String(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('error_traceback', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=True),
        sa.Column('first_failure_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_retry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('moved_to_dlq_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('is_requeued', sa.Boolean(), nullable=True),
        sa.Column('requeued_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('requires_manual_review', sa.Boolean(), nullable=True),
        sa.Column('task_metadata', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('task_id')
    )
    op.create_index('ix_dead_letter_tasks_id', 'dead_letter_tasks', ['id'])
    op.create_index('ix_dead_letter_tasks_task_id', 'dead_letter_tasks', ['task_id'])
    op.create_index('ix_dead_letter_tasks_task_name', 'dead_letter_tasks', ['task_name'])
    op.create_index('ix_dead_letter_tasks_queue_name', 'dead_letter_tasks', ['queue_name'])
    op.create_index('ix_dead_letter_tasks_tenant_id', 'dead_letter_tasks', ['tenant_id'])
    op.create_index('ix_dead_letter_tasks_failure_reason', 'dead_letter_tasks', ['failure_reason'])


def downgrade() -> None:
    op.drop_index('ix_dead_letter_tasks_failure_reason', table_name='dead_letter_tasks')
    op.drop_index('ix_dead_letter_tasks_tenant_id', table_name='dead_letter_tasks')
    op.drop_index('ix_dead_letter_tasks_queue_name', table_name='dead_letter_tasks')
    op.drop_index('ix_dead_letter_tasks_task_name', table_name='dead_letter_tasks')
    op.drop_index('ix_dead_letter_tasks_task_id', table_name='dead_letter_tasks')
    op.drop_index('ix_dead_letter_tasks_id', table_name='dead_letter_tasks')
    op.drop_table('dead_letter_tasks')
