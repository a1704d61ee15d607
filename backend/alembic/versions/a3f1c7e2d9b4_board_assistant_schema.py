"""Board assistant schema: organizations, projects, agents, columns, tasks

Revision ID: a3f1c7e2d9b4
Revises:
Create Date: 2026-10-18 00:00:00.000000

Membership lists, settings and task list fields are JSON columns.
Enum columns are stored as VARCHAR(32) (non-native enums).
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = 'a3f1c7e2d9b4'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TASK_TYPES = ('email', 'doc', 'code', 'research', 'design', 'legal', 'finance',
              'bug', 'test', 'infra', 'outreach', 'custom')
TASK_STATUSES = ('backlog', 'ready', 'in_progress', 'done', 'blocked', 'cancelled')
TASK_PRIORITIES = ('low', 'medium', 'high', 'urgent')


def _enum(*values: str, name: str) -> sa.Enum:
    return sa.Enum(*values, name=name, native_enum=False, length=32)


def upgrade() -> None:
    # --- organizations ---
    op.create_table(
        'organizations',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('logo_url', sa.String(), nullable=True),
        sa.Column('settings', sa.JSON(), nullable=False),
        sa.Column('members', sa.JSON(), nullable=False),
        sa.Column('created_by', sa.String(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_organizations_name', 'organizations', ['name'])
    op.create_index('ix_organizations_slug', 'organizations', ['slug'])
    op.create_index('ix_organizations_is_active', 'organizations', ['is_active'])

    # --- projects ---
    op.create_table(
        'projects',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('organization_id', sa.String(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('visibility', _enum('public', 'private', 'team', name='projectvisibility'),
                  nullable=False, server_default='team'),
        sa.Column('members', sa.JSON(), nullable=False),
        sa.Column('settings', sa.JSON(), nullable=False),
        sa.Column('created_by', sa.String(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column('is_archived', sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_projects_organization_id', 'projects', ['organization_id'])
    op.create_index('ix_projects_is_active', 'projects', ['is_active'])
    op.create_index('ix_projects_created_at', 'projects', ['created_at'])
    op.create_index('idx_project_org_active', 'projects', ['organization_id', 'is_active'])

    # --- agents ---
    op.create_table(
        'agents',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('organization_id', sa.String(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', _enum(*TASK_TYPES, name='tasktype'), nullable=False, server_default='custom'),
        sa.Column('model', sa.String(), nullable=False),
        sa.Column('system_prompt', sa.Text(), nullable=False, server_default=''),
        sa.Column('settings', sa.JSON(), nullable=False),
        sa.Column('is_public', sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column('created_by', sa.String(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_agents_organization_id', 'agents', ['organization_id'])
    op.create_index('ix_agents_is_public', 'agents', ['is_public'])
    op.create_index('ix_agents_is_active', 'agents', ['is_active'])

    # --- columns ---
    op.create_table(
        'columns',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('color', sa.String(), nullable=False, server_default='#6b7280'),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('settings', sa.JSON(), nullable=False),
        sa.Column('visibility', _enum('public', 'private', name='columnvisibility'),
                  nullable=False, server_default='public'),
        sa.Column('created_by', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_columns_project_id', 'columns', ['project_id'])
    op.create_index('idx_column_project_position', 'columns', ['project_id', 'position'])

    # --- tasks ---
    op.create_table(
        'tasks',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id'), nullable=False),
        sa.Column('column_id', sa.String(), sa.ForeignKey('columns.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', _enum(*TASK_TYPES, name='tasktype'), nullable=False, server_default='custom'),
        sa.Column('status', _enum(*TASK_STATUSES, name='taskstatus'), nullable=False, server_default='backlog'),
        sa.Column('priority', _enum(*TASK_PRIORITIES, name='taskpriority'), nullable=False, server_default='medium'),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('agents', sa.JSON(), nullable=False),
        sa.Column('agent_history', sa.JSON(), nullable=False),
        sa.Column('token_estimate', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('actual_tokens_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('progress_percentage', sa.Float(), nullable=False, server_default='0'),
        sa.Column('time_spent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('assignees', sa.JSON(), nullable=False),
        sa.Column('tags', sa.JSON(), nullable=False),
        sa.Column('dependencies', sa.JSON(), nullable=False),
        sa.Column('blocked_by', sa.JSON(), nullable=False),
        sa.Column('subtasks', sa.JSON(), nullable=False),
        sa.Column('parent_task', sa.String(), nullable=True),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_tasks_project_id', 'tasks', ['project_id'])
    op.create_index('ix_tasks_column_id', 'tasks', ['column_id'])
    op.create_index('ix_tasks_status', 'tasks', ['status'])
    op.create_index('ix_tasks_created_at', 'tasks', ['created_at'])
    op.create_index('idx_task_column_position', 'tasks', ['project_id', 'column_id', 'position'])


def downgrade() -> None:
    op.drop_table('tasks')
    op.drop_table('columns')
    op.drop_table('agents')
    op.drop_table('projects')
    op.drop_table('organizations')
