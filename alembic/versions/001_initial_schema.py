"""Initial schema with users, teams, projects, tasks and activities.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


team_role = sa.Enum('owner', 'admin', 'member', name='teamrole')
task_status = sa.Enum('todo', 'in_progress', 'review', 'done', name='taskstatus')
task_priority = sa.Enum('low', 'medium', 'high', 'urgent', name='taskpriority')
activity_action = sa.Enum(
    'created', 'updated', 'deleted', 'assigned', 'unassigned', 'status_changed',
    'member_added', 'member_removed', 'role_changed',
    name='activityaction',
)
activity_entity = sa.Enum('task', 'project', 'team', 'user', name='activityentity')


def upgrade() -> None:
    # Create users table
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('password_hash', sa.String(255)),
        sa.Column('is_verified', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('otp_hash', sa.String(64)),
        sa.Column('otp_expiry', sa.DateTime),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # Create teams table
    op.create_table(
        'teams',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.String(500)),
        sa.Column('owner_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_teams_owner_id', 'teams', ['owner_id'])
    op.create_index('ix_teams_created_at', 'teams', ['created_at'])

    # Create team_members table (one row per team/user pair)
    op.create_table(
        'team_members',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('team_id', sa.Uuid(), sa.ForeignKey('teams.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', team_role, nullable=False, server_default='member'),
        sa.Column('joined_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('team_id', 'user_id', name='unique_team_user'),
    )
    op.create_index('ix_team_members_team_id', 'team_members', ['team_id'])
    op.create_index('ix_team_members_user_id', 'team_members', ['user_id'])

    # Create projects table (team referenced by id, no cascade)
    op.create_table(
        'projects',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('team_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.String(1000)),
        sa.Column('created_by', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_projects_team_id', 'projects', ['team_id'])
    op.create_index('ix_projects_created_by', 'projects', ['created_by'])
    op.create_index('ix_projects_created_at', 'projects', ['created_at'])

    # Create tasks table (project referenced by id, no cascade)
    op.create_table(
        'tasks',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('project_id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('priority', task_priority, nullable=False, server_default='medium'),
        sa.Column('status', task_status, nullable=False, server_default='todo'),
        sa.Column('due_date', sa.DateTime),
        sa.Column('assignee_id', sa.Uuid(), sa.ForeignKey('users.id')),
        sa.Column('created_by', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_tasks_project_id', 'tasks', ['project_id'])
    op.create_index('ix_tasks_priority', 'tasks', ['priority'])
    op.create_index('ix_tasks_status', 'tasks', ['status'])
    op.create_index('ix_tasks_due_date', 'tasks', ['due_date'])
    op.create_index('ix_tasks_assignee_id', 'tasks', ['assignee_id'])
    op.create_index('ix_tasks_created_at', 'tasks', ['created_at'])

    # Create activities table (append-only audit log)
    op.create_table(
        'activities',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('team_id', sa.Uuid(), nullable=False),
        sa.Column('action', activity_action, nullable=False),
        sa.Column('entity', activity_entity, nullable=False),
        sa.Column('entity_id', sa.Uuid(), nullable=False),
        sa.Column('metadata', sa.JSON, nullable=False),
        sa.Column('timestamp', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_activities_user_id', 'activities', ['user_id'])
    op.create_index('ix_activities_team_id', 'activities', ['team_id'])
    op.create_index('ix_activities_action', 'activities', ['action'])
    op.create_index('ix_activities_entity', 'activities', ['entity'])
    op.create_index('ix_activities_entity_id', 'activities', ['entity_id'])
    op.create_index('ix_activities_timestamp', 'activities', ['timestamp'])
    op.create_index('idx_activities_team_timestamp', 'activities', ['team_id', 'timestamp'])
    op.create_index('idx_activities_entity_timestamp', 'activities', ['entity_id', 'timestamp'])
    op.create_index('idx_activities_user_timestamp', 'activities', ['user_id', 'timestamp'])
    op.create_index('idx_activities_team_entity_timestamp', 'activities', ['team_id', 'entity', 'timestamp'])


def downgrade() -> None:
    op.drop_table('activities')
    op.drop_table('tasks')
    op.drop_table('projects')
    op.drop_table('team_members')
    op.drop_table('teams')
    op.drop_table('users')

    bind = op.get_bind()
    for enum_type in (activity_entity, activity_action, task_priority, task_status, team_role):
        enum_type.drop(bind, checkfirst=True)
