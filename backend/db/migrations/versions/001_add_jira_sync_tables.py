"""Add tasks and Jira sync tables

Revision ID: 001_jira_sync
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_jira_sync'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Local tasks (only the columns Jira import/sync touches)
    op.create_table(
        'tasks',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('parent_id', sa.Uuid(), nullable=True),
        sa.Column('title', sa.String(512), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('status', sa.String(20), nullable=False, server_default='TODO'),
        sa.Column('priority', sa.String(20), nullable=False, server_default='MEDIUM'),
        sa.Column('completion', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('date', sa.String(10), nullable=False),  # YYYY-MM-DD
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_tasks_user_id', 'tasks', ['user_id'])

    # One Jira Cloud connection per user
    op.create_table(
        'jira_connections',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('cloud_id', sa.String(255), nullable=False),
        sa.Column('site_name', sa.String(255), nullable=False, server_default=''),
        sa.Column('atlassian_email', sa.String(255), nullable=False, server_default=''),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('refresh_token', sa.Text(), nullable=False),
        sa.Column('token_expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_jira_connections_user_id', 'jira_connections', ['user_id'], unique=True)

    # Tracked projects
    op.create_table(
        'jira_projects',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('connection_id', sa.Uuid(), nullable=False),
        sa.Column('project_id', sa.String(255), nullable=False),
        sa.Column('project_key', sa.String(64), nullable=False),
        sa.Column('project_name', sa.String(512), nullable=False, server_default=''),
        sa.Column('last_synced_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['connection_id'], ['jira_connections.id'], ),
    )
    op.create_index('idx_jira_projects_user', 'jira_projects', ['user_id'])
    op.create_index(
        'uq_jira_projects_user_project', 'jira_projects', ['user_id', 'project_id'], unique=True
    )

    # Task <-> issue ledger
    op.create_table(
        'jira_task_mappings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('task_id', sa.Uuid(), nullable=False),
        sa.Column('jira_project_id', sa.Uuid(), nullable=True),
        sa.Column('jira_issue_id', sa.String(255), nullable=False),
        sa.Column('jira_issue_key', sa.String(64), nullable=False),
        sa.Column('jira_parent_id', sa.String(255), nullable=True),
        sa.Column('jira_status', sa.String(30), nullable=False, server_default=''),
        sa.Column('last_synced_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['jira_project_id'], ['jira_projects.id'], ondelete='SET NULL'),
    )
    op.create_index(
        'uq_jira_task_mappings_user_task', 'jira_task_mappings', ['user_id', 'task_id'], unique=True
    )
    op.create_index(
        'uq_jira_task_mappings_user_issue', 'jira_task_mappings', ['user_id', 'jira_issue_id'], unique=True
    )
    op.create_index(
        'ix_jira_task_mappings_user_project', 'jira_task_mappings', ['user_id', 'jira_project_id']
    )


def downgrade() -> None:
    op.drop_index('ix_jira_task_mappings_user_project', table_name='jira_task_mappings')
    op.drop_index('uq_jira_task_mappings_user_issue', table_name='jira_task_mappings')
    op.drop_index('uq_jira_task_mappings_user_task', table_name='jira_task_mappings')
    op.drop_table('jira_task_mappings')
    op.drop_index('uq_jira_projects_user_project', table_name='jira_projects')
    op.drop_index('idx_jira_projects_user', table_name='jira_projects')
    op.drop_table('jira_projects')
    op.drop_index('ix_jira_connections_user_id', table_name='jira_connections')
    op.drop_table('jira_connections')
    op.drop_index('ix_tasks_user_id', table_name='tasks')
    op.drop_table('tasks')
