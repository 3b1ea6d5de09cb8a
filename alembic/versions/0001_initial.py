from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'projects',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('name', sa.String(128), nullable=True),
        sa.Column('settings', sa.JSON, nullable=True),
        sa.Column('created_at', sa.DateTime, index=True),
    )
    op.create_table(
        'interactions',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('project_id', sa.String(64), sa.ForeignKey('projects.id'), index=True),
        sa.Column('session_id', sa.String(64), index=True, nullable=True),
        sa.Column('type', sa.String(32), index=True),
        sa.Column('status', sa.String(32), index=True),
        sa.Column('severity', sa.String(16), nullable=True),
        sa.Column('content_text', sa.Text, nullable=True),
        sa.Column('content_json', sa.JSON, nullable=True),
        sa.Column('technical_context', sa.JSON, nullable=True),
        sa.Column('linked_issue_id', sa.String(128), index=True, nullable=True),
        sa.Column('ai_labels', sa.JSON, nullable=True),
        sa.Column('ai_label_confidence', sa.Float, nullable=True),
        sa.Column('ai_duplicate_group_id', sa.String(64), index=True, nullable=True),
        sa.Column('ai_confidence', sa.Float, nullable=True),
        sa.Column('ai_group_primary', sa.Integer, server_default='0'),
        sa.Column('ai_summary', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, index=True),
        sa.Column('updated_at', sa.DateTime, nullable=True),
    )
    op.create_index('ix_interaction_project_type_created', 'interactions', ['project_id', 'type', 'created_at'])
    op.create_table(
        'interaction_logs',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('interaction_id', sa.String(64), sa.ForeignKey('interactions.id'), index=True),
        sa.Column('console', sa.JSON, nullable=True),
        sa.Column('network', sa.JSON, nullable=True),
        sa.Column('errors', sa.JSON, nullable=True),
        sa.Column('created_at', sa.DateTime, index=True),
    )
    op.create_table(
        'media',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('interaction_id', sa.String(64), sa.ForeignKey('interactions.id'), index=True),
        sa.Column('kind', sa.String(32)),
        sa.Column('storage_key', sa.String(512)),
        sa.Column('created_at', sa.DateTime),
    )
    op.create_table(
        'feedback_links',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('interaction_id', sa.String(64), sa.ForeignKey('interactions.id'), index=True),
        sa.Column('feedback_item_id', sa.String(64), index=True),
        sa.Column('created_at', sa.DateTime),
    )
    op.create_table(
        'sessions',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('project_id', sa.String(64), sa.ForeignKey('projects.id'), index=True),
        sa.Column('started_at', sa.DateTime),
        sa.Column('last_seen_at', sa.DateTime, index=True),
    )
    op.create_table(
        'replays',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('project_id', sa.String(64), sa.ForeignKey('projects.id'), index=True),
        sa.Column('session_id', sa.String(64), index=True, nullable=True),
        sa.Column('status', sa.String(16), index=True, server_default='pending'),
        sa.Column('chunks', sa.JSON, nullable=True),
        sa.Column('raw_chunks', sa.JSON, nullable=True),
        sa.Column('event_count', sa.Integer, server_default='0'),
        sa.Column('duration', sa.Integer, server_default='0'),
        sa.Column('started_at', sa.DateTime, index=True),
        sa.Column('ended_at', sa.DateTime, nullable=True),
        sa.Column('processing_started_at', sa.DateTime, nullable=True),
    )
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('project_id', sa.String(64), index=True),
        sa.Column('action', sa.String(64)),
        sa.Column('details', sa.JSON, nullable=True),
        sa.Column('created_at', sa.DateTime, index=True),
    )
    op.create_table(
        'job_dead_letters',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('task_id', sa.String(64), index=True),
        sa.Column('task_name', sa.String(128), index=True),
        sa.Column('queue_name', sa.String(64), index=True, nullable=True),
        sa.Column('payload', sa.JSON, nullable=True),
        sa.Column('attempts', sa.Integer),
        sa.Column('error_type', sa.String(128)),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('failed_at', sa.DateTime, index=True),
    )


def downgrade():
    for table in ('job_dead_letters', 'audit_logs', 'replays', 'sessions', 'feedback_links',
                  'media', 'interaction_logs'):
        op.drop_table(table)
    op.drop_index('ix_interaction_project_type_created', table_name='interactions')
    op.drop_table('interactions')
    op.drop_table('projects')
