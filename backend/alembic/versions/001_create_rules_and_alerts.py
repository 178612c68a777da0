"""Create rules, alerts and alert_events tables.

Revision ID: 001
Revises:
Create Date: 2026-10-17

This migration adds:
- rules table holding pattern, expression and scripted detection rules
- alerts table written by the correlation sweep
- alert_events table linking alerts to the events that produced them
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

severity_level = postgresql.ENUM(
    'informational', 'low', 'medium', 'high', 'critical',
    name='severity_level',
    create_type=False,
)
alert_status = postgresql.ENUM(
    'open', 'investigating', 'resolved', 'false_positive',
    name='alert_status',
    create_type=False,
)


def upgrade() -> None:
    severity_level.create(op.get_bind(), checkfirst=True)
    alert_status.create(op.get_bind(), checkfirst=True)

    # Create rules table
    op.create_table(
        'rules',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', sa.String(20), nullable=False, server_default='sigma'),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('yaml', sa.Text(), nullable=True),
        sa.Column('expression', sa.Text(), nullable=True),
        sa.Column('python_code', sa.Text(), nullable=True),
        sa.Column('timeframe', sa.Integer(), nullable=True),
        sa.Column('threshold', sa.Integer(), nullable=True),
        sa.Column('level', severity_level, nullable=False, server_default='medium'),
        sa.Column('fields', postgresql.ARRAY(sa.String()), nullable=True),
        sa.Column('tags', postgresql.ARRAY(sa.String()), nullable=True),
        sa.Column('last_triggered', sa.DateTime(timezone=True), nullable=True),
        sa.Column('trigger_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by', sa.String(255), nullable=True),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        sa.CheckConstraint('threshold IS NULL OR threshold >= 1', name='ck_rules_threshold'),
        sa.CheckConstraint('timeframe IS NULL OR timeframe >= 0', name='ck_rules_timeframe'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_rules_enabled', 'rules', ['enabled'])

    # Create alerts table
    op.create_table(
        'alerts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('rule_id', sa.Uuid(), nullable=True),
        sa.Column('rule_title', sa.String(255), nullable=False),
        sa.Column('severity', severity_level, nullable=False),
        sa.Column('status', alert_status, nullable=False, server_default='open'),
        sa.Column('timestamp_first', sa.DateTime(timezone=True), nullable=False),
        sa.Column('timestamp_last', sa.DateTime(timezone=True), nullable=False),
        sa.Column('count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('entity_keys', postgresql.ARRAY(sa.String()), nullable=True),
        sa.Column(
            'correlation_data',
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=True,
            server_default='{}',
        ),
        sa.Column('assigned_to', sa.String(255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('resolution', sa.Text(), nullable=True),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(['rule_id'], ['rules.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_alerts_rule_id', 'alerts', ['rule_id'])
    op.create_index('ix_alerts_status', 'alerts', ['status'])

    # Create alert_events table
    op.create_table(
        'alert_events',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('alert_id', sa.Uuid(), nullable=False),
        sa.Column('event_id', sa.String(255), nullable=False),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(['alert_id'], ['alerts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_alert_events_alert_id', 'alert_events', ['alert_id'])
    op.create_index('ix_alert_events_event_id', 'alert_events', ['event_id'])


def downgrade() -> None:
    # Drop indexes
    op.drop_index('ix_alert_events_event_id', table_name='alert_events')
    op.drop_index('ix_alert_events_alert_id', table_name='alert_events')
    op.drop_index('ix_alerts_status', table_name='alerts')
    op.drop_index('ix_alerts_rule_id', table_name='alerts')
    op.drop_index('ix_rules_enabled', table_name='rules')

    # Drop tables
    op.drop_table('alert_events')
    op.drop_table('alerts')
    op.drop_table('rules')

    # Drop enum types
    alert_status.drop(op.get_bind(), checkfirst=True)
    severity_level.drop(op.get_bind(), checkfirst=True)
