"""Initial schema: tenants, monitors, results, usage, webhooks

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'tenants',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('subscription_tier', sa.String(20), nullable=False, server_default='free'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_tenants_email', 'tenants', ['email'], unique=True)

    op.create_table(
        'monitors',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('tenant_id', sa.String(36), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),

        # Matching configuration
        sa.Column('keywords', sa.JSON, nullable=False),
        sa.Column('search_query', sa.Text),
        sa.Column('company_name', sa.String(255)),
        sa.Column('platforms', sa.JSON, nullable=False),
        sa.Column('platform_urls', sa.JSON),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),

        # Scan bookkeeping
        sa.Column('last_checked_at', sa.DateTime(timezone=True)),
        sa.Column('last_manual_scan_at', sa.DateTime(timezone=True)),
        sa.Column('new_match_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('is_scan_in_progress', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('scan_started_at', sa.DateTime(timezone=True)),

        # Active hours
        sa.Column('schedule_enabled', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('schedule_start_hour', sa.Integer, server_default='9'),
        sa.Column('schedule_end_hour', sa.Integer, server_default='17'),
        sa.Column('schedule_days', sa.JSON),
        sa.Column('schedule_timezone', sa.String(64), server_default='America/New_York'),

        sa.Column('batch_analysis', sa.JSON),
        sa.Column('last_batch_analyzed_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_monitors_tenant_id', 'monitors', ['tenant_id'])
    op.create_index('idx_monitors_active', 'monitors', ['is_active'])
    op.create_index('idx_monitors_scan_in_progress', 'monitors', ['is_scan_in_progress'])

    op.create_table(
        'results',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('monitor_id', sa.String(36), sa.ForeignKey('monitors.id'), nullable=False),
        sa.Column('platform', sa.String(32), nullable=False),
        sa.Column('source_url', sa.String(2048), nullable=False),
        sa.Column('title', sa.Text, nullable=False),
        sa.Column('content', sa.Text),
        sa.Column('author', sa.String(255)),
        sa.Column('posted_at', sa.DateTime(timezone=True)),
        sa.Column('engagement', sa.Integer),
        sa.Column('metadata', sa.JSON),

        # Enrichment
        sa.Column('sentiment', sa.String(16)),
        sa.Column('sentiment_score', sa.Float),
        sa.Column('conversation_category', sa.String(32)),
        sa.Column('ai_summary', sa.Text),
        sa.Column('ai_analysis', sa.JSON),
        sa.Column('lead_score', sa.Integer),
        sa.Column('lead_score_factors', sa.JSON),
        sa.Column('batch_analyzed', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('analyzed_at', sa.DateTime(timezone=True)),

        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('monitor_id', 'source_url', name='uq_results_monitor_source_url'),
    )
    op.create_index('ix_results_monitor_id', 'results', ['monitor_id'])
    op.create_index('ix_results_platform', 'results', ['platform'])
    op.create_index('ix_results_created_at', 'results', ['created_at'])

    op.create_table(
        'usage_records',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('tenant_id', sa.String(36), sa.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False),
        sa.Column('billing_period', sa.String(7), nullable=False),
        sa.Column('results_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('ai_calls_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('tenant_id', 'billing_period', name='uq_usage_tenant_period'),
    )
    op.create_index('ix_usage_records_tenant_id', 'usage_records', ['tenant_id'])

    op.create_table(
        'webhooks',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('tenant_id', sa.String(36), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('url', sa.String(2048), nullable=False),
        sa.Column('secret', sa.String(128), nullable=False),
        sa.Column('events', sa.JSON, nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_webhooks_tenant_id', 'webhooks', ['tenant_id'])

    op.create_table(
        'webhook_deliveries',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('webhook_id', sa.String(36), sa.ForeignKey('webhooks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('event_type', sa.String(64), nullable=False),
        sa.Column('payload', sa.JSON, nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('attempt_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer, nullable=False, server_default='5'),
        sa.Column('next_retry_at', sa.DateTime(timezone=True)),
        sa.Column('status_code', sa.Integer),
        sa.Column('error_message', sa.Text),
        sa.Column('completed_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_webhook_deliveries_webhook_id', 'webhook_deliveries', ['webhook_id'])
    op.create_index('ix_webhook_deliveries_created_at', 'webhook_deliveries', ['created_at'])
    op.create_index('idx_webhook_deliveries_retry', 'webhook_deliveries', ['status', 'next_retry_at'])


def downgrade() -> None:
    op.drop_table('webhook_deliveries')
    op.drop_table('webhooks')
    op.drop_table('usage_records')
    op.drop_table('results')
    op.drop_table('monitors')
    op.drop_table('tenants')
