"""accounts, billing records, billing event logs

Revision ID: 5b2e8c41d7a0
Revises:
Create Date: 2026-10-19 10:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '5b2e8c41d7a0'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'accounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('business_name', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index('ix_accounts_email', 'accounts', ['email'], unique=True)

    op.create_table(
        'billing_records',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('plan', sa.String(length=16), nullable=False, server_default=sa.text("'starter'")),
        sa.Column('trial_ends_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('grace_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('subscription_id', sa.String(length=64), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete="RESTRICT"),
        sa.CheckConstraint(
            "status IN ('trial','active','past_due','cancelled','expired','suspended')",
            name='ck_billing_records_status_valid',
        ),
        sa.CheckConstraint("plan IN ('starter','pro','owner')", name='ck_billing_records_plan_valid'),
        sa.CheckConstraint(
            "grace_until IS NULL OR status IN ('past_due','cancelled')",
            name='ck_billing_records_grace_only_in_grace_status',
        ),
    )
    op.create_index('ix_billing_records_account_id', 'billing_records', ['account_id'], unique=True)
    op.create_index('ix_billing_records_subscription_id', 'billing_records', ['subscription_id'], unique=True)
    op.create_index('ix_billing_records_status', 'billing_records', ['status'])

    op.create_table(
        'billing_event_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('provider_event_id', sa.String(length=255), nullable=False),
        sa.Column('type', sa.String(length=80), nullable=False),
        sa.Column('resource_id', sa.String(length=64), nullable=True),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index('ix_billing_event_logs_provider_event_id', 'billing_event_logs', ['provider_event_id'], unique=True)
    op.create_index('ix_billing_event_logs_type', 'billing_event_logs', ['type'])
    op.create_index('ix_billing_event_logs_resource_id', 'billing_event_logs', ['resource_id'])


def downgrade():
    op.drop_index('ix_billing_event_logs_resource_id', table_name='billing_event_logs')
    op.drop_index('ix_billing_event_logs_type', table_name='billing_event_logs')
    op.drop_index('ix_billing_event_logs_provider_event_id', table_name='billing_event_logs')
    op.drop_table('billing_event_logs')

    op.drop_index('ix_billing_records_status', table_name='billing_records')
    op.drop_index('ix_billing_records_subscription_id', table_name='billing_records')
    op.drop_index('ix_billing_records_account_id', table_name='billing_records')
    op.drop_table('billing_records')

    op.drop_index('ix_accounts_email', table_name='accounts')
    op.drop_table('accounts')
