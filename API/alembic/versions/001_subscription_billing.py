"""Subscription billing schema

Revision ID: 001_subscription_billing
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = '001_subscription_billing'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def _tenant_id():
    return sa.Column(
        'tenant_id', sa.Integer(),
        sa.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, index=True,
    )


def _deleted_at():
    return sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True)


def upgrade() -> None:
    from sqlalchemy import inspect
    bind = op.get_bind()
    inspector = inspect(bind)
    existing = inspector.get_table_names()

    if 'tenants' not in existing:
        op.create_table(
            'tenants',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('name', sa.String(300), nullable=False),
            sa.Column('slug', sa.String(100), nullable=False, unique=True, index=True),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
        )

    if 'user_tenant_roles' not in existing:
        op.create_table(
            'user_tenant_roles',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            _tenant_id(),
            sa.Column('user_id', sa.Integer(), nullable=False, index=True),
            sa.Column('role', sa.String(20), nullable=False),
            _deleted_at(),
            *_timestamps(),
            sa.UniqueConstraint('user_id', 'tenant_id', name='uq_user_tenant_role'),
        )

    op.create_table(
        'plans',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('billing_cycle', sa.String(20), nullable=False, server_default='monthly'),
        sa.Column('trial_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_users', sa.Integer(), nullable=True),
        sa.Column('max_whatsapp_instances', sa.Integer(), nullable=True),
        sa.Column('max_messages_per_month', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_public', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('metadata', sa.JSON(), nullable=False),
        _deleted_at(),
        *_timestamps(),
        sa.CheckConstraint('price >= 0', name='ck_plan_price_non_negative'),
        sa.CheckConstraint('trial_days >= 0', name='ck_plan_trial_days_non_negative'),
    )
    op.create_index('ix_plans_is_active', 'plans', ['is_active'])

    op.create_table(
        'plan_features',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('plan_id', sa.Integer(), sa.ForeignKey('plans.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('feature_key', sa.String(100), nullable=False),
        sa.Column('feature_value', sa.String(255), nullable=True),
        sa.Column('is_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('display_order', sa.Integer(), nullable=False, server_default='0'),
        _deleted_at(),
        *_timestamps(),
    )

    live = sa.text("status IN ('trial', 'active', 'pending') AND deleted_at IS NULL")
    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        _tenant_id(),
        sa.Column('plan_id', sa.Integer(), sa.ForeignKey('plans.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('billing_anchor', sa.DateTime(timezone=True), nullable=False),
        sa.Column('period_index', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('trial_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('trial_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('metadata', sa.JSON(), nullable=False),
        _deleted_at(),
        *_timestamps(),
        sa.CheckConstraint('current_period_end > current_period_start', name='ck_subscription_period_order'),
    )
    op.create_index('ix_subscriptions_tenant_status', 'subscriptions', ['tenant_id', 'status'])
    op.create_index(
        'uq_subscriptions_tenant_live', 'subscriptions', ['tenant_id'],
        unique=True, postgresql_where=live, sqlite_where=live,
    )

    op.create_table(
        'subscription_features',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        _tenant_id(),
        sa.Column('subscription_id', sa.Integer(), sa.ForeignKey('subscriptions.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('plan_feature_id', sa.Integer(), sa.ForeignKey('plan_features.id', ondelete='SET NULL'), nullable=True),
        sa.Column('feature_key', sa.String(100), nullable=False),
        sa.Column('feature_value', sa.String(255), nullable=True),
        sa.Column('is_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        _deleted_at(),
        *_timestamps(),
    )

    op.create_table(
        'subscription_usages',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        _tenant_id(),
        sa.Column('subscription_id', sa.Integer(), sa.ForeignKey('subscriptions.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('feature_key', sa.String(50), nullable=False),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('limit', sa.Integer(), nullable=True),
        sa.Column('period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('subscription_id', 'feature_key', 'period_start', name='uq_usage_subscription_feature_period'),
        sa.CheckConstraint('usage_count >= 0', name='ck_usage_count_non_negative'),
    )

    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        _tenant_id(),
        sa.Column('invoice_number', sa.String(64), nullable=False, unique=True),
        sa.Column('subscription_id', sa.Integer(), sa.ForeignKey('subscriptions.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('subtotal', sa.Numeric(10, 2), nullable=False),
        sa.Column('tax', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('discount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('total', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False),
        _deleted_at(),
        *_timestamps(),
    )
    op.create_index('ix_invoices_tenant_status', 'invoices', ['tenant_id', 'status'])

    op.create_table(
        'invoice_items',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        _tenant_id(),
        sa.Column('invoice_id', sa.Integer(), sa.ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('itemable_type', sa.String(20), nullable=False),
        sa.Column('itemable_id', sa.Integer(), nullable=True),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('tax_rate', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('tax_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('discount_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('metadata', sa.JSON(), nullable=False),
        _deleted_at(),
        *_timestamps(),
        sa.CheckConstraint('quantity > 0', name='ck_invoice_item_quantity_positive'),
    )

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        _tenant_id(),
        sa.Column('payment_number', sa.String(64), nullable=False, unique=True),
        sa.Column('invoice_id', sa.Integer(), sa.ForeignKey('invoices.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('subscription_id', sa.Integer(), sa.ForeignKey('subscriptions.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('payment_method', sa.String(30), nullable=False),
        sa.Column('payment_gateway', sa.String(30), nullable=True),
        sa.Column('transaction_id', sa.String(255), nullable=True),
        sa.Column('payment_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('refunded_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False),
        _deleted_at(),
        *_timestamps(),
        sa.CheckConstraint('refunded_amount <= amount', name='ck_payment_refund_within_amount'),
    )
    op.create_index('ix_payments_tenant_status', 'payments', ['tenant_id', 'status'])


def downgrade() -> None:
    op.drop_table('payments')
    op.drop_table('invoice_items')
    op.drop_table('invoices')
    op.drop_table('subscription_usages')
    op.drop_table('subscription_features')
    op.drop_index('uq_subscriptions_tenant_live', table_name='subscriptions')
    op.drop_table('subscriptions')
    op.drop_table('plan_features')
    op.drop_table('plans')
