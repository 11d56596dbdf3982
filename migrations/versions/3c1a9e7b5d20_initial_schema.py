"""initial schema

Revision ID: 3c1a9e7b5d20
Revises:
Create Date: 2026-10-18 09:12:41.104233

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c1a9e7b5d20'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('full_name', sa.String(length=120), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('phone_number', sa.String(length=32), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table(
        'stores',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=160), nullable=False),
        sa.Column('category', sa.String(length=32), nullable=False),
        sa.Column('phone_number', sa.String(length=32), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('street_address', sa.String(length=255), nullable=False),
        sa.Column('township', sa.String(length=80), nullable=False),
        sa.Column('town', sa.String(length=32), nullable=False),
        sa.Column('gps_latitude', sa.Float(), nullable=True),
        sa.Column('gps_longitude', sa.Float(), nullable=True),
        sa.Column('open_time', sa.String(length=8), nullable=True),
        sa.Column('close_time', sa.String(length=8), nullable=True),
        sa.Column('operating_days', sa.String(length=64), nullable=False),
        sa.Column('logo_url', sa.String(length=1024), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('custom_orders_only', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('access_code', sa.String(length=16), nullable=True),
        sa.Column('bank_name', sa.String(length=80), nullable=True),
        sa.Column('account_holder_name', sa.String(length=120), nullable=True),
        sa.Column('account_number', sa.String(length=32), nullable=True),
        sa.Column('account_type', sa.String(length=16), nullable=True),
        sa.Column('branch_code', sa.String(length=16), nullable=True),
        sa.Column('banking_details_verified', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('banking_details_updated_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_stores_status', 'stores', ['status'])
    op.create_index('ix_stores_access_code', 'stores', ['access_code'], unique=True)

    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_categories_store_id', 'categories', ['store_id'])

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('name', sa.String(length=160), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Float(), nullable=False),
        sa.Column('category', sa.String(length=120), nullable=False),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('categories.id'), nullable=True),
        sa.Column('image_url', sa.String(length=1024), nullable=True),
        sa.Column('available', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_products_store_id', 'products', ['store_id'])
    op.create_index('ix_products_category_id', 'products', ['category_id'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('customer_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('agent_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('order_type', sa.String(length=24), nullable=False),
        sa.Column('purchase_type', sa.String(length=8), nullable=True),
        sa.Column('custom_request_text', sa.Text(), nullable=True),
        sa.Column('total_amount', sa.Float(), nullable=False),
        sa.Column('estimated_amount', sa.Float(), nullable=True),
        sa.Column('actual_amount', sa.Float(), nullable=True),
        sa.Column('delivery_fee', sa.Float(), nullable=False),
        sa.Column('cash_released', sa.Float(), nullable=True),
        sa.Column('delivery_address', sa.String(length=255), nullable=False),
        sa.Column('delivery_township', sa.String(length=80), nullable=False),
        sa.Column('delivery_gps_latitude', sa.Float(), nullable=True),
        sa.Column('delivery_gps_longitude', sa.Float(), nullable=True),
        sa.Column('status', sa.String(length=24), nullable=False),
        sa.Column('payment_status', sa.String(length=16), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=True),
        sa.Column('proof_of_purchase_url', sa.String(length=1024), nullable=True),
        sa.Column('delivery_photo_url', sa.String(length=1024), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('store_notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_store_id', 'orders', ['store_id'])
    op.create_index('ix_orders_agent_id', 'orders', ['agent_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=True),
        sa.Column('product_name', sa.String(length=160), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Float(), nullable=False),
        sa.Column('subtotal', sa.Float(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table(
        'order_transitions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('from_status', sa.String(length=24), nullable=False),
        sa.Column('to_status', sa.String(length=24), nullable=False),
        sa.Column('actor_type', sa.String(length=32), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('idempotency_key', sa.String(length=160), nullable=False),
        sa.Column('reason', sa.String(length=240), nullable=True),
        sa.Column('metadata_json', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('order_id', 'idempotency_key', name='uq_order_transition_order_key'),
    )
    op.create_index('ix_order_transitions_order_id', 'order_transitions', ['order_id'])

    op.create_table(
        'agent_profiles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('agent_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('id_number', sa.String(length=32), nullable=True),
        sa.Column('profile_photo_url', sa.String(length=1024), nullable=True),
        sa.Column('home_area', sa.String(length=120), nullable=True),
        sa.Column('township', sa.String(length=80), nullable=True),
        sa.Column('agent_status', sa.String(length=32), nullable=False),
        sa.Column('is_online', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('orders_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('orders_cancelled', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('receipt_issues', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_active_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_agent_profiles_agent_id', 'agent_profiles', ['agent_id'], unique=True)

    op.create_table(
        'agent_wallets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('agent_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('company_cash_balance', sa.Float(), nullable=False),
        sa.Column('max_cash_limit', sa.Float(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_agent_wallets_agent_id', 'agent_wallets', ['agent_id'], unique=True)

    op.create_table(
        'agent_transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('agent_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('wallet_id', sa.Integer(), sa.ForeignKey('agent_wallets.id'), nullable=False),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=True),
        sa.Column('transaction_type', sa.String(length=32), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('balance_before', sa.Float(), nullable=False),
        sa.Column('balance_after', sa.Float(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('idempotency_key', sa.String(length=160), nullable=True, unique=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_agent_transactions_agent_id', 'agent_transactions', ['agent_id'])
    op.create_index('ix_agent_transactions_wallet_id', 'agent_transactions', ['wallet_id'])
    op.create_index('ix_agent_transactions_order_id', 'agent_transactions', ['order_id'])
    op.create_index('ix_agent_transactions_created_at', 'agent_transactions', ['created_at'])

    op.create_table(
        'payment_intents',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('customer_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('reference', sa.String(length=128), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('status', sa.String(length=24), nullable=False),
        sa.Column('order_ids_json', sa.Text(), nullable=False),
        sa.Column('redirect_url', sa.String(length=1024), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_payment_intents_customer_id', 'payment_intents', ['customer_id'])
    op.create_index('ix_payment_intents_reference', 'payment_intents', ['reference'], unique=True)
    op.create_index('ix_payment_intents_status', 'payment_intents', ['status'])

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('event_id', sa.String(length=128), nullable=False, unique=True),
        sa.Column('event_type', sa.String(length=64), nullable=True),
        sa.Column('checkout_id', sa.String(length=128), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('request_id', sa.String(length=64), nullable=True),
        sa.Column('payload_hash', sa.String(length=64), nullable=True),
        sa.Column('payload_json', sa.Text(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_webhook_events_checkout_id', 'webhook_events', ['checkout_id'])

    op.create_table(
        'idempotency_keys',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('scope', sa.String(length=160), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('request_hash', sa.String(length=64), nullable=False),
        sa.Column('response_json', sa.Text(), nullable=True),
        sa.Column('status_code', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('scope', 'key', name='uq_idempotency_scope_key'),
    )
    op.create_index('ix_idempotency_keys_key', 'idempotency_keys', ['key'])

    op.create_table(
        'platform_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('event_type', sa.String(length=80), nullable=False),
        sa.Column('actor_type', sa.String(length=16), nullable=True),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('subject_type', sa.String(length=40), nullable=False),
        sa.Column('subject_id', sa.Integer(), nullable=True),
        sa.Column('audience_customer_id', sa.Integer(), nullable=True),
        sa.Column('audience_store_id', sa.Integer(), nullable=True),
        sa.Column('audience_agent_id', sa.Integer(), nullable=True),
        sa.Column('request_id', sa.String(length=80), nullable=True),
        sa.Column('idempotency_key', sa.String(length=180), nullable=True, unique=True),
        sa.Column('severity', sa.String(length=16), nullable=False),
        sa.Column('metadata_json', sa.Text(), nullable=True),
    )
    for col in (
        'created_at',
        'event_type',
        'actor_id',
        'subject_type',
        'subject_id',
        'audience_customer_id',
        'audience_store_id',
        'audience_agent_id',
    ):
        op.create_index(f'ix_platform_events_{col}', 'platform_events', [col])

    op.create_table(
        'reconciliation_reports',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('scope', sa.String(length=64), nullable=False),
        sa.Column('wallets_checked', sa.Integer(), nullable=False),
        sa.Column('drift_count', sa.Integer(), nullable=False),
        sa.Column('summary_json', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_reconciliation_reports_created_at', 'reconciliation_reports', ['created_at'])

    op.create_table(
        'job_runs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('job_name', sa.String(length=64), nullable=False),
        sa.Column('ran_at', sa.DateTime(), nullable=False),
        sa.Column('ok', sa.Boolean(), nullable=False),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('items_processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('issues_found', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('trace_id', sa.String(length=80), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
    )
    op.create_index('ix_job_runs_job_name', 'job_runs', ['job_name'])
    op.create_index('ix_job_runs_ran_at', 'job_runs', ['ran_at'])


def downgrade():
    for table in (
        'job_runs',
        'reconciliation_reports',
        'platform_events',
        'idempotency_keys',
        'webhook_events',
        'payment_intents',
        'agent_transactions',
        'agent_wallets',
        'agent_profiles',
        'order_transitions',
        'order_items',
        'orders',
        'products',
        'categories',
        'stores',
        'users',
    ):
        op.drop_table(table)
