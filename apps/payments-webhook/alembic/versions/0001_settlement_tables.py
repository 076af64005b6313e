"""Settlement Tables

Revision ID: 0001_settlement_tables
Revises:
Create Date: 2026-10-18

Creates tables owned by the settlement engine:
- settlement_stores: Seller accounts and balances
- settlement_orders: Orders and their payment state
- settlement_order_lines: Order lines used for commission splits
- settlement_transactions: Append-only ledger entries
- settlement_processed_events: Idempotency markers for applied provider events
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision = '0001_settlement_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # =========================================================================
    # STORES
    # =========================================================================

    op.create_table(
        'settlement_stores',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('seller_id', sa.String(64), nullable=False),
        sa.Column('tier', sa.String(20), server_default='free', nullable=False),
        sa.Column('total_earnings', sa.Numeric(15, 2), server_default='0', nullable=False),
        sa.Column('available_balance', sa.Numeric(15, 2), server_default='0', nullable=False),
        sa.Column('recipient_code', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_settlement_stores_seller_id', 'settlement_stores', ['seller_id'])

    # =========================================================================
    # ORDERS
    # =========================================================================

    op.create_table(
        'settlement_orders',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('customer_id', sa.String(64), nullable=False),
        sa.Column('subtotal', sa.Numeric(15, 2), nullable=False),
        sa.Column('total_commission', sa.Numeric(15, 2), nullable=False),
        sa.Column('total_service_fee', sa.Numeric(15, 2), nullable=False),
        sa.Column('shipping_fee', sa.Numeric(15, 2), nullable=False),
        sa.Column('grand_total', sa.Numeric(15, 2), nullable=False),
        sa.Column('payment_status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('provider_transaction_id', sa.String(100), nullable=True),
        sa.Column('payment_reference', sa.String(150), nullable=True),
        sa.Column('amount_paid', sa.Numeric(15, 2), nullable=True),
        sa.Column('gateway_response', sa.String(255), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_reference', name='uq_settlement_orders_payment_reference')
    )
    op.create_index('idx_settlement_orders_customer_id', 'settlement_orders', ['customer_id'])
    op.create_index('idx_settlement_orders_payment_status', 'settlement_orders', ['payment_status'])

    # =========================================================================
    # ORDER LINES
    # =========================================================================

    op.create_table(
        'settlement_order_lines',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(64), nullable=False),
        sa.Column('position', sa.Integer(), server_default='0', nullable=False),
        sa.Column('product_id', sa.String(64), nullable=False),
        sa.Column('seller_id', sa.String(64), nullable=False),
        sa.Column('store_id', sa.String(64), nullable=False),
        sa.Column('unit_price', sa.Numeric(15, 2), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('tier', sa.String(20), server_default='free', nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['order_id'], ['settlement_orders.id'], ondelete='CASCADE'),
    )
    op.create_index('idx_settlement_order_lines_order_id', 'settlement_order_lines', ['order_id'])
    op.create_index('idx_settlement_order_lines_store_id', 'settlement_order_lines', ['store_id'])

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    op.create_table(
        'settlement_transactions',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('order_id', sa.String(64), nullable=True),
        sa.Column('store_id', sa.String(64), nullable=True),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('status', sa.String(20), server_default='completed', nullable=False),
        sa.Column('provider_reference', sa.String(150), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('metadata', JSONB(), server_default='{}', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_settlement_transactions_order_id', 'settlement_transactions', ['order_id'])
    op.create_index('idx_settlement_transactions_store_id', 'settlement_transactions', ['store_id'])
    op.create_index('idx_settlement_transactions_provider_reference', 'settlement_transactions', ['provider_reference'])
    op.create_index('idx_settlement_transactions_store_type', 'settlement_transactions', ['store_id', 'type'])

    # =========================================================================
    # PROCESSED EVENTS (idempotency)
    # =========================================================================

    op.create_table(
        'settlement_processed_events',
        sa.Column('idempotency_key', sa.String(200), nullable=False),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('order_id', sa.String(64), nullable=True),
        sa.Column('result', sa.Text(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('idempotency_key'),
    )
    op.create_index('idx_settlement_processed_events_order_id', 'settlement_processed_events', ['order_id'])


def downgrade():
    op.drop_table('settlement_processed_events')
    op.drop_table('settlement_transactions')
    op.drop_table('settlement_order_lines')
    op.drop_table('settlement_orders')
    op.drop_table('settlement_stores')
