"""
Settlement Database Models

Tables owned by the settlement engine.

Tables:
- settlement_stores: Seller accounts and their balances
- settlement_orders: Orders and their payment state
- settlement_order_lines: Immutable order lines (split calculator input)
- settlement_transactions: Append-only ledger entries
- settlement_processed_events: Idempotency markers for applied events
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

SettlementBase = declarative_base()

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

Money = Numeric(15, 2)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SettlementModelMixin:
    """Common timestamp fields for settlement models."""

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class StoreModel(SettlementBase, SettlementModelMixin):
    """Seller account. Balances are only changed by ledger deltas."""

    __tablename__ = "settlement_stores"

    id = Column(String(64), primary_key=True)
    seller_id = Column(String(64), nullable=False, index=True)
    tier = Column(String(20), nullable=False, default="free")
    total_earnings = Column(Money, nullable=False, default=0)
    available_balance = Column(Money, nullable=False, default=0)
    recipient_code = Column(String(100), nullable=True)


class OrderModel(SettlementBase, SettlementModelMixin):
    """Customer order with its payment and fulfillment state."""

    __tablename__ = "settlement_orders"

    id = Column(String(64), primary_key=True)
    customer_id = Column(String(64), nullable=False, index=True)
    subtotal = Column(Money, nullable=False)
    total_commission = Column(Money, nullable=False)
    total_service_fee = Column(Money, nullable=False)
    shipping_fee = Column(Money, nullable=False)
    grand_total = Column(Money, nullable=False)
    payment_status = Column(String(20), nullable=False, default="pending")
    status = Column(String(20), nullable=False, default="pending")
    provider_transaction_id = Column(String(100), nullable=True)
    payment_reference = Column(String(150), nullable=True, unique=True)
    amount_paid = Column(Money, nullable=True)
    gateway_response = Column(String(255), nullable=True)
    failure_reason = Column(Text, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    lines = relationship(
        "OrderLineModel",
        order_by="OrderLineModel.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        Index("idx_settlement_orders_payment_status", "payment_status"),
    )


class OrderLineModel(SettlementBase):
    """Order line. Written once with the order."""

    __tablename__ = "settlement_order_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(64), ForeignKey("settlement_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    product_id = Column(String(64), nullable=False)
    seller_id = Column(String(64), nullable=False)
    store_id = Column(String(64), nullable=False, index=True)
    unit_price = Column(Money, nullable=False)
    quantity = Column(Integer, nullable=False)
    tier = Column(String(20), nullable=False, default="free")


class TransactionModel(SettlementBase):
    """Ledger entry. Never updated or deleted."""

    __tablename__ = "settlement_transactions"

    id = Column(String(36), primary_key=True)
    order_id = Column(String(64), nullable=True, index=True)
    store_id = Column(String(64), nullable=True, index=True)  # NULL = platform entry
    type = Column(String(20), nullable=False)  # sale, commission, service_fee, payout, refund
    amount = Column(Money, nullable=False)
    status = Column(String(20), nullable=False, default="completed")
    provider_reference = Column(String(150), nullable=True, index=True)
    description = Column(Text, nullable=True)
    meta = Column("metadata", JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_settlement_transactions_store_type", "store_id", "type"),
    )


class ProcessedEventModel(SettlementBase):
    """Idempotency marker, one row per applied provider event."""

    __tablename__ = "settlement_processed_events"

    idempotency_key = Column(String(200), primary_key=True)
    event_type = Column(String(50), nullable=False)
    order_id = Column(String(64), nullable=True, index=True)
    result = Column(Text, nullable=True)  # JSON encoded LedgerResult data
    processed_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
