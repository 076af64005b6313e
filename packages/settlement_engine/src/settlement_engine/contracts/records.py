"""
Settlement records.

Plain dataclasses the repository hands to the ledger. Persistence maps them
to and from its own storage; nothing outside the ledger mutates them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import uuid4

from settlement_engine.contracts.types import (
    OrderStatus,
    PaymentStatus,
    SellerTier,
    TransactionStatus,
    TransactionType,
)

ZERO = Decimal("0.00")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class OrderLine:
    """A single product line of an order. Immutable once the order is placed."""

    product_id: str
    seller_id: str
    store_id: str
    unit_price: Decimal
    quantity: int
    tier: SellerTier = SellerTier.FREE

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "seller_id": self.seller_id,
            "store_id": self.store_id,
            "unit_price": str(self.unit_price),
            "quantity": self.quantity,
            "tier": self.tier.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrderLine":
        return cls(
            product_id=str(data["product_id"]),
            seller_id=str(data["seller_id"]),
            store_id=str(data["store_id"]),
            unit_price=Decimal(str(data["unit_price"])),
            quantity=int(data["quantity"]),
            tier=SellerTier(data.get("tier", SellerTier.FREE.value)),
        )


@dataclass
class Order:
    """
    Customer order and its payment state.

    Invariant: grand_total = subtotal + total_commission + total_service_fee + shipping_fee.
    """

    id: str
    customer_id: str
    lines: tuple[OrderLine, ...] = ()
    subtotal: Decimal = ZERO
    total_commission: Decimal = ZERO
    total_service_fee: Decimal = ZERO
    shipping_fee: Decimal = ZERO
    grand_total: Decimal = ZERO
    payment_status: PaymentStatus = PaymentStatus.PENDING
    status: OrderStatus = OrderStatus.PENDING
    provider_transaction_id: str | None = None
    payment_reference: str | None = None
    amount_paid: Decimal | None = None
    gateway_response: str | None = None
    failure_reason: str | None = None
    paid_at: datetime | None = None
    failed_at: datetime | None = None
    refunded_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def store_ids(self) -> list[str]:
        """Distinct store ids of the order lines, sorted."""
        return sorted({line.store_id for line in self.lines})

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "lines": [line.to_dict() for line in self.lines],
            "subtotal": str(self.subtotal),
            "total_commission": str(self.total_commission),
            "total_service_fee": str(self.total_service_fee),
            "shipping_fee": str(self.shipping_fee),
            "grand_total": str(self.grand_total),
            "payment_status": self.payment_status.value,
            "status": self.status.value,
            "provider_transaction_id": self.provider_transaction_id,
            "payment_reference": self.payment_reference,
            "amount_paid": str(self.amount_paid) if self.amount_paid is not None else None,
            "failure_reason": self.failure_reason,
            "paid_at": _iso(self.paid_at),
            "failed_at": _iso(self.failed_at),
            "refunded_at": _iso(self.refunded_at),
        }


@dataclass
class Store:
    """
    Seller account.

    Balances only move through ledger-recorded deltas so they can be
    reconciled against the transaction log.
    """

    id: str
    seller_id: str
    tier: SellerTier = SellerTier.FREE
    total_earnings: Decimal = ZERO
    available_balance: Decimal = ZERO
    recipient_code: str | None = None  # Provider transfer recipient
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "tier": self.tier.value,
            "total_earnings": str(self.total_earnings),
            "available_balance": str(self.available_balance),
            "recipient_code": self.recipient_code,
        }


@dataclass(frozen=True)
class Transaction:
    """Append-only ledger entry."""

    id: str
    order_id: str | None
    store_id: str | None  # None for platform-level entries
    type: TransactionType
    amount: Decimal
    status: TransactionStatus
    provider_reference: str | None = None
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def create(
        cls,
        type: TransactionType,
        amount: Decimal,
        order_id: str | None = None,
        store_id: str | None = None,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        provider_reference: str | None = None,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> "Transaction":
        """Create a new entry with a generated id and the current timestamp."""
        return cls(
            id=str(uuid4()),
            order_id=order_id,
            store_id=store_id,
            type=type,
            amount=amount,
            status=status,
            provider_reference=provider_reference,
            description=description,
            metadata=metadata or {},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "store_id": self.store_id,
            "type": self.type.value,
            "amount": str(self.amount),
            "status": self.status.value,
            "provider_reference": self.provider_reference,
            "description": self.description,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
        }
