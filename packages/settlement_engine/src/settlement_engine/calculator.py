"""
Split Calculator

Pure pricing functions for the marketplace commission model:
- Free tier: 7% commission, premium tier: 4% commission
- One fixed service fee per order, charged to the customer
- Commission and service fee are paid by the customer, the seller receives
  the full line subtotal

No I/O. Safe to call for checkout previews as often as needed.
"""

import secrets
import string
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

from settlement_engine.contracts.records import Order, OrderLine
from settlement_engine.contracts.types import SellerTier

CENT = Decimal("0.01")

COMMISSION_RATES = {
    SellerTier.FREE: Decimal("0.07"),
    SellerTier.PREMIUM: Decimal("0.04"),
}

SERVICE_FEE = Decimal("15.00")
DEFAULT_SHIPPING_FEE = Decimal("85.00")

# Card processing estimate (2.9% + R2). Display only, never booked.
PROVIDER_FEE_RATE = Decimal("0.029")
PROVIDER_FEE_FIXED = Decimal("2.00")

REFERENCE_PREFIX = "PAY"


def to_money(value: Any) -> Decimal:
    """Coerce to a Decimal rounded to cents (half up)."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Any) -> int:
    """Rand to cents/kobo, as sent to the payment provider."""
    return int(to_money(amount) * 100)


def from_minor_units(amount: int | str) -> Decimal:
    """Cents/kobo from the payment provider to rand."""
    return to_money(Decimal(int(amount)) / 100)


def estimate_provider_fee(customer_total: Any) -> Decimal:
    """Estimated card processing fee for a customer total. Informational only."""
    return to_money(to_money(customer_total) * PROVIDER_FEE_RATE + PROVIDER_FEE_FIXED)


@dataclass(frozen=True)
class LineSplit:
    """Breakdown of a single order line."""

    subtotal: Decimal
    commission_rate: Decimal
    commission: Decimal
    service_fee: Decimal
    seller_net: Decimal
    customer_line_total: Decimal
    estimated_provider_fee: Decimal


@dataclass(frozen=True)
class SellerSplit:
    """One seller's share of an order."""

    seller_id: str
    store_id: str
    tier: SellerTier
    subtotal: Decimal
    commission: Decimal
    seller_net: Decimal
    item_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "seller_id": self.seller_id,
            "store_id": self.store_id,
            "tier": self.tier.value,
            "subtotal": str(self.subtotal),
            "commission": str(self.commission),
            "seller_net": str(self.seller_net),
            "item_count": self.item_count,
        }


@dataclass(frozen=True)
class OrderSplit:
    """Totals for a whole order plus the per-seller splits."""

    subtotal: Decimal
    total_commission: Decimal
    total_service_fee: Decimal
    shipping_fee: Decimal
    grand_total: Decimal
    per_seller_splits: tuple[SellerSplit, ...]
    estimated_provider_fee: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "subtotal": str(self.subtotal),
            "total_commission": str(self.total_commission),
            "total_service_fee": str(self.total_service_fee),
            "shipping_fee": str(self.shipping_fee),
            "grand_total": str(self.grand_total),
            "estimated_provider_fee": str(self.estimated_provider_fee),
            "per_seller_splits": [split.to_dict() for split in self.per_seller_splits],
        }


def calculate_line_split(unit_price: Any, quantity: int, tier: SellerTier | str) -> LineSplit:
    """
    Calculate commission and seller net for one line.

    The service fee is an order-level charge and is always 0 here;
    calculate_order_split adds it exactly once.

    Raises:
        ValueError: negative price or quantity below 1
    """
    tier = SellerTier(tier)
    price = to_money(unit_price)
    if price < 0:
        raise ValueError(f"unit_price must not be negative: {price}")
    if int(quantity) != quantity or quantity < 1:
        raise ValueError(f"quantity must be a positive integer: {quantity}")

    rate = COMMISSION_RATES[tier]
    subtotal = to_money(price * quantity)
    commission = to_money(subtotal * rate)
    customer_line_total = subtotal + commission

    return LineSplit(
        subtotal=subtotal,
        commission_rate=rate,
        commission=commission,
        service_fee=Decimal("0.00"),
        seller_net=subtotal,
        customer_line_total=customer_line_total,
        estimated_provider_fee=estimate_provider_fee(customer_line_total),
    )


def calculate_order_split(
    lines: Iterable[OrderLine],
    shipping_fee: Any = DEFAULT_SHIPPING_FEE,
    service_fee: Any = SERVICE_FEE,
) -> OrderSplit:
    """
    Calculate order totals and group lines into per-seller splits.

    Splits keep the order in which sellers first appear in the lines.

    Raises:
        ValueError: the order has no lines, or a seller's lines name different stores
    """
    lines = list(lines)
    if not lines:
        raise ValueError("an order needs at least one line")

    shipping = to_money(shipping_fee)
    fee = to_money(service_fee)

    grouped: dict[str, dict[str, Any]] = {}
    subtotal = Decimal("0.00")
    total_commission = Decimal("0.00")

    for line in lines:
        split = calculate_line_split(line.unit_price, line.quantity, line.tier)
        subtotal += split.subtotal
        total_commission += split.commission

        seller = grouped.setdefault(
            line.seller_id,
            {
                "store_id": line.store_id,
                "tier": SellerTier(line.tier),
                "subtotal": Decimal("0.00"),
                "commission": Decimal("0.00"),
                "item_count": 0,
            },
        )
        if seller["store_id"] != line.store_id:
            raise ValueError(
                f"seller {line.seller_id} has lines for stores {seller['store_id']} and {line.store_id}"
            )
        seller["subtotal"] += split.subtotal
        seller["commission"] += split.commission
        seller["item_count"] += line.quantity

    per_seller = tuple(
        SellerSplit(
            seller_id=seller_id,
            store_id=data["store_id"],
            tier=data["tier"],
            subtotal=data["subtotal"],
            commission=data["commission"],
            seller_net=data["subtotal"],
            item_count=data["item_count"],
        )
        for seller_id, data in grouped.items()
    )

    grand_total = subtotal + total_commission + fee + shipping

    return OrderSplit(
        subtotal=subtotal,
        total_commission=total_commission,
        total_service_fee=fee,
        shipping_fee=shipping,
        grand_total=grand_total,
        per_seller_splits=per_seller,
        estimated_provider_fee=estimate_provider_fee(grand_total),
    )


def build_order(
    order_id: str,
    customer_id: str,
    lines: Iterable[OrderLine],
    shipping_fee: Any = DEFAULT_SHIPPING_FEE,
    service_fee: Any = SERVICE_FEE,
    payment_reference: str | None = None,
) -> Order:
    """Create a pending order with totals taken from calculate_order_split."""
    lines = tuple(lines)
    split = calculate_order_split(lines, shipping_fee, service_fee)
    return Order(
        id=order_id,
        customer_id=customer_id,
        lines=lines,
        subtotal=split.subtotal,
        total_commission=split.total_commission,
        total_service_fee=split.total_service_fee,
        shipping_fee=split.shipping_fee,
        grand_total=split.grand_total,
        payment_reference=payment_reference or generate_payment_reference(order_id),
    )


def generate_payment_reference(order_id: str) -> str:
    """Unique reference for a checkout, e.g. PAY_ORD42_1718000000000_K3J9QZ."""
    timestamp = int(time.time() * 1000)
    suffix = "".join(secrets.choice(string.ascii_lowercase + string.digits) for _ in range(6))
    return f"{REFERENCE_PREFIX}_{order_id}_{timestamp}_{suffix}".upper()


def calculate_platform_revenue(
    total_commissions: Any,
    total_service_fees: Any,
    provider_fees: Any,
) -> dict[str, Decimal]:
    """Gross platform revenue (commissions + service fees) and net of provider fees."""
    gross = to_money(total_commissions) + to_money(total_service_fees)
    costs = to_money(provider_fees)
    return {
        "gross_revenue": gross,
        "net_revenue": gross - costs,
        "provider_costs": costs,
    }
