"""
Settlement types.

String enums shared by the ledger, the router and persistence.
"""

from enum import Enum


class SellerTier(str, Enum):
    """Seller subscription level, determines commission rate."""

    FREE = "free"
    PREMIUM = "premium"

    def __str__(self) -> str:
        return self.value


class PaymentStatus(str, Enum):
    """Payment state of an order."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"

    def __str__(self) -> str:
        return self.value


class OrderStatus(str, Enum):
    """Fulfillment state of an order."""

    PENDING = "pending"
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class TransactionType(str, Enum):
    """Ledger entry types."""

    SALE = "sale"
    COMMISSION = "commission"
    SERVICE_FEE = "service_fee"
    PAYOUT = "payout"
    REFUND = "refund"

    def __str__(self) -> str:
        return self.value


class TransactionStatus(str, Enum):
    """Ledger entry status."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class ProviderEventType(str, Enum):
    """
    Webhook event types handled from the payment provider.

    Anything else is acknowledged and logged as unhandled.
    """

    CHARGE_SUCCESS = "charge.success"
    CHARGE_FAILED = "charge.failed"
    TRANSFER_SUCCESS = "transfer.success"
    TRANSFER_FAILED = "transfer.failed"

    def __str__(self) -> str:
        return self.value


class AutomationEventType(str, Enum):
    """Canonical business events fanned out to automation endpoints."""

    PAYMENT_SUCCESS = "payment.success"
    PAYMENT_FAILED = "payment.failed"
    PAYOUT_SUCCESS = "payout.success"
    PAYOUT_FAILED = "payout.failed"
    ORDER_CREATED = "order.created"
    ORDER_COMPLETED = "order.completed"
    ORDER_REFUNDED = "order.refunded"
    SELLER_PAYOUT = "seller.payout"
    CUSTOMER_NOTIFICATION = "customer.notification"

    def __str__(self) -> str:
        return self.value
