"""
Settlement contracts: enums, domain records and event shapes.
"""

from settlement_engine.contracts.envelope import AutomationEvent
from settlement_engine.contracts.events import (
    PaymentEvent,
    PaymentFailure,
    PaymentSuccess,
    TransferFailure,
    TransferSuccess,
    Unhandled,
)
from settlement_engine.contracts.records import Order, OrderLine, Store, Transaction
from settlement_engine.contracts.types import (
    AutomationEventType,
    OrderStatus,
    PaymentStatus,
    ProviderEventType,
    SellerTier,
    TransactionStatus,
    TransactionType,
)

__all__ = [
    "AutomationEvent",
    "AutomationEventType",
    "Order",
    "OrderLine",
    "OrderStatus",
    "PaymentEvent",
    "PaymentFailure",
    "PaymentStatus",
    "PaymentSuccess",
    "ProviderEventType",
    "SellerTier",
    "Store",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "TransferFailure",
    "TransferSuccess",
    "Unhandled",
]
