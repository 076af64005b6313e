"""
Inbound payment events.

The router turns a raw provider payload into exactly one of these variants.
Downstream code branches on the variant type instead of inspecting the raw
payload.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Union


@dataclass(frozen=True)
class PaymentSuccess:
    """A charge completed (charge.success)."""

    reference: str
    amount: Decimal
    order_id: str | None = None
    provider_transaction_id: str | None = None
    provider_event_id: str | None = None
    paid_at: datetime | None = None
    gateway_response: str | None = None
    customer: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    payload: dict[str, Any] = field(default_factory=dict)
    event_type: str = "charge.success"


@dataclass(frozen=True)
class PaymentFailure:
    """A charge failed (charge.failed)."""

    reference: str
    reason: str
    order_id: str | None = None
    provider_event_id: str | None = None
    customer: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    payload: dict[str, Any] = field(default_factory=dict)
    event_type: str = "charge.failed"


@dataclass(frozen=True)
class TransferSuccess:
    """A payout to a seller completed (transfer.success)."""

    reference: str
    amount: Decimal
    store_id: str | None = None
    transfer_code: str | None = None
    provider_event_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    payload: dict[str, Any] = field(default_factory=dict)
    event_type: str = "transfer.success"


@dataclass(frozen=True)
class TransferFailure:
    """A payout to a seller failed (transfer.failed)."""

    reference: str
    amount: Decimal
    reason: str
    store_id: str | None = None
    transfer_code: str | None = None
    provider_event_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    payload: dict[str, Any] = field(default_factory=dict)
    event_type: str = "transfer.failed"


@dataclass(frozen=True)
class Unhandled:
    """Any event type without a ledger operation. Acknowledged and logged."""

    event_type: str
    reference: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


PaymentEvent = Union[PaymentSuccess, PaymentFailure, TransferSuccess, TransferFailure, Unhandled]
