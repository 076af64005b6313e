"""
Event Router - Routes provider events to ledger operations.

| event type       | ledger operation                 |
|------------------|----------------------------------|
| charge.success   | apply_payment_success            |
| charge.failed    | apply_payment_failure            |
| transfer.success | apply_transfer_outcome(success)  |
| transfer.failed  | apply_transfer_outcome(failure)  |
| anything else    | acknowledged, logged, no change  |
"""

import json
import logging
from datetime import datetime
from typing import Any

from settlement_engine.calculator import calculate_order_split, from_minor_units
from settlement_engine.contracts.envelope import AutomationEvent
from settlement_engine.contracts.events import (
    PaymentEvent,
    PaymentFailure,
    PaymentSuccess,
    TransferFailure,
    TransferSuccess,
    Unhandled,
)
from settlement_engine.contracts.records import Order
from settlement_engine.contracts.types import AutomationEventType, PaymentStatus, ProviderEventType
from settlement_engine.errors import InvalidTransition, MalformedPayload, OrderNotFound
from settlement_engine.ledger.results import LedgerOutcome, LedgerResult, failure_result
from settlement_engine.ledger.service import SettlementLedger

logger = logging.getLogger(__name__)


def _metadata(data: dict[str, Any]) -> dict[str, Any]:
    # Paystack sends metadata as an object, a JSON string, or "" when unset
    metadata = data.get("metadata") or {}
    if isinstance(metadata, str):
        try:
            metadata = json.loads(metadata)
        except json.JSONDecodeError:
            return {}
    return metadata if isinstance(metadata, dict) else {}


def _parse_timestamp(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _require(data: dict[str, Any], field_name: str, event_type: str) -> Any:
    value = data.get(field_name)
    if value is None or value == "":
        raise MalformedPayload(
            f"{event_type} event is missing data.{field_name}",
            details={"event_type": event_type, "field": field_name},
        )
    return value


def _amount(data: dict[str, Any], event_type: str):
    raw = _require(data, "amount", event_type)
    try:
        return from_minor_units(raw)
    except (TypeError, ValueError, ArithmeticError):
        raise MalformedPayload(
            f"{event_type} event has an invalid amount: {raw!r}",
            details={"event_type": event_type, "field": "amount"},
        )


def _optional_str(value: Any) -> str | None:
    return str(value) if value not in (None, "") else None


def parse_payment_event(payload: Any) -> PaymentEvent:
    """
    Turn a decoded webhook body into a typed payment event.

    Raises:
        MalformedPayload: not an event object, or a known event lacks required fields
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("event"), str):
        raise MalformedPayload("Webhook body must be an object with an 'event' string")

    event_type = payload["event"]
    data = payload.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise MalformedPayload("Webhook 'data' must be an object", details={"event_type": event_type})

    metadata = _metadata(data)

    if event_type == ProviderEventType.CHARGE_SUCCESS:
        return PaymentSuccess(
            reference=str(_require(data, "reference", event_type)),
            amount=_amount(data, event_type),
            order_id=_optional_str(metadata.get("order_id")),
            provider_transaction_id=_optional_str(data.get("id")),
            provider_event_id=_optional_str(data.get("id")),
            paid_at=_parse_timestamp(data.get("paid_at") or data.get("paidAt")),
            gateway_response=data.get("gateway_response"),
            customer=data.get("customer") or {},
            metadata=metadata,
            payload=data,
        )

    if event_type == ProviderEventType.CHARGE_FAILED:
        return PaymentFailure(
            reference=str(_require(data, "reference", event_type)),
            reason=data.get("gateway_response") or data.get("message") or "Payment failed",
            order_id=_optional_str(metadata.get("order_id")),
            provider_event_id=_optional_str(data.get("id")),
            customer=data.get("customer") or {},
            metadata=metadata,
            payload=data,
        )

    if event_type in (ProviderEventType.TRANSFER_SUCCESS, ProviderEventType.TRANSFER_FAILED):
        recipient = data.get("recipient")
        recipient_metadata = _metadata(recipient) if isinstance(recipient, dict) else {}
        store_id = _optional_str(metadata.get("store_id") or recipient_metadata.get("store_id"))
        if store_id is None:
            raise MalformedPayload(
                f"{event_type} event names no store",
                details={"event_type": event_type, "field": "recipient.metadata.store_id"},
            )
        fields = dict(
            reference=str(_require(data, "reference", event_type)),
            amount=_amount(data, event_type),
            store_id=store_id,
            transfer_code=data.get("transfer_code"),
            provider_event_id=_optional_str(data.get("id")),
            metadata=metadata,
            payload=data,
        )
        if event_type == ProviderEventType.TRANSFER_SUCCESS:
            return TransferSuccess(**fields)
        return TransferFailure(
            reason=data.get("failure_reason") or data.get("gateway_response") or "Transfer failed",
            **fields,
        )

    return Unhandled(
        event_type=event_type,
        reference=_optional_str(data.get("reference")),
        payload=data,
    )


class EventRouter:
    """
    Routes typed payment events to the settlement ledger.

    Orders are resolved from metadata.order_id, falling back to the payment
    reference. Payment splits are recomputed from the stored order lines.
    """

    def __init__(self, ledger: SettlementLedger):
        self.ledger = ledger
        self.repo = ledger.repo

    def route(self, event: PaymentEvent) -> LedgerResult:
        """
        Apply an event to the ledger.

        Args:
            event: Parsed payment event

        Returns:
            Ledger result; unhandled event types give a NOOP result
        """
        if isinstance(event, PaymentSuccess):
            return self._handle_payment_success(event)

        elif isinstance(event, PaymentFailure):
            order = self._resolve_order(event.order_id, event.reference)
            if order is None:
                return self._order_not_found("payment_failure", event)
            return self.ledger.apply_payment_failure(order.id, event.reason, event.reference)

        elif isinstance(event, (TransferSuccess, TransferFailure)):
            succeeded = isinstance(event, TransferSuccess)
            return self.ledger.apply_transfer_outcome(
                succeeded=succeeded,
                payout_reference=event.reference,
                store_id=event.store_id,
                amount=event.amount,
                reason=None if succeeded else event.reason,
                transfer_code=event.transfer_code,
                order_id=_optional_str(event.metadata.get("order_id")),
            )

        logger.info(
            f"Unhandled event type: {event.event_type}",
            extra={"event_type": event.event_type, "reference": event.reference},
        )
        return LedgerResult(
            outcome=LedgerOutcome.NOOP,
            operation="unhandled",
            idempotency_key=event.reference,
            data={"event_type": event.event_type, "handled": False},
        )

    def _handle_payment_success(self, event: PaymentSuccess) -> LedgerResult:
        order = self._resolve_order(event.order_id, event.reference)
        if order is None:
            return self._order_not_found("payment_success", event)

        try:
            split = calculate_order_split(order.lines, order.shipping_fee, order.total_service_fee)
        except ValueError as e:
            error = InvalidTransition(
                f"Order {order.id} cannot be split: {e}",
                details={"order_id": order.id},
            )
            logger.error(
                f"Cannot split order {order.id}: {e}",
                extra={"order_id": order.id, "reference": event.reference},
            )
            return failure_result("payment_success", event.reference, order.id, error)

        return self.ledger.apply_payment_success(
            order_id=order.id,
            provider_transaction_id=event.provider_transaction_id,
            amount_paid=event.amount,
            splits=split.per_seller_splits,
            provider_reference=event.reference,
            paid_at=event.paid_at,
            gateway_response=event.gateway_response,
        )

    def _resolve_order(self, order_id: str | None, reference: str) -> Order | None:
        if order_id:
            order = self.repo.get_order(order_id)
            if order is not None:
                return order
        return self.repo.get_order_by_reference(reference)

    def _order_not_found(self, operation: str, event: PaymentSuccess | PaymentFailure) -> LedgerResult:
        error = OrderNotFound(
            f"No order for payment {event.reference}",
            details={"order_id": event.order_id, "reference": event.reference},
        )
        logger.error(
            f"No order for payment {event.reference}",
            extra={"order_id": event.order_id, "reference": event.reference, "event_type": event.event_type},
        )
        return failure_result(operation, event.reference, event.order_id, error)

    def build_automation_event(self, event: PaymentEvent, result: LedgerResult) -> AutomationEvent | None:
        """
        Canonical business event for a routed provider event.

        Duplicates produce the same event (same event_id) again, so a
        redelivered webhook re-notifies consumers that may have missed it.

        Returns:
            None when nothing should be fanned out
        """
        if isinstance(event, Unhandled) or not result.succeeded:
            return None

        if isinstance(event, PaymentSuccess):
            credits = result.data.get("credits", [])
            return AutomationEvent.create(
                event_type=AutomationEventType.PAYMENT_SUCCESS,
                event_id=f"{event.event_type}:{event.reference}",
                data={
                    "reference": event.reference,
                    "amount": str(event.amount),
                    "customer": event.customer,
                    "metadata": event.metadata,
                    "order_id": result.order_id,
                    "seller_id": event.metadata.get("seller_id"),
                    "store_id": event.metadata.get("store_id"),
                    "provider_transaction_id": event.provider_transaction_id,
                    "paid_at": event.paid_at.isoformat() if event.paid_at else None,
                    "sellers": [
                        {"seller_id": c["seller_id"], "store_id": c["store_id"], "seller_net": c["seller_net"]}
                        for c in credits
                    ],
                },
            )

        if isinstance(event, PaymentFailure):
            if result.data.get("payment_status") != PaymentStatus.FAILED.value:
                return None
            return AutomationEvent.create(
                event_type=AutomationEventType.PAYMENT_FAILED,
                event_id=f"{event.event_type}:{event.reference}",
                data={
                    "reference": event.reference,
                    "customer": event.customer,
                    "metadata": event.metadata,
                    "order_id": result.order_id,
                    "seller_id": event.metadata.get("seller_id"),
                    "store_id": event.metadata.get("store_id"),
                    "failure_reason": event.reason,
                },
            )

        succeeded = isinstance(event, TransferSuccess)
        data = {
            "reference": event.reference,
            "amount": str(event.amount),
            "store_id": event.store_id,
            "seller_id": result.data.get("seller_id"),
            "transfer_code": event.transfer_code,
            "metadata": event.metadata,
        }
        if not succeeded:
            data["failure_reason"] = event.reason
            data["retry_payout"] = True

        return AutomationEvent.create(
            event_type=AutomationEventType.PAYOUT_SUCCESS if succeeded else AutomationEventType.PAYOUT_FAILED,
            event_id=f"{event.event_type}:{event.reference}",
            data=data,
        )
