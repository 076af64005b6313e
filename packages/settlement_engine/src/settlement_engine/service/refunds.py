"""
Order refunds.

Asks the provider to refund the charge, then reverses the sellers' credits
in the ledger and notifies automation endpoints.

The provider is asked at most once per order. The request is claimed with a
processed-event marker before the call, and an accepted refund is recorded
under a second marker, so a ledger failure after the provider call is retried
without refunding the customer twice.
"""

import asyncio
import logging

from settlement_engine.contracts.envelope import AutomationEvent
from settlement_engine.contracts.types import AutomationEventType, PaymentStatus
from settlement_engine.dispatch.dispatcher import AutomationDispatcher
from settlement_engine.errors import InvalidTransition, LedgerApplicationFailure, OrderNotFound, SettlementError
from settlement_engine.ledger.results import LedgerResult, failure_result
from settlement_engine.ledger.service import SettlementLedger, refund_idempotency_key
from settlement_engine.persistence.base import SettlementRepository
from settlement_engine.providers.base import PaymentProvider, ProviderError

logger = logging.getLogger(__name__)


def refund_request_key(order_id: str) -> str:
    return f"refund_request:{order_id}"


def refund_issued_key(order_id: str) -> str:
    return f"refund_issued:{order_id}"


def _claim(repo: SettlementRepository, key: str, event_type: str, order_id: str, data: dict) -> bool:
    with repo.atomic(order_id=order_id, idempotency_key=key) as uow:
        return uow.mark_processed(key, event_type, order_id, data)


async def refund_order(
    order_id: str,
    ledger: SettlementLedger,
    provider: PaymentProvider,
    dispatcher: AutomationDispatcher | None = None,
    reason: str | None = None,
) -> LedgerResult:
    """
    Refund a paid order in full.

    Already refunded orders return the original (duplicate) result without
    calling the provider again. A refund the provider already accepted is
    only applied to the ledger. A request whose provider call failed is not
    sent again; it needs checking against the provider dashboard.
    """
    key = refund_idempotency_key(order_id)
    repo = ledger.repo

    order = repo.get_order(order_id)
    if order is None:
        return failure_result("refund", key, order_id, OrderNotFound(f"Order {order_id} not found"))

    if order.payment_status == PaymentStatus.REFUNDED:
        return ledger.apply_refund(order_id)

    if order.payment_status != PaymentStatus.PAID or not order.payment_reference:
        error = InvalidTransition(f"Cannot refund order {order_id} from {order.payment_status.value}")
        return failure_result("refund", key, order_id, error)

    issued = repo.get_processed_result(refund_issued_key(order_id))
    if issued is not None:
        refund_reference = issued.get("refund_reference")
        reason = reason or issued.get("reason")
    else:
        try:
            claimed = await asyncio.to_thread(
                _claim,
                repo,
                refund_request_key(order_id),
                "refund_request",
                order_id,
                {"order_id": order_id, "transaction_reference": order.payment_reference, "reason": reason},
            )
        except LedgerApplicationFailure as e:
            return failure_result("refund", key, order_id, e)

        if not claimed:
            error = SettlementError(
                f"Refund for order {order_id} was already requested",
                code="REFUND_IN_PROGRESS",
                details={"order_id": order_id},
            )
            return failure_result("refund", key, order_id, error)

        try:
            refund = await provider.create_refund(order.payment_reference)
        except ProviderError as e:
            logger.error(
                f"Provider refund failed for order {order_id}: {e}",
                extra={"order_id": order_id, "code": e.code, "retryable": e.retryable},
            )
            error = SettlementError(str(e), code=e.code or "PROVIDER_ERROR", details=e.details, retryable=e.retryable)
            return failure_result("refund", key, order_id, error)

        if not refund.success:
            error = SettlementError(refund.error_message or "Refund rejected", code="REFUND_REJECTED")
            return failure_result("refund", key, order_id, error)

        refund_reference = refund.provider_id
        try:
            await asyncio.to_thread(
                _claim,
                repo,
                refund_issued_key(order_id),
                "refund_issued",
                order_id,
                {"order_id": order_id, "refund_reference": refund_reference, "reason": reason},
            )
        except LedgerApplicationFailure as e:
            logger.error(
                f"Refund {refund_reference} for order {order_id} accepted but not recorded",
                extra={"order_id": order_id, "refund_reference": refund_reference},
            )
            return failure_result("refund", key, order_id, e)

    result = await asyncio.to_thread(ledger.apply_refund, order_id, refund_reference, reason)

    if result.succeeded and dispatcher is not None:
        await dispatcher.fanout(
            AutomationEvent.create(
                event_type=AutomationEventType.ORDER_REFUNDED,
                event_id=key,
                data={**result.data, "customer_id": order.customer_id},
            )
        )

    return result
