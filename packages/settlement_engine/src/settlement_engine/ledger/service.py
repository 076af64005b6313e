"""
Settlement Ledger - applies payment lifecycle events to persistent state.

Order state machine:
    pending --(payment success)--> paid --(refund)--> refunded
    pending --(payment failure)--> failed

Guarantees:
- Each event is applied at most once. The idempotency marker is inserted in
  the same unit of work as the ledger writes; a concurrent duplicate that
  loses the insert rolls back and returns the winner's result.
- A split is applied all-or-nothing: order transition, every store credit and
  every transaction record commit together.
- Failures come back as LedgerResult, never as exceptions.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable

from settlement_engine.calculator import COMMISSION_RATES, SellerSplit, to_money
from settlement_engine.contracts.records import Transaction, utcnow
from settlement_engine.contracts.types import (
    OrderStatus,
    PaymentStatus,
    TransactionStatus,
    TransactionType,
)
from settlement_engine.errors import (
    InvalidTransition,
    LedgerApplicationFailure,
    OrderNotFound,
    StoreNotFound,
)
from settlement_engine.ledger.results import (
    LedgerOutcome,
    LedgerResult,
    ReconciliationReport,
    failure_result,
)
from settlement_engine.persistence.base import SettlementRepository

logger = logging.getLogger(__name__)


class _AlreadyApplied(Exception):
    """Raised inside a unit of work to roll it back when the event was already applied."""


def transfer_idempotency_key(succeeded: bool, payout_reference: str) -> str:
    outcome = "transfer.success" if succeeded else "transfer.failed"
    return f"{outcome}:{payout_reference}"


def refund_idempotency_key(order_id: str) -> str:
    return f"refund:{order_id}"


class SettlementLedger:
    """
    Ledger operations over a SettlementRepository.

    Safe to share between threads; all coordination happens in the
    repository's units of work.
    """

    def __init__(self, repo: SettlementRepository):
        self.repo = repo

    # --- Payments ---

    def apply_payment_success(
        self,
        order_id: str,
        provider_transaction_id: str | None,
        amount_paid: Decimal,
        splits: Iterable[SellerSplit],
        provider_reference: str,
        paid_at: datetime | None = None,
        gateway_response: str | None = None,
    ) -> LedgerResult:
        """
        Mark an order paid and credit every seller in the split.

        Idempotent on provider_reference.
        """
        operation = "payment_success"
        splits = list(splits)

        prior = self.repo.get_processed_result(provider_reference)
        if prior is not None:
            return self._duplicate(operation, provider_reference, order_id, prior)

        try:
            with self.repo.atomic(
                order_id=order_id,
                store_ids=[split.store_id for split in splits],
                idempotency_key=provider_reference,
            ) as uow:
                order = uow.get_order(order_id)
                if order is None:
                    raise OrderNotFound(f"Order {order_id} not found", details={"order_id": order_id})

                if uow.find_transactions_by_provider_reference(provider_reference):
                    raise _AlreadyApplied()

                if order.payment_status != PaymentStatus.PENDING:
                    raise InvalidTransition(
                        f"Cannot mark order {order_id} paid from {order.payment_status.value}",
                        details={"order_id": order_id, "payment_status": order.payment_status.value},
                    )

                amount_paid = to_money(amount_paid)
                if amount_paid != order.grand_total:
                    logger.warning(
                        f"Amount paid differs from order total for {order_id}",
                        extra={
                            "order_id": order_id,
                            "amount_paid": str(amount_paid),
                            "grand_total": str(order.grand_total),
                            "provider_reference": provider_reference,
                        },
                    )

                order.payment_status = PaymentStatus.PAID
                order.status = OrderStatus.PAID
                order.provider_transaction_id = provider_transaction_id
                order.payment_reference = provider_reference
                order.amount_paid = amount_paid
                order.paid_at = paid_at or utcnow()
                order.gateway_response = gateway_response
                uow.upsert_order(order)

                credits = []
                for split in splits:
                    store = uow.adjust_store_balance(split.store_id, split.seller_net, split.seller_net)

                    uow.insert_transaction(
                        Transaction.create(
                            type=TransactionType.SALE,
                            amount=split.seller_net,
                            order_id=order_id,
                            store_id=split.store_id,
                            provider_reference=provider_reference,
                            description=f"Sale for order {order_id}",
                            metadata={
                                "seller_id": split.seller_id,
                                "commission_charged": str(split.commission),
                                "original_amount": str(split.subtotal),
                            },
                        )
                    )
                    uow.insert_transaction(
                        Transaction.create(
                            type=TransactionType.COMMISSION,
                            amount=split.commission,
                            order_id=order_id,
                            store_id=split.store_id,
                            provider_reference=provider_reference,
                            description=f"Platform commission for order {order_id}",
                            metadata={
                                "seller_id": split.seller_id,
                                "commission_rate": str(COMMISSION_RATES[split.tier]),
                            },
                        )
                    )

                    credits.append({
                        "store_id": split.store_id,
                        "seller_id": split.seller_id,
                        "seller_net": str(split.seller_net),
                        "commission": str(split.commission),
                        "available_balance": str(store.available_balance),
                    })

                uow.insert_transaction(
                    Transaction.create(
                        type=TransactionType.SERVICE_FEE,
                        amount=order.total_service_fee,
                        order_id=order_id,
                        provider_reference=provider_reference,
                        description=f"Service fee for order {order_id}",
                    )
                )

                data = {
                    "order_id": order_id,
                    "payment_status": PaymentStatus.PAID.value,
                    "provider_transaction_id": provider_transaction_id,
                    "provider_reference": provider_reference,
                    "amount_paid": str(amount_paid),
                    "grand_total": str(order.grand_total),
                    "total_commission": str(sum((s.commission for s in splits), Decimal("0.00"))),
                    "service_fee": str(order.total_service_fee),
                    "credits": credits,
                }

                if not uow.mark_processed(provider_reference, operation, order_id, data):
                    raise _AlreadyApplied()

        except _AlreadyApplied:
            logger.info(
                f"Payment {provider_reference} was applied concurrently",
                extra={"order_id": order_id, "provider_reference": provider_reference},
            )
            prior = self.repo.get_processed_result(provider_reference) or {}
            return self._duplicate(operation, provider_reference, order_id, prior)

        except LedgerApplicationFailure as e:
            return self._failure(operation, provider_reference, order_id, e)

        logger.info(
            f"Applied payment for order {order_id}",
            extra={
                "order_id": order_id,
                "provider_reference": provider_reference,
                "sellers": len(splits),
                "amount_paid": data["amount_paid"],
            },
        )
        return LedgerResult(
            outcome=LedgerOutcome.APPLIED,
            operation=operation,
            idempotency_key=provider_reference,
            order_id=order_id,
            data=data,
        )

    def apply_payment_failure(
        self,
        order_id: str,
        reason: str,
        provider_reference: str | None = None,
    ) -> LedgerResult:
        """
        Mark a pending order failed. No transactions, no balance changes.

        Re-applying to an already failed order is a no-op.
        """
        operation = "payment_failure"
        data: dict[str, Any] = {"order_id": order_id, "reason": reason}

        try:
            with self.repo.atomic(order_id=order_id) as uow:
                order = uow.get_order(order_id)
                if order is None:
                    raise OrderNotFound(f"Order {order_id} not found", details={"order_id": order_id})

                data["payment_status"] = order.payment_status.value

                if order.payment_status == PaymentStatus.FAILED:
                    return LedgerResult(
                        outcome=LedgerOutcome.NOOP,
                        operation=operation,
                        idempotency_key=provider_reference,
                        order_id=order_id,
                        data=data,
                    )

                if order.payment_status != PaymentStatus.PENDING:
                    # A failed retry after a successful charge; the order stays settled.
                    logger.warning(
                        f"Ignoring payment failure for settled order {order_id}",
                        extra={"order_id": order_id, "payment_status": order.payment_status.value},
                    )
                    return LedgerResult(
                        outcome=LedgerOutcome.NOOP,
                        operation=operation,
                        idempotency_key=provider_reference,
                        order_id=order_id,
                        data=data,
                    )

                order.payment_status = PaymentStatus.FAILED
                order.status = OrderStatus.FAILED
                order.failure_reason = reason
                order.failed_at = utcnow()
                uow.upsert_order(order)
                data["payment_status"] = PaymentStatus.FAILED.value

        except LedgerApplicationFailure as e:
            return self._failure(operation, provider_reference, order_id, e)

        logger.info(
            f"Payment failed for order {order_id}",
            extra={"order_id": order_id, "reason": reason},
        )
        return LedgerResult(
            outcome=LedgerOutcome.APPLIED,
            operation=operation,
            idempotency_key=provider_reference,
            order_id=order_id,
            data=data,
        )

    # --- Payouts ---

    def apply_transfer_outcome(
        self,
        succeeded: bool,
        payout_reference: str,
        store_id: str | None,
        amount: Decimal,
        reason: str | None = None,
        transfer_code: str | None = None,
        order_id: str | None = None,
    ) -> LedgerResult:
        """
        Record a payout.

        Success debits the store's available balance. Failure records a failed
        payout with no balance change and flags it for retry.
        """
        operation = "transfer_success" if succeeded else "transfer_failure"
        key = transfer_idempotency_key(succeeded, payout_reference)

        prior = self.repo.get_processed_result(key)
        if prior is not None:
            return self._duplicate(operation, key, order_id, prior)

        try:
            if not store_id:
                raise LedgerApplicationFailure(
                    f"Transfer {payout_reference} has no store",
                    code="MISSING_STORE",
                    details={"payout_reference": payout_reference},
                )

            amount = to_money(amount)

            with self.repo.atomic(store_ids=[store_id], idempotency_key=key) as uow:
                store = uow.get_store(store_id)
                if store is None:
                    raise StoreNotFound(f"Store {store_id} not found", details={"store_id": store_id})

                if succeeded:
                    store = uow.adjust_store_balance(store_id, Decimal("0.00"), -amount)
                    if store.available_balance < 0:
                        logger.warning(
                            f"Payout left store {store_id} with a negative balance",
                            extra={
                                "store_id": store_id,
                                "payout_reference": payout_reference,
                                "available_balance": str(store.available_balance),
                            },
                        )

                uow.insert_transaction(
                    Transaction.create(
                        type=TransactionType.PAYOUT,
                        amount=amount,
                        order_id=order_id,
                        store_id=store_id,
                        status=TransactionStatus.COMPLETED if succeeded else TransactionStatus.FAILED,
                        provider_reference=payout_reference,
                        description=(
                            f"Payout to store {store_id}"
                            if succeeded
                            else f"Failed payout to store {store_id}: {reason or 'unknown reason'}"
                        ),
                        metadata={"transfer_code": transfer_code, "reason": reason},
                    )
                )

                data = {
                    "store_id": store_id,
                    "seller_id": store.seller_id,
                    "payout_reference": payout_reference,
                    "transfer_code": transfer_code,
                    "amount": str(amount),
                    "status": "completed" if succeeded else "failed",
                    "available_balance": str(store.available_balance),
                    "reason": reason,
                    "retry_payout": not succeeded,
                }

                if not uow.mark_processed(key, operation, order_id, data):
                    raise _AlreadyApplied()

        except _AlreadyApplied:
            prior = self.repo.get_processed_result(key) or {}
            return self._duplicate(operation, key, order_id, prior)

        except LedgerApplicationFailure as e:
            return self._failure(operation, key, order_id, e)

        log = logger.info if succeeded else logger.warning
        log(
            f"Recorded {'completed' if succeeded else 'failed'} payout {payout_reference}",
            extra={"store_id": store_id, "payout_reference": payout_reference, "amount": str(amount)},
        )
        return LedgerResult(
            outcome=LedgerOutcome.APPLIED,
            operation=operation,
            idempotency_key=key,
            order_id=order_id,
            data=data,
        )

    # --- Refunds ---

    def apply_refund(
        self,
        order_id: str,
        refund_reference: str | None = None,
        reason: str | None = None,
    ) -> LedgerResult:
        """
        Refund a paid order in full.

        Each seller's sale is reversed with a refund entry and both balances
        are debited. The order becomes refunded/cancelled.
        """
        operation = "refund"
        key = refund_idempotency_key(order_id)

        prior = self.repo.get_processed_result(key)
        if prior is not None:
            return self._duplicate(operation, key, order_id, prior)

        try:
            snapshot = self.repo.get_order(order_id)
            if snapshot is None:
                raise OrderNotFound(f"Order {order_id} not found", details={"order_id": order_id})

            with self.repo.atomic(order_id=order_id, store_ids=snapshot.store_ids, idempotency_key=key) as uow:
                order = uow.get_order(order_id)

                if order.payment_status != PaymentStatus.PAID:
                    raise InvalidTransition(
                        f"Cannot refund order {order_id} from {order.payment_status.value}",
                        details={"order_id": order_id, "payment_status": order.payment_status.value},
                    )

                sales = [
                    t
                    for t in uow.find_transactions_by_provider_reference(order.payment_reference)
                    if t.type == TransactionType.SALE and t.order_id == order_id
                ]

                reversals = []
                for sale in sales:
                    uow.adjust_store_balance(sale.store_id, -sale.amount, -sale.amount)
                    uow.insert_transaction(
                        Transaction.create(
                            type=TransactionType.REFUND,
                            amount=sale.amount,
                            order_id=order_id,
                            store_id=sale.store_id,
                            provider_reference=refund_reference or key,
                            description=f"Refund for order {order_id}",
                            metadata={"sale_transaction_id": sale.id, "reason": reason},
                        )
                    )
                    reversals.append({"store_id": sale.store_id, "amount": str(sale.amount)})

                order.payment_status = PaymentStatus.REFUNDED
                order.status = OrderStatus.CANCELLED
                order.refunded_at = utcnow()
                uow.upsert_order(order)

                data = {
                    "order_id": order_id,
                    "payment_status": PaymentStatus.REFUNDED.value,
                    "refund_reference": refund_reference,
                    "amount": str(order.amount_paid or order.grand_total),
                    "reason": reason,
                    "reversals": reversals,
                }

                if not uow.mark_processed(key, operation, order_id, data):
                    raise _AlreadyApplied()

        except _AlreadyApplied:
            prior = self.repo.get_processed_result(key) or {}
            return self._duplicate(operation, key, order_id, prior)

        except LedgerApplicationFailure as e:
            return self._failure(operation, key, order_id, e)

        logger.info(
            f"Refunded order {order_id}",
            extra={"order_id": order_id, "refund_reference": refund_reference, "sellers": len(reversals)},
        )
        return LedgerResult(
            outcome=LedgerOutcome.APPLIED,
            operation=operation,
            idempotency_key=key,
            order_id=order_id,
            data=data,
        )

    # --- Reconciliation ---

    def reconcile_store(self, store_id: str) -> ReconciliationReport:
        """
        Recompute a store's balances from its transactions.

        Commission entries don't move seller money and are skipped.

        Raises:
            StoreNotFound: unknown store
        """
        store = self.repo.get_store(store_id)
        if store is None:
            raise StoreNotFound(f"Store {store_id} not found", details={"store_id": store_id})

        transactions = self.repo.list_transactions(store_id=store_id)

        earnings = Decimal("0.00")
        balance = Decimal("0.00")
        for t in transactions:
            if t.status != TransactionStatus.COMPLETED:
                continue
            if t.type == TransactionType.SALE:
                earnings += t.amount
                balance += t.amount
            elif t.type == TransactionType.REFUND:
                earnings -= t.amount
                balance -= t.amount
            elif t.type == TransactionType.PAYOUT:
                balance -= t.amount

        report = ReconciliationReport(
            store_id=store_id,
            expected_earnings=earnings,
            expected_balance=balance,
            actual_earnings=store.total_earnings,
            actual_balance=store.available_balance,
            transaction_count=len(transactions),
        )

        if not report.balanced:
            logger.error(
                f"Store {store_id} balances drifted from the ledger",
                extra=report.to_dict(),
            )
        return report

    # --- Helpers ---

    def _duplicate(
        self,
        operation: str,
        key: str,
        order_id: str | None,
        prior: dict[str, Any],
    ) -> LedgerResult:
        logger.debug(f"Event {key} already applied, skipping")
        return LedgerResult(
            outcome=LedgerOutcome.DUPLICATE,
            operation=operation,
            idempotency_key=key,
            order_id=order_id,
            data=prior,
        )

    def _failure(
        self,
        operation: str,
        key: str | None,
        order_id: str | None,
        error: LedgerApplicationFailure,
    ) -> LedgerResult:
        logger.error(
            f"Ledger {operation} failed: {error.message}",
            extra={
                "operation": operation,
                "idempotency_key": key,
                "order_id": order_id,
                "error_code": error.code,
                "retryable": error.retryable,
                "details": error.details,
            },
        )
        return failure_result(operation, key, order_id, error)
