"""
SQL settlement repository.

One session per unit of work. Rows touched by a unit of work are locked with
SELECT ... FOR UPDATE (order first, then stores in sorted order), balance
changes are single UPDATE statements and the idempotency marker is an
INSERT ... ON CONFLICT DO NOTHING, so duplicate deliveries racing each other
end up with exactly one committed application.
"""

import json
import logging
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Iterable, Iterator

from sqlalchemy import text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from settlement_engine.calculator import to_money
from settlement_engine.contracts.records import Order, OrderLine, Store, Transaction, utcnow
from settlement_engine.contracts.types import (
    OrderStatus,
    PaymentStatus,
    SellerTier,
    TransactionStatus,
    TransactionType,
)
from settlement_engine.errors import PersistenceFailure, StoreNotFound
from settlement_engine.persistence.base import SettlementRepository, SettlementUnitOfWork
from settlement_engine.persistence.models import (
    OrderLineModel,
    OrderModel,
    ProcessedEventModel,
    StoreModel,
    TransactionModel,
)

logger = logging.getLogger(__name__)


def _money(value: Any) -> Decimal | None:
    return to_money(value) if value is not None else None


def _order_from_row(row: OrderModel) -> Order:
    return Order(
        id=row.id,
        customer_id=row.customer_id,
        lines=tuple(
            OrderLine(
                product_id=line.product_id,
                seller_id=line.seller_id,
                store_id=line.store_id,
                unit_price=to_money(line.unit_price),
                quantity=line.quantity,
                tier=SellerTier(line.tier),
            )
            for line in row.lines
        ),
        subtotal=to_money(row.subtotal),
        total_commission=to_money(row.total_commission),
        total_service_fee=to_money(row.total_service_fee),
        shipping_fee=to_money(row.shipping_fee),
        grand_total=to_money(row.grand_total),
        payment_status=PaymentStatus(row.payment_status),
        status=OrderStatus(row.status),
        provider_transaction_id=row.provider_transaction_id,
        payment_reference=row.payment_reference,
        amount_paid=_money(row.amount_paid),
        gateway_response=row.gateway_response,
        failure_reason=row.failure_reason,
        paid_at=row.paid_at,
        failed_at=row.failed_at,
        refunded_at=row.refunded_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _store_from_row(row: StoreModel) -> Store:
    return Store(
        id=row.id,
        seller_id=row.seller_id,
        tier=SellerTier(row.tier),
        total_earnings=to_money(row.total_earnings),
        available_balance=to_money(row.available_balance),
        recipient_code=row.recipient_code,
        updated_at=row.updated_at,
    )


def _transaction_from_row(row: TransactionModel) -> Transaction:
    return Transaction(
        id=row.id,
        order_id=row.order_id,
        store_id=row.store_id,
        type=TransactionType(row.type),
        amount=to_money(row.amount),
        status=TransactionStatus(row.status),
        provider_reference=row.provider_reference,
        description=row.description,
        metadata=dict(row.meta or {}),
        created_at=row.created_at,
    )


class SqlUnitOfWork(SettlementUnitOfWork):
    """Unit of work bound to one SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    # --- Orders ---

    def get_order(self, order_id: str) -> Order | None:
        row = self.db.get(OrderModel, order_id)
        return _order_from_row(row) if row else None

    def get_order_by_reference(self, payment_reference: str) -> Order | None:
        row = (
            self.db.query(OrderModel)
            .filter(OrderModel.payment_reference == payment_reference)
            .first()
        )
        return _order_from_row(row) if row else None

    def upsert_order(self, order: Order) -> Order:
        row = self.db.get(OrderModel, order.id)

        if row is None:
            row = OrderModel(id=order.id, created_at=order.created_at)
            row.lines = [
                OrderLineModel(
                    position=position,
                    product_id=line.product_id,
                    seller_id=line.seller_id,
                    store_id=line.store_id,
                    unit_price=line.unit_price,
                    quantity=line.quantity,
                    tier=line.tier.value,
                )
                for position, line in enumerate(order.lines)
            ]
            self.db.add(row)

        row.customer_id = order.customer_id
        row.subtotal = order.subtotal
        row.total_commission = order.total_commission
        row.total_service_fee = order.total_service_fee
        row.shipping_fee = order.shipping_fee
        row.grand_total = order.grand_total
        row.payment_status = order.payment_status.value
        row.status = order.status.value
        row.provider_transaction_id = order.provider_transaction_id
        row.payment_reference = order.payment_reference
        row.amount_paid = order.amount_paid
        row.gateway_response = order.gateway_response
        row.failure_reason = order.failure_reason
        row.paid_at = order.paid_at
        row.failed_at = order.failed_at
        row.refunded_at = order.refunded_at
        row.updated_at = utcnow()

        self.db.flush()
        return order

    # --- Stores ---

    def get_store(self, store_id: str) -> Store | None:
        row = self.db.get(StoreModel, store_id)
        return _store_from_row(row) if row else None

    def upsert_store(self, store: Store) -> Store:
        row = self.db.get(StoreModel, store.id)

        if row is None:
            row = StoreModel(
                id=store.id,
                total_earnings=store.total_earnings,
                available_balance=store.available_balance,
            )
            self.db.add(row)

        row.seller_id = store.seller_id
        row.tier = store.tier.value
        row.recipient_code = store.recipient_code
        self.db.flush()
        return _store_from_row(row)

    def adjust_store_balance(
        self,
        store_id: str,
        earnings_delta: Decimal,
        balance_delta: Decimal,
    ) -> Store:
        result = self.db.execute(
            update(StoreModel)
            .where(StoreModel.id == store_id)
            .values(
                total_earnings=StoreModel.total_earnings + earnings_delta,
                available_balance=StoreModel.available_balance + balance_delta,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise StoreNotFound(f"Store {store_id} not found", details={"store_id": store_id})

        row = self.db.get(StoreModel, store_id, populate_existing=True)
        return _store_from_row(row)

    # --- Transactions ---

    def insert_transaction(self, transaction: Transaction) -> Transaction:
        self.db.add(
            TransactionModel(
                id=transaction.id,
                order_id=transaction.order_id,
                store_id=transaction.store_id,
                type=transaction.type.value,
                amount=transaction.amount,
                status=transaction.status.value,
                provider_reference=transaction.provider_reference,
                description=transaction.description,
                meta=transaction.metadata,
                created_at=transaction.created_at,
            )
        )
        self.db.flush()
        return transaction

    def find_transactions_by_provider_reference(self, provider_reference: str) -> list[Transaction]:
        rows = (
            self.db.query(TransactionModel)
            .filter(TransactionModel.provider_reference == provider_reference)
            .order_by(TransactionModel.created_at)
            .all()
        )
        return [_transaction_from_row(row) for row in rows]

    # --- Idempotency ---

    def mark_processed(
        self,
        idempotency_key: str,
        event_type: str,
        order_id: str | None,
        result: dict[str, Any],
    ) -> bool:
        insert_result = self.db.execute(
            text("""
                INSERT INTO settlement_processed_events
                    (idempotency_key, event_type, order_id, result, processed_at)
                VALUES
                    (:idempotency_key, :event_type, :order_id, :result, :processed_at)
                ON CONFLICT (idempotency_key) DO NOTHING
            """),
            {
                "idempotency_key": idempotency_key,
                "event_type": event_type,
                "order_id": order_id,
                "result": json.dumps(result, default=str),
                "processed_at": utcnow(),
            },
        )
        return insert_result.rowcount > 0


class SqlSettlementRepository(SettlementRepository):
    """Settlement repository backed by SQLAlchemy."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @contextmanager
    def atomic(
        self,
        order_id: str | None = None,
        store_ids: Iterable[str] = (),
        idempotency_key: str | None = None,
    ) -> Iterator[SqlUnitOfWork]:
        # The marker's primary key covers idempotency_key; no extra lock needed.
        db = self.session_factory()
        try:
            if order_id:
                db.query(OrderModel).filter(OrderModel.id == order_id).with_for_update().first()
            for store_id in sorted(set(store_ids)):
                db.query(StoreModel).filter(StoreModel.id == store_id).with_for_update().first()

            yield SqlUnitOfWork(db)
            db.commit()

        except SQLAlchemyError as e:
            db.rollback()
            logger.error(
                f"Settlement unit of work failed: {e}",
                extra={"order_id": order_id, "idempotency_key": idempotency_key},
            )
            raise PersistenceFailure(
                f"Database error: {e}",
                details={"order_id": order_id, "idempotency_key": idempotency_key},
            ) from e

        except Exception:
            db.rollback()
            raise

        finally:
            db.close()

    def get_order(self, order_id: str) -> Order | None:
        with self.session_factory() as db:
            return SqlUnitOfWork(db).get_order(order_id)

    def get_order_by_reference(self, payment_reference: str) -> Order | None:
        with self.session_factory() as db:
            return SqlUnitOfWork(db).get_order_by_reference(payment_reference)

    def get_store(self, store_id: str) -> Store | None:
        with self.session_factory() as db:
            return SqlUnitOfWork(db).get_store(store_id)

    def list_transactions(
        self,
        store_id: str | None = None,
        order_id: str | None = None,
        provider_reference: str | None = None,
    ) -> list[Transaction]:
        with self.session_factory() as db:
            query = db.query(TransactionModel)
            if store_id:
                query = query.filter(TransactionModel.store_id == store_id)
            if order_id:
                query = query.filter(TransactionModel.order_id == order_id)
            if provider_reference:
                query = query.filter(TransactionModel.provider_reference == provider_reference)
            rows = query.order_by(TransactionModel.created_at).all()
            return [_transaction_from_row(row) for row in rows]

    def get_processed_result(self, idempotency_key: str) -> dict[str, Any] | None:
        with self.session_factory() as db:
            row = db.get(ProcessedEventModel, idempotency_key)
            if row is None:
                return None
            return json.loads(row.result) if row.result else {}
