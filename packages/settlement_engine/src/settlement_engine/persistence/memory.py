"""
In-memory settlement repository.

Used by the tests and by the stub mode of the webhook service. Keeps the same
guarantees as the SQL repository:
- per-entity locks (order, stores, idempotency key), no lock shared by
  unrelated orders while a unit of work runs
- writes are staged and published together on success, discarded on error
"""

import copy
import logging
import threading
import weakref
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Iterable, Iterator

from settlement_engine.contracts.records import Order, Store, Transaction, utcnow
from settlement_engine.errors import StoreNotFound
from settlement_engine.persistence.base import SettlementRepository, SettlementUnitOfWork

logger = logging.getLogger(__name__)


class InMemoryUnitOfWork(SettlementUnitOfWork):
    """Stages writes on top of the repository's committed state."""

    def __init__(self, repo: "InMemorySettlementRepository"):
        self.repo = repo
        self.orders: dict[str, Order] = {}
        self.stores: dict[str, Store] = {}
        self.transactions: list[Transaction] = []
        self.processed: dict[str, dict[str, Any]] = {}

    def get_order(self, order_id: str) -> Order | None:
        if order_id in self.orders:
            return copy.deepcopy(self.orders[order_id])
        return self.repo.get_order(order_id)

    def get_order_by_reference(self, payment_reference: str) -> Order | None:
        for order in self.orders.values():
            if order.payment_reference == payment_reference:
                return copy.deepcopy(order)
        return self.repo.get_order_by_reference(payment_reference)

    def upsert_order(self, order: Order) -> Order:
        existing = self.get_order(order.id)
        staged = copy.deepcopy(order)
        if existing is not None:
            staged.lines = existing.lines
        staged.updated_at = utcnow()
        self.orders[order.id] = staged
        return order

    def get_store(self, store_id: str) -> Store | None:
        if store_id in self.stores:
            return copy.deepcopy(self.stores[store_id])
        return self.repo.get_store(store_id)

    def upsert_store(self, store: Store) -> Store:
        existing = self.get_store(store.id)
        staged = copy.deepcopy(store)
        if existing is not None:
            staged.total_earnings = existing.total_earnings
            staged.available_balance = existing.available_balance
        self.stores[store.id] = staged
        return copy.deepcopy(staged)

    def adjust_store_balance(
        self,
        store_id: str,
        earnings_delta: Decimal,
        balance_delta: Decimal,
    ) -> Store:
        store = self.get_store(store_id)
        if store is None:
            raise StoreNotFound(f"Store {store_id} not found", details={"store_id": store_id})

        store.total_earnings += earnings_delta
        store.available_balance += balance_delta
        store.updated_at = utcnow()
        self.stores[store_id] = store
        return copy.deepcopy(store)

    def insert_transaction(self, transaction: Transaction) -> Transaction:
        self.transactions.append(transaction)
        return transaction

    def find_transactions_by_provider_reference(self, provider_reference: str) -> list[Transaction]:
        committed = self.repo.list_transactions(provider_reference=provider_reference)
        staged = [t for t in self.transactions if t.provider_reference == provider_reference]
        return committed + staged

    def mark_processed(
        self,
        idempotency_key: str,
        event_type: str,
        order_id: str | None,
        result: dict[str, Any],
    ) -> bool:
        if idempotency_key in self.processed or self.repo.get_processed_result(idempotency_key) is not None:
            return False
        self.processed[idempotency_key] = copy.deepcopy(result)
        return True


class InMemorySettlementRepository(SettlementRepository):
    """Thread-safe settlement repository kept in process memory."""

    def __init__(self):
        self._orders: dict[str, Order] = {}
        self._stores: dict[str, Store] = {}
        self._transactions: list[Transaction] = []
        self._processed: dict[str, dict[str, Any]] = {}
        # Entries disappear once no unit of work holds the lock.
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()
        # Held only while a finished unit of work is copied in, so readers
        # never observe half of a commit.
        self._publish_lock = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def atomic(
        self,
        order_id: str | None = None,
        store_ids: Iterable[str] = (),
        idempotency_key: str | None = None,
    ) -> Iterator[InMemoryUnitOfWork]:
        keys = []
        if order_id:
            keys.append(f"order:{order_id}")
        keys.extend(f"store:{store_id}" for store_id in sorted(set(store_ids)))
        if idempotency_key:
            keys.append(f"event:{idempotency_key}")

        acquired = []
        try:
            for key in keys:
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)

            uow = InMemoryUnitOfWork(self)
            yield uow
            self._publish(uow)

        finally:
            for lock in reversed(acquired):
                lock.release()

    def _publish(self, uow: InMemoryUnitOfWork) -> None:
        with self._publish_lock:
            self._orders.update(uow.orders)
            self._stores.update(uow.stores)
            self._transactions.extend(uow.transactions)
            self._processed.update(uow.processed)

    def get_order(self, order_id: str) -> Order | None:
        with self._publish_lock:
            order = self._orders.get(order_id)
            return copy.deepcopy(order) if order else None

    def get_order_by_reference(self, payment_reference: str) -> Order | None:
        with self._publish_lock:
            for order in self._orders.values():
                if order.payment_reference == payment_reference:
                    return copy.deepcopy(order)
        return None

    def get_store(self, store_id: str) -> Store | None:
        with self._publish_lock:
            store = self._stores.get(store_id)
            return copy.deepcopy(store) if store else None

    def list_transactions(
        self,
        store_id: str | None = None,
        order_id: str | None = None,
        provider_reference: str | None = None,
    ) -> list[Transaction]:
        with self._publish_lock:
            transactions = list(self._transactions)
        if store_id:
            transactions = [t for t in transactions if t.store_id == store_id]
        if order_id:
            transactions = [t for t in transactions if t.order_id == order_id]
        if provider_reference:
            transactions = [t for t in transactions if t.provider_reference == provider_reference]
        return transactions

    def get_processed_result(self, idempotency_key: str) -> dict[str, Any] | None:
        with self._publish_lock:
            result = self._processed.get(idempotency_key)
            return copy.deepcopy(result) if result is not None else None
