"""
Settlement Repository Interface

Abstract storage used by the ledger. Implementations: SQL (SQLAlchemy),
in-memory (tests and local development).

All writes go through a unit of work opened with ``atomic()``. A unit of work
holds per-entity locks (order first, then stores in sorted order, then the
idempotency key) and either commits every write or none of them.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from decimal import Decimal
from typing import Any, Iterable

from settlement_engine.contracts.records import Order, Store, Transaction


class SettlementUnitOfWork(ABC):
    """Reads and writes inside one atomic unit."""

    @abstractmethod
    def get_order(self, order_id: str) -> Order | None:
        ...

    @abstractmethod
    def get_order_by_reference(self, payment_reference: str) -> Order | None:
        ...

    @abstractmethod
    def upsert_order(self, order: Order) -> Order:
        """Insert or update an order. Lines are only written on insert."""
        ...

    @abstractmethod
    def get_store(self, store_id: str) -> Store | None:
        ...

    @abstractmethod
    def upsert_store(self, store: Store) -> Store:
        """
        Register a store or update its profile.

        Balances of an existing store are left untouched; they only change
        through adjust_store_balance.
        """
        ...

    @abstractmethod
    def adjust_store_balance(
        self,
        store_id: str,
        earnings_delta: Decimal,
        balance_delta: Decimal,
    ) -> Store:
        """
        Add deltas to total_earnings and available_balance.

        Raises:
            StoreNotFound: unknown store
        """
        ...

    @abstractmethod
    def insert_transaction(self, transaction: Transaction) -> Transaction:
        ...

    @abstractmethod
    def find_transactions_by_provider_reference(self, provider_reference: str) -> list[Transaction]:
        ...

    @abstractmethod
    def mark_processed(
        self,
        idempotency_key: str,
        event_type: str,
        order_id: str | None,
        result: dict[str, Any],
    ) -> bool:
        """
        Record that an event was applied (compare-and-insert).

        Returns:
            True if the marker was inserted, False if the key already existed
        """
        ...


class SettlementRepository(ABC):
    """Storage for orders, stores, transactions and processed-event markers."""

    @abstractmethod
    def atomic(
        self,
        order_id: str | None = None,
        store_ids: Iterable[str] = (),
        idempotency_key: str | None = None,
    ) -> AbstractContextManager[SettlementUnitOfWork]:
        """
        Open a unit of work locking the given order and stores.

        Raises:
            PersistenceFailure: storage error; nothing was committed
        """
        ...

    @abstractmethod
    def get_order(self, order_id: str) -> Order | None:
        ...

    @abstractmethod
    def get_order_by_reference(self, payment_reference: str) -> Order | None:
        ...

    @abstractmethod
    def get_store(self, store_id: str) -> Store | None:
        ...

    @abstractmethod
    def list_transactions(
        self,
        store_id: str | None = None,
        order_id: str | None = None,
        provider_reference: str | None = None,
    ) -> list[Transaction]:
        """Transactions in creation order, optionally filtered."""
        ...

    @abstractmethod
    def get_processed_result(self, idempotency_key: str) -> dict[str, Any] | None:
        """Stored result of an already applied event, or None."""
        ...

    def add_order(self, order: Order) -> Order:
        """Persist a newly placed order."""
        with self.atomic(order_id=order.id) as uow:
            return uow.upsert_order(order)

    def add_store(self, store: Store) -> Store:
        """Register a store."""
        with self.atomic(store_ids=[store.id]) as uow:
            return uow.upsert_store(store)
