"""
Ledger results.

Every ledger operation returns a LedgerResult instead of raising, so callers
can tell an idempotent no-op from a failure that needs redelivery.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from settlement_engine.errors import SettlementError


class LedgerOutcome(str, Enum):
    """Outcome of a ledger operation."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"  # Already applied; data is the original result
    NOOP = "noop"  # Nothing to do (e.g. order already failed)
    RETRYABLE_FAILURE = "retryable_failure"  # Nothing committed, redelivery may succeed
    FATAL_FAILURE = "fatal_failure"  # Nothing committed, redelivery won't help

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class LedgerResult:
    outcome: LedgerOutcome
    operation: str
    idempotency_key: str | None = None
    order_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    error_code: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome in (LedgerOutcome.APPLIED, LedgerOutcome.DUPLICATE, LedgerOutcome.NOOP)

    @property
    def retryable(self) -> bool:
        return self.outcome == LedgerOutcome.RETRYABLE_FAILURE

    def to_dict(self) -> dict[str, Any]:
        result = {
            "outcome": self.outcome.value,
            "operation": self.operation,
            "idempotency_key": self.idempotency_key,
            "order_id": self.order_id,
            "data": self.data,
        }
        if self.error:
            result["error"] = self.error
            result["error_code"] = self.error_code
        return result


def failure_result(
    operation: str,
    key: str | None,
    order_id: str | None,
    error: SettlementError,
) -> LedgerResult:
    """Result for an error; retryable errors map to RETRYABLE_FAILURE, the rest to FATAL_FAILURE."""
    return LedgerResult(
        outcome=LedgerOutcome.RETRYABLE_FAILURE if error.retryable else LedgerOutcome.FATAL_FAILURE,
        operation=operation,
        idempotency_key=key,
        order_id=order_id,
        error=error.message,
        error_code=error.code,
    )


@dataclass(frozen=True)
class ReconciliationReport:
    """Store balances recomputed from the transaction log vs. stored balances."""

    store_id: str
    expected_earnings: Decimal
    expected_balance: Decimal
    actual_earnings: Decimal
    actual_balance: Decimal
    transaction_count: int

    @property
    def earnings_drift(self) -> Decimal:
        return self.actual_earnings - self.expected_earnings

    @property
    def balance_drift(self) -> Decimal:
        return self.actual_balance - self.expected_balance

    @property
    def balanced(self) -> bool:
        return self.earnings_drift == 0 and self.balance_drift == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "store_id": self.store_id,
            "expected_earnings": str(self.expected_earnings),
            "expected_balance": str(self.expected_balance),
            "actual_earnings": str(self.actual_earnings),
            "actual_balance": str(self.actual_balance),
            "earnings_drift": str(self.earnings_drift),
            "balance_drift": str(self.balance_drift),
            "transaction_count": self.transaction_count,
            "balanced": self.balanced,
        }
