"""
Tests for order refunds and payout retries.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from settlement_engine.calculator import calculate_order_split
from settlement_engine.contracts.types import PaymentStatus, TransactionStatus
from settlement_engine.dispatch.dispatcher import AutomationDispatcher
from settlement_engine.dispatch.subscriptions import Subscription, SubscriptionRegistry
from settlement_engine.errors import PersistenceFailure, SettlementError, StoreNotFound
from settlement_engine.ledger.results import LedgerOutcome, failure_result
from settlement_engine.providers.base import ProviderError, ProviderResult
from settlement_engine.providers.stub import StubPaymentProvider
from settlement_engine.service.payouts import retry_failed_payout
from settlement_engine.service.refunds import refund_order


@pytest.fixture
def paid_order(ledger, order):
    split = calculate_order_split(order.lines, order.shipping_fee, order.total_service_fee)
    ledger.apply_payment_success(
        order_id=order.id,
        provider_transaction_id="302961",
        amount_paid=order.grand_total,
        splits=split.per_seller_splits,
        provider_reference="PAY_ORDER_1",
    )
    return ledger.repo.get_order(order.id)


class TestRefundOrder:
    """Tests for refunding orders."""

    def test_refund(self, ledger, repo, paid_order):
        """Test the provider refunds the charge and the ledger reverses the sales."""
        provider = StubPaymentProvider()

        result = asyncio.run(refund_order("order_1", ledger, provider, reason="Out of stock"))

        assert result.outcome == LedgerOutcome.APPLIED
        assert provider.refunds[0]["transaction_reference"] == "PAY_ORDER_1"
        assert result.data["refund_reference"] == provider.refunds[0]["refund_id"]
        assert result.data["reason"] == "Out of stock"
        assert repo.get_order("order_1").payment_status == PaymentStatus.REFUNDED
        assert repo.get_store("store_a").available_balance == Decimal("0.00")

    def test_refund_announced(self, ledger, paid_order):
        """Test a refund is fanned out as order.refunded."""
        transport = AsyncMock()
        transport.post.return_value = 200
        registry = SubscriptionRegistry([
            Subscription(url="https://hooks.example.com/refunds", events=frozenset({"order.refunded"}))
        ])
        dispatcher = AutomationDispatcher(registry, transport)

        asyncio.run(refund_order("order_1", ledger, StubPaymentProvider(), dispatcher=dispatcher))

        url, headers, body = transport.post.call_args.args
        assert body["event"] == "order.refunded"
        assert body["event_id"] == "refund:order_1"
        assert body["data"]["customer_id"] == "customer_1"

    def test_already_refunded(self, ledger, paid_order):
        """Test a second refund doesn't call the provider again."""
        provider = StubPaymentProvider()
        asyncio.run(refund_order("order_1", ledger, provider))

        result = asyncio.run(refund_order("order_1", ledger, provider))

        assert result.outcome == LedgerOutcome.DUPLICATE
        assert len(provider.refunds) == 1

    def test_unpaid_order(self, ledger, order):
        """Test pending orders can't be refunded."""
        provider = StubPaymentProvider()

        result = asyncio.run(refund_order("order_1", ledger, provider))

        assert result.outcome == LedgerOutcome.FATAL_FAILURE
        assert result.error_code == "INVALID_TRANSITION"
        assert provider.refunds == []

    def test_unknown_order(self, ledger):
        """Test refunding an unknown order."""
        result = asyncio.run(refund_order("missing", ledger, StubPaymentProvider()))
        assert result.error_code == "ORDER_NOT_FOUND"

    def test_provider_error(self, ledger, repo, paid_order):
        """Test a provider error leaves the ledger untouched."""
        provider = AsyncMock()
        provider.create_refund.side_effect = ProviderError("Gateway timeout", code="504", retryable=True)

        result = asyncio.run(refund_order("order_1", ledger, provider))

        assert result.outcome == LedgerOutcome.RETRYABLE_FAILURE
        assert result.error_code == "504"
        assert repo.get_order("order_1").payment_status == PaymentStatus.PAID

    def test_provider_rejects(self, ledger, repo, paid_order):
        """Test a rejected refund leaves the ledger untouched."""
        provider = AsyncMock()
        provider.create_refund.return_value = ProviderResult(success=False, error_message="Not refundable")

        result = asyncio.run(refund_order("order_1", ledger, provider))

        assert result.outcome == LedgerOutcome.FATAL_FAILURE
        assert result.error_code == "REFUND_REJECTED"
        assert repo.get_store("store_a").available_balance == Decimal("200.00")

    def test_ledger_failure_retried_without_provider(self, ledger, repo, paid_order, monkeypatch):
        """Test an accepted refund is applied later without refunding again."""
        provider = StubPaymentProvider()
        monkeypatch.setattr(
            ledger,
            "apply_refund",
            lambda *args: failure_result("refund", "refund:order_1", "order_1", PersistenceFailure("Database unavailable")),
        )

        first = asyncio.run(refund_order("order_1", ledger, provider, reason="Out of stock"))
        assert first.outcome == LedgerOutcome.RETRYABLE_FAILURE

        monkeypatch.undo()
        second = asyncio.run(refund_order("order_1", ledger, provider))

        assert second.outcome == LedgerOutcome.APPLIED
        assert len(provider.refunds) == 1
        assert second.data["refund_reference"] == provider.refunds[0]["refund_id"]
        assert second.data["reason"] == "Out of stock"
        assert repo.get_order("order_1").payment_status == PaymentStatus.REFUNDED

    def test_failed_request_not_resent(self, ledger, paid_order):
        """Test a refund request with an unknown outcome isn't sent again."""
        provider = AsyncMock()
        provider.create_refund.side_effect = ProviderError("Gateway timeout", code="504", retryable=True)
        asyncio.run(refund_order("order_1", ledger, provider))

        result = asyncio.run(refund_order("order_1", ledger, provider))

        assert result.outcome == LedgerOutcome.FATAL_FAILURE
        assert result.error_code == "REFUND_IN_PROGRESS"
        assert provider.create_refund.call_count == 1


class TestRetryFailedPayout:
    """Tests for retrying failed payouts."""

    def test_retry(self, ledger, repo, paid_order):
        """Test a failed payout is re-issued with a new reference."""
        ledger.apply_transfer_outcome(False, "PAYOUT_1", "store_a", Decimal("150.00"), reason="Account closed")
        provider = StubPaymentProvider()

        result = asyncio.run(retry_failed_payout("PAYOUT_1", repo, provider))

        assert result.success is True
        (transfer,) = provider.transfers
        assert transfer["amount"] == Decimal("150.00")
        assert transfer["recipient_code"] == "RCP_a"
        assert transfer["reference"] == "PAYOUT_1_retry"
        # Balance only moves when the transfer webhook arrives
        assert repo.get_store("store_a").available_balance == Decimal("200.00")

    def test_retried_once(self, ledger, repo, paid_order):
        """Test a failed payout is only re-issued once."""
        ledger.apply_transfer_outcome(False, "PAYOUT_9", "store_a", Decimal("50.00"))
        provider = StubPaymentProvider()

        asyncio.run(retry_failed_payout("PAYOUT_9", repo, provider))
        with pytest.raises(SettlementError) as exc_info:
            asyncio.run(retry_failed_payout("PAYOUT_9", repo, provider))

        assert exc_info.value.code == "PAYOUT_RETRIED"
        assert [t["reference"] for t in provider.transfers] == ["PAYOUT_9_retry"]

    def test_concurrent_retries(self, ledger, repo, paid_order):
        """Test concurrent retries of the same payout send one transfer."""
        ledger.apply_transfer_outcome(False, "PAYOUT_9", "store_a", Decimal("50.00"))
        provider = StubPaymentProvider()

        async def run():
            return await asyncio.gather(
                *(retry_failed_payout("PAYOUT_9", repo, provider) for _ in range(5)),
                return_exceptions=True,
            )

        results = asyncio.run(run())

        errors = [r for r in results if isinstance(r, SettlementError)]
        assert len(errors) == 4
        assert {e.code for e in errors} == {"PAYOUT_RETRIED"}
        assert len(provider.transfers) == 1

    def test_rejected_retry_can_be_retried(self, ledger, repo, paid_order):
        """Test a retry the provider rejects becomes a failed payout of its own."""
        ledger.apply_transfer_outcome(False, "PAYOUT_1", "store_a", Decimal("150.00"))
        rejecting = AsyncMock()
        rejecting.initiate_transfer.return_value = ProviderResult(success=False, error_message="Recipient blocked")

        result = asyncio.run(retry_failed_payout("PAYOUT_1", repo, rejecting))

        assert result.success is False
        (failed,) = repo.list_transactions(provider_reference="PAYOUT_1_retry")
        assert failed.status == TransactionStatus.FAILED
        assert failed.amount == Decimal("150.00")

        provider = StubPaymentProvider()
        asyncio.run(retry_failed_payout("PAYOUT_1_retry", repo, provider))
        assert provider.transfers[0]["reference"] == "PAYOUT_1_retry_retry"
        assert repo.get_store("store_a").available_balance == Decimal("200.00")

    def test_permanent_provider_error(self, ledger, repo, paid_order):
        """Test a permanent provider error is recorded against the retry."""
        ledger.apply_transfer_outcome(False, "PAYOUT_1", "store_a", Decimal("150.00"))
        provider = AsyncMock()
        provider.initiate_transfer.side_effect = ProviderError("Invalid recipient", code="400", retryable=False)

        with pytest.raises(ProviderError):
            asyncio.run(retry_failed_payout("PAYOUT_1", repo, provider))

        (failed,) = repo.list_transactions(provider_reference="PAYOUT_1_retry")
        assert failed.status == TransactionStatus.FAILED

    def test_unknown_outcome_not_resent(self, ledger, repo, paid_order):
        """Test a timed out retry isn't sent again or marked failed."""
        ledger.apply_transfer_outcome(False, "PAYOUT_1", "store_a", Decimal("150.00"))
        provider = AsyncMock()
        provider.initiate_transfer.side_effect = ProviderError("Gateway timeout", code="504", retryable=True)

        with pytest.raises(ProviderError):
            asyncio.run(retry_failed_payout("PAYOUT_1", repo, provider))
        with pytest.raises(SettlementError) as exc_info:
            asyncio.run(retry_failed_payout("PAYOUT_1", repo, provider))

        assert exc_info.value.code == "PAYOUT_RETRIED"
        assert provider.initiate_transfer.call_count == 1
        assert repo.list_transactions(provider_reference="PAYOUT_1_retry") == []

    def test_no_failed_payout(self, repo):
        """Test retrying an unknown payout."""
        with pytest.raises(SettlementError) as exc_info:
            asyncio.run(retry_failed_payout("PAYOUT_X", repo, StubPaymentProvider()))
        assert exc_info.value.code == "PAYOUT_NOT_FOUND"

    def test_completed_payout(self, ledger, repo, paid_order):
        """Test a payout that later succeeded isn't retried."""
        ledger.apply_transfer_outcome(False, "PAYOUT_1", "store_a", Decimal("10.00"))
        ledger.apply_transfer_outcome(True, "PAYOUT_1", "store_a", Decimal("10.00"))

        with pytest.raises(SettlementError) as exc_info:
            asyncio.run(retry_failed_payout("PAYOUT_1", repo, StubPaymentProvider()))
        assert exc_info.value.code == "PAYOUT_COMPLETED"

    def test_missing_recipient(self, ledger, repo, paid_order):
        """Test a store without a transfer recipient can't be paid."""
        from settlement_engine.contracts.records import Store

        repo.add_store(Store(id="store_c", seller_id="seller_c"))
        ledger.apply_transfer_outcome(False, "PAYOUT_C", "store_c", Decimal("10.00"))

        with pytest.raises(SettlementError) as exc_info:
            asyncio.run(retry_failed_payout("PAYOUT_C", repo, StubPaymentProvider()))
        assert exc_info.value.code == "MISSING_RECIPIENT"

    def test_store_gone(self, ledger, paid_order):
        """Test retrying when the store lookup fails."""
        ledger.apply_transfer_outcome(False, "PAYOUT_1", "store_a", Decimal("10.00"))
        repo = ledger.repo
        repo.get_store = lambda store_id: None

        with pytest.raises(StoreNotFound):
            asyncio.run(retry_failed_payout("PAYOUT_1", repo, StubPaymentProvider()))
