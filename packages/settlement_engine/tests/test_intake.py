"""
Tests for webhook intake.
"""

import asyncio
import json
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from settlement_engine.dispatch.dispatcher import AutomationDispatcher
from settlement_engine.dispatch.subscriptions import Subscription, SubscriptionRegistry
from settlement_engine.dispatch.transport import DeliveryTransport
from settlement_engine.handlers.router import EventRouter
from settlement_engine.providers.stub import StubPaymentProvider
from settlement_engine.service.intake import WebhookIntake


class RecordingTransport(DeliveryTransport):
    """Transport that records deliveries and answers with a fixed status."""

    def __init__(self, status_code=200):
        self.status_code = status_code
        self.deliveries = []

    async def post(self, url, headers, json_body):
        self.deliveries.append((url, headers, json_body))
        return self.status_code


async def no_sleep(delay):
    return None


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def dispatcher(transport):
    registry = SubscriptionRegistry([
        Subscription(
            url="https://hooks.example.com/all",
            events=frozenset({"payment.success", "payment.failed", "payout.success", "payout.failed"}),
        )
    ])
    return AutomationDispatcher(registry, transport, sleep=no_sleep)


@pytest.fixture
def intake(ledger, dispatcher, webhook_secret):
    return WebhookIntake(
        provider=StubPaymentProvider(),
        webhook_secret=webhook_secret,
        router=EventRouter(ledger),
        dispatcher=dispatcher,
    )


class TestAuthentication:
    """Tests for signature checks."""

    def test_tampered_body_rejected(self, intake, repo, order, transport, make_charge, sign):
        """Test a body changed after signing touches nothing."""
        raw, signature = sign(make_charge())
        tampered = raw.replace(b"36600", b"99900")

        response = asyncio.run(intake.handle_webhook(tampered, signature))

        assert response.status_code == 401
        assert response.body["error"] == "AUTHENTICATION_FAILURE"
        assert repo.get_order("order_1").payment_status.value == "pending"
        assert transport.deliveries == []

    def test_missing_signature(self, intake, make_charge, sign):
        """Test a request without signature is rejected."""
        raw, _ = sign(make_charge())
        response = asyncio.run(intake.handle_webhook(raw, None))
        assert response.status_code == 401

    def test_router_not_called(self, ledger, webhook_secret, make_charge, sign):
        """Test a bad signature never reaches the router."""
        router = MagicMock()
        intake = WebhookIntake(StubPaymentProvider(), webhook_secret, router)

        raw, _ = sign(make_charge())
        asyncio.run(intake.handle_webhook(raw, "deadbeef"))

        router.route.assert_not_called()


class TestHandleWebhook:
    """Tests for the verify -> route -> dispatch flow."""

    def test_charge_success(self, intake, repo, order, transport, make_charge, sign):
        """Test a signed charge.success settles the order and notifies endpoints."""
        raw, signature = sign(make_charge())

        response = asyncio.run(intake.handle_webhook(raw, signature))

        assert response.status_code == 200
        assert response.body["status"] == "accepted"
        assert response.body["outcome"] == "applied"
        assert response.body["dispatch"] == {"delivered": 1, "exhausted": 0}
        assert repo.get_store("store_a").available_balance == Decimal("200.00")

        (url, headers, body) = transport.deliveries[0]
        assert body["event"] == "payment.success"
        assert body["event_id"] == "charge.success:PAY_ORDER_1"

    def test_duplicate_redispatched_with_same_id(self, intake, repo, order, transport, make_charge, sign):
        """Test a redelivered webhook is acknowledged and re-announced once more."""
        raw, signature = sign(make_charge())

        asyncio.run(intake.handle_webhook(raw, signature))
        response = asyncio.run(intake.handle_webhook(raw, signature))

        assert response.status_code == 200
        assert response.body["outcome"] == "duplicate"
        assert repo.get_store("store_a").available_balance == Decimal("200.00")
        assert [d[2]["event_id"] for d in transport.deliveries] == ["charge.success:PAY_ORDER_1"] * 2

    def test_charge_failed_then_success(self, intake, repo, order, transport, make_charge, sign):
        """Test charge.success after charge.failed is acknowledged but not applied."""
        failed, failed_sig = sign(make_charge(event="charge.failed"))
        success, success_sig = sign(make_charge())

        first = asyncio.run(intake.handle_webhook(failed, failed_sig))
        second = asyncio.run(intake.handle_webhook(success, success_sig))

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.body["status"] == "rejected"
        assert second.body["error"] == "INVALID_TRANSITION"
        assert repo.get_order("order_1").payment_status.value == "failed"
        assert repo.get_store("store_a").available_balance == Decimal("0.00")
        assert [d[2]["event"] for d in transport.deliveries] == ["payment.failed"]

    def test_unknown_order_asks_for_redelivery(self, intake, transport, make_charge, sign):
        """Test a payment for an unknown order answers 500."""
        raw, signature = sign(make_charge(reference="PAY_LATER", order_id="order_later"))

        response = asyncio.run(intake.handle_webhook(raw, signature))

        assert response.status_code == 500
        assert response.body["status"] == "retry"
        assert response.body["error"] == "ORDER_NOT_FOUND"
        assert transport.deliveries == []

    def test_malformed_payload(self, intake, sign):
        """Test a signed body that isn't a valid event answers 400."""
        raw, signature = sign({"event": "charge.success", "data": {"amount": 100}})

        response = asyncio.run(intake.handle_webhook(raw, signature))

        assert response.status_code == 400
        assert response.body["error"] == "MALFORMED_PAYLOAD"

    def test_transfer_recipient_metadata_string(self, intake, repo, transport, make_transfer, sign):
        """Test a transfer with unreadable recipient metadata answers 400 without changes."""
        payload = make_transfer(store_id=None)
        payload["data"]["recipient"]["metadata"] = "store_a"
        raw, signature = sign(payload)

        response = asyncio.run(intake.handle_webhook(raw, signature))

        assert response.status_code == 400
        assert response.body["error"] == "MALFORMED_PAYLOAD"
        assert repo.list_transactions(store_id="store_a") == []
        assert transport.deliveries == []

    def test_not_json(self, intake):
        """Test a signed body that isn't JSON answers 400."""
        from settlement_engine.providers.paystack.webhook import compute_signature

        raw = b"not json"
        response = asyncio.run(intake.handle_webhook(raw, compute_signature(raw, intake.webhook_secret)))

        assert response.status_code == 400

    def test_unhandled_event_acknowledged(self, intake, transport, sign):
        """Test unknown event types are acknowledged and ignored."""
        raw, signature = sign({"event": "invoice.create", "data": {"reference": "INV_1"}})

        response = asyncio.run(intake.handle_webhook(raw, signature))

        assert response.status_code == 200
        assert response.body["status"] == "ignored"
        assert transport.deliveries == []

    def test_endpoint_failure_does_not_change_response(self, repo, order, ledger, webhook_secret, make_charge, sign):
        """Test a failing endpoint still gives the provider a 200."""
        failing = RecordingTransport(status_code=500)
        registry = SubscriptionRegistry([
            Subscription(url="https://hooks.example.com/down", events=frozenset({"payment.success"}), max_retries=2)
        ])
        intake = WebhookIntake(
            StubPaymentProvider(),
            webhook_secret,
            EventRouter(ledger),
            AutomationDispatcher(registry, failing, sleep=no_sleep),
        )
        raw, signature = sign(make_charge())

        response = asyncio.run(intake.handle_webhook(raw, signature))

        assert response.status_code == 200
        assert response.body["dispatch"] == {"delivered": 0, "exhausted": 1}
        assert len(failing.deliveries) == 2

    def test_router_crash_answers_500(self, webhook_secret, make_charge, sign):
        """Test an unexpected router error asks for redelivery."""
        router = MagicMock()
        router.route.side_effect = RuntimeError("boom")
        intake = WebhookIntake(StubPaymentProvider(), webhook_secret, router)
        raw, signature = sign(make_charge())

        response = asyncio.run(intake.handle_webhook(raw, signature))

        assert response.status_code == 500
        assert response.body["error"] == "INTERNAL_ERROR"

    def test_background_dispatch(self, intake, order, transport, make_charge, sign):
        """Test fan-out can run after the response and be drained."""
        raw, signature = sign(make_charge())

        async def run():
            response = await intake.handle_webhook(raw, signature, wait_for_dispatch=False)
            await intake.drain()
            return response

        response = asyncio.run(run())

        assert response.status_code == 200
        assert response.body["dispatch"] == {"scheduled": True}
        assert len(transport.deliveries) == 1

    def test_transfer_failed(self, intake, transport, make_transfer, sign):
        """Test transfer.failed records the payout and announces payout.failed."""
        raw, signature = sign(make_transfer(event="transfer.failed"))

        response = asyncio.run(intake.handle_webhook(raw, signature))

        assert response.status_code == 200
        body = transport.deliveries[0][2]
        assert body["event"] == "payout.failed"
        assert body["data"]["retry_payout"] is True
        assert json.dumps(body)
