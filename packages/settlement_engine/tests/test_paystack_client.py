"""
Tests for the Paystack provider client.
"""

import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from settlement_engine.providers.base import ProviderError
from settlement_engine.providers.factory import get_provider
from settlement_engine.providers.paystack import PaystackProvider
from settlement_engine.providers.stub import StubPaymentProvider


def provider_with(handler) -> PaystackProvider:
    return PaystackProvider(
        secret_key="sk_test_secret",
        base_url="https://api.paystack.test",
        transport=httpx.MockTransport(handler),
    )


class TestPaystackProvider:
    """Tests for Paystack API calls."""

    def test_initiate_transfer(self):
        """Test a transfer is sent in minor units with bearer auth."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "message": "Transfer has been queued",
                    "data": {"reference": "PAYOUT_1", "transfer_code": "TRF_1", "status": "pending"},
                },
            )

        provider = provider_with(handler)

        async def run():
            try:
                return await provider.initiate_transfer(Decimal("150.50"), "RCP_a", "PAYOUT_1", "Weekly payout")
            finally:
                await provider.close()

        result = asyncio.run(run())

        assert result.success is True
        assert result.provider_id == "TRF_1"
        assert result.status == "pending"

        (request,) = seen
        assert request.url.path == "/transfer"
        assert request.headers["Authorization"] == "Bearer sk_test_secret"
        assert json.loads(request.content) == {
            "source": "balance",
            "amount": 15050,
            "recipient": "RCP_a",
            "reference": "PAYOUT_1",
            "reason": "Weekly payout",
        }

    def test_create_refund(self):
        """Test a full refund names only the transaction."""
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"status": True, "data": {"id": 3018284, "status": "pending"}})

        result = asyncio.run(provider_with(handler).create_refund("PAY_ORDER_1"))

        assert result.provider_id == "3018284"
        assert seen == [{"transaction": "PAY_ORDER_1"}]

    def test_server_error_retryable(self):
        """Test 5xx responses raise a retryable error."""
        provider = provider_with(lambda request: httpx.Response(502, json={"status": False, "message": "Bad gateway"}))

        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(provider.create_refund("PAY_ORDER_1"))

        assert exc_info.value.retryable is True
        assert exc_info.value.code == "502"

    def test_client_error_not_retryable(self):
        """Test 4xx responses raise a permanent error."""
        provider = provider_with(
            lambda request: httpx.Response(400, json={"status": False, "message": "Transaction has been fully reversed"})
        )

        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(provider.create_refund("PAY_ORDER_1"))

        assert exc_info.value.retryable is False
        assert "fully reversed" in str(exc_info.value)

    def test_connection_error(self):
        """Test transport errors are retryable."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(provider_with(handler).initiate_transfer(Decimal("1.00"), "RCP", "REF"))

        assert exc_info.value.retryable is True
        assert exc_info.value.code == "HTTP_ERROR"


class TestProviderFactory:
    """Tests for provider selection."""

    def test_paystack(self):
        """Test the Paystack provider is built from settings."""
        from paycore.settings import Settings

        settings = Settings(PAYMENT_PROVIDER="paystack", PAYSTACK_SECRET_KEY="sk_live_x")
        provider = get_provider(settings)

        assert isinstance(provider, PaystackProvider)
        assert provider.secret_key == "sk_live_x"

    def test_stub(self):
        """Test the stub provider for local development."""
        from paycore.settings import Settings

        assert isinstance(get_provider(Settings(PAYMENT_PROVIDER="stub")), StubPaymentProvider)
