"""
Paystack Payment Provider

Production provider for the Paystack REST API. Only the calls the settlement
core needs: transfers (seller payouts) and refunds. Amounts go over the wire
in minor units (kobo/cents).
"""

import logging
from decimal import Decimal
from typing import Any

import httpx

from settlement_engine.calculator import to_minor_units
from settlement_engine.providers.base import PaymentProvider, ProviderError, ProviderResult
from settlement_engine.providers.paystack.webhook import validate_signature

logger = logging.getLogger(__name__)

PAYSTACK_BASE_URL = "https://api.paystack.co"


class PaystackProvider(PaymentProvider):
    """
    Paystack API provider.

    Uses a bearer secret key; the same key signs webhooks.
    """

    def __init__(
        self,
        secret_key: str,
        base_url: str = PAYSTACK_BASE_URL,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={
                    "Authorization": f"Bearer {self.secret_key}",
                    "Content-Type": "application/json",
                },
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _post(self, path: str, json_data: dict[str, Any]) -> dict[str, Any]:
        """Make an authenticated POST request and unwrap Paystack's envelope."""
        client = await self._get_client()

        try:
            response = await client.post(path, json=json_data)
        except httpx.RequestError as e:
            logger.error(f"HTTP request failed: {e}")
            raise ProviderError(
                message=f"HTTP request failed: {e}",
                code="HTTP_ERROR",
                retryable=True,
            )

        try:
            response_data = response.json()
        except ValueError:
            response_data = {"message": response.text}

        if response.status_code >= 400 or response_data.get("status") is False:
            raise ProviderError(
                message=response_data.get("message", "Unknown error"),
                code=str(response.status_code),
                details=response_data,
                retryable=response.status_code >= 500 or response.status_code == 429,
            )

        return response_data

    def validate_webhook_signature(
        self,
        payload: bytes,
        signature_header: str | None,
        secret: str,
    ) -> bool:
        return validate_signature(payload, signature_header, secret)

    async def initiate_transfer(
        self,
        amount: Decimal,
        recipient_code: str,
        reference: str,
        reason: str | None = None,
    ) -> ProviderResult:
        """Initiate a transfer from the Paystack balance."""
        payload = {
            "source": "balance",
            "amount": to_minor_units(amount),
            "recipient": recipient_code,
            "reference": reference,
        }
        if reason:
            payload["reason"] = reason

        response_data = await self._post("/transfer", payload)
        data = response_data.get("data") or {}

        logger.info(
            f"Transfer initiated",
            extra={
                "reference": reference,
                "transfer_code": data.get("transfer_code"),
                "transfer_status": data.get("status"),
            },
        )

        return ProviderResult(
            success=True,
            reference=data.get("reference", reference),
            provider_id=data.get("transfer_code"),
            status=data.get("status"),
            raw_response=response_data,
        )

    async def create_refund(
        self,
        transaction_reference: str,
        amount: Decimal | None = None,
    ) -> ProviderResult:
        """Refund a transaction, fully unless amount is given."""
        payload: dict[str, Any] = {"transaction": transaction_reference}
        if amount is not None:
            payload["amount"] = to_minor_units(amount)

        response_data = await self._post("/refund", payload)
        data = response_data.get("data") or {}

        logger.info(
            f"Refund created",
            extra={"transaction_reference": transaction_reference, "refund_status": data.get("status")},
        )

        return ProviderResult(
            success=True,
            reference=transaction_reference,
            provider_id=str(data["id"]) if data.get("id") is not None else None,
            status=data.get("status"),
            raw_response=response_data,
        )
