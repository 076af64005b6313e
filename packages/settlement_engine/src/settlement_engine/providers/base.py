"""
Payment Provider Base

Abstract interface for the payment provider. The settlement core only needs
three things from it: verify webhook authenticity, pay a seller out, refund
a customer.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any


class ProviderError(Exception):
    """Error from the payment provider."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.retryable = retryable


@dataclass
class ProviderResult:
    """
    Response from the provider after a transfer or refund request.
    """

    success: bool
    reference: str | None = None
    provider_id: str | None = None  # transfer_code / refund id
    status: str | None = None
    error_message: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


class PaymentProvider(ABC):
    """
    Abstract interface for payment providers.

    Implementations must handle:
    - Webhook signature validation
    - Initiating transfers (seller payouts)
    - Refunding charges
    """

    @abstractmethod
    def validate_webhook_signature(
        self,
        payload: bytes,
        signature_header: str | None,
        secret: str,
    ) -> bool:
        """
        Validate that a webhook body was signed by the provider.

        Args:
            payload: Raw request body bytes
            signature_header: Signature header value
            secret: Shared webhook secret

        Returns:
            True if signature is valid
        """
        ...

    @abstractmethod
    async def initiate_transfer(
        self,
        amount: Decimal,
        recipient_code: str,
        reference: str,
        reason: str | None = None,
    ) -> ProviderResult:
        """
        Send money from the platform balance to a seller.

        Args:
            amount: Amount in major units
            recipient_code: Provider transfer recipient of the seller
            reference: Unique payout reference (echoed back in transfer webhooks)
            reason: Narration shown to the recipient

        Returns:
            ProviderResult with the provider's transfer code
        """
        ...

    @abstractmethod
    async def create_refund(
        self,
        transaction_reference: str,
        amount: Decimal | None = None,
    ) -> ProviderResult:
        """
        Refund a charge.

        Args:
            transaction_reference: Reference of the original charge
            amount: Partial amount in major units, None for a full refund

        Returns:
            ProviderResult with the provider's refund id
        """
        ...

    async def close(self) -> None:
        """Release network resources."""
        return None
