"""
Stub Payment Provider

Development provider that logs all operations without making real API calls.
Useful for local development and testing.
"""

import logging
import random
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import uuid4

from settlement_engine.providers.base import PaymentProvider, ProviderResult
from settlement_engine.providers.paystack.webhook import validate_signature

logger = logging.getLogger(__name__)


class StubPaymentProvider(PaymentProvider):
    """
    Stub provider for development and testing.

    - Logs all transfers and refunds
    - Checks webhook signatures like Paystack does (unless accept_any_signature)
    - Generates fake transfer codes and refund ids
    - Can be configured to simulate failures
    """

    def __init__(
        self,
        accept_any_signature: bool = False,
        simulate_failures: bool = False,
        failure_rate: float = 0.1,
    ):
        self.accept_any_signature = accept_any_signature
        self.simulate_failures = simulate_failures
        self.failure_rate = failure_rate
        self.transfers: list[dict[str, Any]] = []
        self.refunds: list[dict[str, Any]] = []

    def validate_webhook_signature(
        self,
        payload: bytes,
        signature_header: str | None,
        secret: str,
    ) -> bool:
        if self.accept_any_signature:
            return True
        return validate_signature(payload, signature_header, secret)

    async def initiate_transfer(
        self,
        amount: Decimal,
        recipient_code: str,
        reference: str,
        reason: str | None = None,
    ) -> ProviderResult:
        """Log and return success for a transfer."""
        transfer_code = f"TRF_stub_{uuid4().hex[:12]}"

        self.transfers.append({
            "amount": amount,
            "recipient_code": recipient_code,
            "reference": reference,
            "reason": reason,
            "transfer_code": transfer_code,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

        logger.info(
            f"[STUB] Initiating transfer",
            extra={"reference": reference, "amount": str(amount), "recipient_code": recipient_code},
        )

        if self._should_fail():
            return ProviderResult(
                success=False,
                reference=reference,
                status="failed",
                error_message="Simulated failure for testing",
            )

        return ProviderResult(
            success=True,
            reference=reference,
            provider_id=transfer_code,
            status="pending",
        )

    async def create_refund(
        self,
        transaction_reference: str,
        amount: Decimal | None = None,
    ) -> ProviderResult:
        """Log and return success for a refund."""
        refund_id = f"stub_refund_{uuid4().hex[:12]}"

        self.refunds.append({
            "transaction_reference": transaction_reference,
            "amount": amount,
            "refund_id": refund_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

        logger.info(
            f"[STUB] Creating refund",
            extra={"transaction_reference": transaction_reference},
        )

        if self._should_fail():
            return ProviderResult(
                success=False,
                reference=transaction_reference,
                status="failed",
                error_message="Simulated failure for testing",
            )

        return ProviderResult(
            success=True,
            reference=transaction_reference,
            provider_id=refund_id,
            status="pending",
        )

    def _should_fail(self) -> bool:
        return self.simulate_failures and random.random() < self.failure_rate
