"""
Webhook Intake

Entry point for payment provider webhooks.

Flow:
1. Verify signature (401, nothing touched)
2. Parse payload (400, nothing touched)
3. Route to the ledger (in a worker thread)
4. Build the canonical business event
5. Fan out to automation endpoints
6. Respond

Once the ledger has durably applied (or deduplicated) an event the response
is 200, whatever happens during fan-out. Retryable ledger failures answer 500
so the provider redelivers.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from settlement_engine.contracts.envelope import AutomationEvent
from settlement_engine.contracts.events import PaymentEvent, Unhandled
from settlement_engine.dispatch.dispatcher import AutomationDispatcher
from settlement_engine.errors import AuthenticationFailure, MalformedPayload
from settlement_engine.handlers.router import EventRouter, parse_payment_event
from settlement_engine.ledger.results import LedgerOutcome
from settlement_engine.providers.base import PaymentProvider

logger = logging.getLogger(__name__)


@dataclass
class IntakeResponse:
    """HTTP status and JSON body to return to the provider."""

    status_code: int
    body: dict[str, Any] = field(default_factory=dict)


class WebhookIntake:
    """
    Orchestrates verify -> parse -> route -> ledger -> dispatch.
    """

    def __init__(
        self,
        provider: PaymentProvider,
        webhook_secret: str,
        router: EventRouter,
        dispatcher: AutomationDispatcher | None = None,
    ):
        self.provider = provider
        self.webhook_secret = webhook_secret
        self.router = router
        self.dispatcher = dispatcher
        self._pending: set[asyncio.Task] = set()

    def verify(self, raw_body: bytes, signature_header: str | None) -> None:
        """
        Raises:
            AuthenticationFailure: signature missing or wrong
        """
        if not self.provider.validate_webhook_signature(raw_body, signature_header, self.webhook_secret):
            raise AuthenticationFailure(
                "Invalid webhook signature",
                details={"signature_present": bool(signature_header)},
            )

    def parse(self, raw_body: bytes) -> PaymentEvent:
        """
        Raises:
            MalformedPayload: not JSON or not a valid event
        """
        try:
            payload = json.loads(raw_body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedPayload(f"Invalid JSON: {e}")
        return parse_payment_event(payload)

    async def handle_webhook(
        self,
        raw_body: bytes,
        signature_header: str | None,
        wait_for_dispatch: bool = True,
    ) -> IntakeResponse:
        """
        Handle one webhook delivery.

        Args:
            raw_body: Request body exactly as received (the signature covers it)
            signature_header: Provider signature header value
            wait_for_dispatch: Await fan-out before responding; when False the
                fan-out runs as a background task (see drain())

        Returns:
            IntakeResponse: 200 once routed, 401 bad signature, 400 malformed
            payload, 500 when the ledger asks for redelivery
        """
        try:
            self.verify(raw_body, signature_header)
        except AuthenticationFailure as e:
            logger.warning("Rejected webhook with invalid signature", extra=e.details)
            return IntakeResponse(401, {"status": "rejected", "error": e.code})

        try:
            event = self.parse(raw_body)
        except MalformedPayload as e:
            logger.warning(f"Rejected malformed webhook: {e.message}", extra=e.details)
            return IntakeResponse(400, {"status": "rejected", "error": e.code, "message": e.message})

        if isinstance(event, Unhandled):
            self.router.route(event)
            return IntakeResponse(200, {"status": "ignored", "event": event.event_type})

        try:
            result = await asyncio.to_thread(self.router.route, event)
        except Exception as e:
            logger.error(
                f"Error processing webhook: {e}",
                extra={"event_type": event.event_type, "reference": event.reference},
                exc_info=True,
            )
            return IntakeResponse(500, {"status": "error", "error": "INTERNAL_ERROR"})

        body = {
            "status": "accepted",
            "event": event.event_type,
            "reference": event.reference,
            "outcome": result.outcome.value,
        }

        if result.outcome == LedgerOutcome.RETRYABLE_FAILURE:
            body.update(status="retry", error=result.error_code)
            return IntakeResponse(500, body)

        if result.outcome == LedgerOutcome.FATAL_FAILURE:
            # Logged by the ledger; redelivery can't fix it, so acknowledge.
            body.update(status="rejected", error=result.error_code)
            return IntakeResponse(200, body)

        automation_event = self.router.build_automation_event(event, result)
        if automation_event is not None and self.dispatcher is not None:
            if wait_for_dispatch:
                report = await self.dispatcher.fanout(automation_event)
                body["dispatch"] = {"delivered": len(report.delivered), "exhausted": len(report.exhausted)}
            else:
                self._schedule(automation_event)
                body["dispatch"] = {"scheduled": True}

        return IntakeResponse(200, body)

    def _schedule(self, event: AutomationEvent) -> None:
        task = asyncio.get_running_loop().create_task(self.dispatcher.fanout(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for background fan-outs (call on shutdown)."""
        if self._pending:
            logger.info(f"Waiting for {len(self._pending)} pending dispatches")
            await asyncio.gather(*self._pending, return_exceptions=True)
