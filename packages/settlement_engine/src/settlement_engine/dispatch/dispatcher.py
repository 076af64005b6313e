"""
Automation Dispatcher

Delivers a business event to every subscription that accepts its type.

Per endpoint:
- up to max_retries attempts
- exponential backoff between attempts (base, 2x base, 4x base ... capped)
- 2xx is success, any other status or a transport error is retried
- when retries run out the delivery is logged and dead-lettered

Endpoints are delivered concurrently and independently; one slow or failing
endpoint never delays or fails another, and nothing is raised to the caller.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

import httpx

from settlement_engine.contracts.envelope import AutomationEvent
from settlement_engine.dispatch.dead_letters import DeadLetterQueue
from settlement_engine.dispatch.subscriptions import Subscription, SubscriptionRegistry
from settlement_engine.dispatch.transport import DeliveryTransport
from settlement_engine.errors import DispatchDeliveryFailure

logger = logging.getLogger(__name__)

EVENT_HEADER = "X-Settlement-Event"
EVENT_ID_HEADER = "X-Settlement-Event-Id"
TIMESTAMP_HEADER = "X-Settlement-Timestamp"


class DeliveryStatus(str, Enum):
    """Final status of one endpoint delivery."""

    DELIVERED = "delivered"
    EXHAUSTED = "exhausted"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class DeliveryOutcome:
    url: str
    status: DeliveryStatus
    attempts: int
    status_code: int | None = None
    error: str | None = None


@dataclass(frozen=True)
class DispatchReport:
    """Outcomes of one fan-out, one per matching subscription."""

    event_id: str
    event_type: str
    outcomes: tuple[DeliveryOutcome, ...]

    @property
    def delivered(self) -> list[str]:
        return [o.url for o in self.outcomes if o.status == DeliveryStatus.DELIVERED]

    @property
    def exhausted(self) -> list[str]:
        return [o.url for o in self.outcomes if o.status == DeliveryStatus.EXHAUSTED]

    def outcome_for(self, url: str) -> DeliveryOutcome | None:
        for outcome in self.outcomes:
            if outcome.url == url:
                return outcome
        return None


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay after a failed attempt (1-based): base * 2**(attempt-1), capped."""
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


def build_headers(event: AutomationEvent, subscription: Subscription) -> dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        EVENT_HEADER: event.event_type,
        EVENT_ID_HEADER: event.event_id,
        TIMESTAMP_HEADER: event.timestamp.isoformat(),
    }
    headers.update(subscription.headers)
    return headers


class AutomationDispatcher:
    """
    Fans business events out to subscribed automation endpoints.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        transport: DeliveryTransport,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        dead_letters: DeadLetterQueue | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.registry = registry
        self.transport = transport
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.dead_letters = dead_letters
        self._sleep = sleep

    async def fanout(self, event: AutomationEvent) -> DispatchReport:
        """
        Deliver an event to all matching subscriptions and wait for every
        delivery to finish or exhaust its retries.
        """
        subscriptions = self.registry.matching(event.event_type)

        if not subscriptions:
            logger.debug(f"No subscriptions for {event.event_type}")
            return DispatchReport(event_id=event.event_id, event_type=event.event_type, outcomes=())

        results = await asyncio.gather(
            *(self.deliver(subscription, event) for subscription in subscriptions),
            return_exceptions=True,
        )

        outcomes = []
        for subscription, result in zip(subscriptions, results):
            if isinstance(result, BaseException):
                # deliver() handles its own errors; anything here is a bug
                logger.error(
                    f"Delivery to {subscription.url} crashed: {result}",
                    extra={"event_id": event.event_id, "url": subscription.url},
                    exc_info=result,
                )
                result = DeliveryOutcome(
                    url=subscription.url,
                    status=DeliveryStatus.EXHAUSTED,
                    attempts=0,
                    error=str(result),
                )
            outcomes.append(result)

        report = DispatchReport(event_id=event.event_id, event_type=event.event_type, outcomes=tuple(outcomes))

        logger.info(
            f"Dispatched {event.event_type}",
            extra={
                "event_id": event.event_id,
                "event_type": event.event_type,
                "delivered": len(report.delivered),
                "exhausted": len(report.exhausted),
            },
        )
        return report

    async def deliver(self, subscription: Subscription, event: AutomationEvent) -> DeliveryOutcome:
        """Deliver to one endpoint with retries. Never raises on delivery errors."""
        headers = build_headers(event, subscription)
        body = event.to_dict()
        status_code = None
        last_error = None
        attempts = 0

        for attempt in range(1, subscription.max_retries + 1):
            attempts = attempt
            try:
                status_code = await self.transport.post(subscription.url, headers, body)
                if 200 <= status_code < 300:
                    logger.debug(
                        f"Delivered {event.event_type} to {subscription.url}",
                        extra={"event_id": event.event_id, "attempt": attempt},
                    )
                    return DeliveryOutcome(
                        url=subscription.url,
                        status=DeliveryStatus.DELIVERED,
                        attempts=attempt,
                        status_code=status_code,
                    )
                raise DispatchDeliveryFailure(
                    f"Endpoint returned HTTP {status_code}",
                    status_code=status_code,
                    url=subscription.url,
                )

            except (DispatchDeliveryFailure, httpx.HTTPError) as e:
                last_error = str(e) or e.__class__.__name__
                logger.warning(
                    f"Delivery attempt {attempt}/{subscription.max_retries} to {subscription.url} failed: {last_error}",
                    extra={"event_id": event.event_id, "url": subscription.url, "attempt": attempt},
                )

            if attempt < subscription.max_retries:
                await self._sleep(backoff_delay(attempt, self.base_delay, self.max_delay))

        logger.error(
            f"Delivery to {subscription.url} exhausted after {attempts} attempts",
            extra={
                "event_id": event.event_id,
                "event_type": event.event_type,
                "url": subscription.url,
                "error": last_error,
            },
        )
        self._dead_letter(event, subscription.url, attempts, last_error)

        return DeliveryOutcome(
            url=subscription.url,
            status=DeliveryStatus.EXHAUSTED,
            attempts=attempts,
            status_code=status_code,
            error=last_error,
        )

    def _dead_letter(self, event: AutomationEvent, url: str, attempts: int, error: str | None) -> None:
        if self.dead_letters is None:
            return
        try:
            self.dead_letters.publish(event, url, attempts, error)
        except Exception as e:
            logger.error(
                f"Failed to dead-letter delivery to {url}: {e}",
                extra={"event_id": event.event_id, "url": url},
            )
