"""
Automation dispatch: fan-out of business events to subscribed endpoints.
"""

from settlement_engine.dispatch.dead_letters import DeadLetterQueue
from settlement_engine.dispatch.dispatcher import (
    AutomationDispatcher,
    DeliveryOutcome,
    DeliveryStatus,
    DispatchReport,
)
from settlement_engine.dispatch.subscriptions import (
    Subscription,
    SubscriptionRegistry,
    preset_subscription,
)
from settlement_engine.dispatch.transport import DeliveryTransport, HttpxDeliveryTransport

__all__ = [
    "AutomationDispatcher",
    "DeadLetterQueue",
    "DeliveryOutcome",
    "DeliveryStatus",
    "DeliveryTransport",
    "DispatchReport",
    "HttpxDeliveryTransport",
    "Subscription",
    "SubscriptionRegistry",
    "preset_subscription",
]
