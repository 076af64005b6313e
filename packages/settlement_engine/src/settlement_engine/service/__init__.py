"""
Settlement services: webhook intake, refunds, payout retries.
"""

from settlement_engine.service.intake import IntakeResponse, WebhookIntake
from settlement_engine.service.payouts import retry_failed_payout
from settlement_engine.service.refunds import refund_order

__all__ = [
    "IntakeResponse",
    "WebhookIntake",
    "refund_order",
    "retry_failed_payout",
]
