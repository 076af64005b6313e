"""
Payment providers.

Implementations:
- Paystack: production provider (HTTP API + HMAC-SHA512 webhooks)
- Stub: development provider, no network calls
"""

from settlement_engine.providers.base import PaymentProvider, ProviderError, ProviderResult

__all__ = [
    "PaymentProvider",
    "ProviderError",
    "ProviderResult",
]
