"""Provider selection from settings."""

from paycore.settings import Settings

from settlement_engine.providers.base import PaymentProvider
from settlement_engine.providers.paystack import PaystackProvider
from settlement_engine.providers.stub import StubPaymentProvider


def get_provider(settings: Settings) -> PaymentProvider:
    """Get the configured payment provider."""
    if settings.PAYMENT_PROVIDER == "paystack":
        return PaystackProvider(
            secret_key=settings.PAYSTACK_SECRET_KEY,
            base_url=settings.PAYSTACK_BASE_URL,
            timeout=settings.PAYSTACK_TIMEOUT_SECONDS,
        )
    return StubPaymentProvider()
