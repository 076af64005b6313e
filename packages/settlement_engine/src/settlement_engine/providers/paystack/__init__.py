"""Paystack provider."""

from settlement_engine.providers.paystack.client import PaystackProvider

__all__ = ["PaystackProvider"]
