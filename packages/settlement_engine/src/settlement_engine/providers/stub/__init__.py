"""Stub provider for development."""

from settlement_engine.providers.stub.client import StubPaymentProvider

__all__ = ["StubPaymentProvider"]
