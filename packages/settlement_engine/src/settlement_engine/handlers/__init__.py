"""
Event handlers: map provider events to ledger operations.
"""

from settlement_engine.handlers.router import EventRouter, parse_payment_event

__all__ = ["EventRouter", "parse_payment_event"]
