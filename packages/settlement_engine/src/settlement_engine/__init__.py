"""
Settlement Engine

Payment event processing and settlement for a multi-vendor marketplace:
- Webhook intake with signature verification
- Commission split calculation
- Idempotent settlement ledger (orders, store balances, transactions)
- Retrying fan-out of business events to automation endpoints
"""

__version__ = "0.1.0"
